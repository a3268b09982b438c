"""Application inventory reconciliation.

Raw app sightings arrive as a flat history: the same product can appear once
per version, per architecture, and per scan. Sightings are grouped into
logical applications and each one is given a lifecycle status. Only the
newest sighting of a group can be current; every older sighting is
UNINSTALLED.

Status precedence is the ``STATUS_RULES`` table, evaluated top to bottom,
first match wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from riskview.models import EPOCH, AppRecord, AppStatus, AppStatusSummary, MatchType
from riskview.normalizer import parse_app_status, resolve

_ARCH_SUFFIX = re.compile(r"\s*\([^)]*\)\s*$")

APP_SUMMARY_ALIASES = {
    "total": ("total", "appCount", "count"),
    "installed": ("installed", "installedCount"),
    "updated": ("updated", "updatedCount"),
    "uninstalled": ("uninstalled", "uninstalledCount"),
}


def normalize_app_name(app_name: Any) -> str:
    """Lowercase, trimmed name without a trailing "(x64)"-style suffix."""
    if not isinstance(app_name, str):
        return ""
    return _ARCH_SUFFIX.sub("", app_name).strip().lower()


def group_key(app: AppRecord) -> tuple[str, str]:
    return normalize_app_name(app.app_name), (app.vendor or "").strip().lower()


def _sort_instant(value: datetime | None) -> datetime:
    return value or EPOCH


def newest_first(entries: Iterable[AppRecord]) -> list[AppRecord]:
    return sorted(
        entries,
        key=lambda app: (_sort_instant(app.first_seen), _sort_instant(app.last_seen)),
        reverse=True,
    )


@dataclass(frozen=True)
class StatusContext:
    app: AppRecord
    is_newest: bool
    now: datetime
    stale_after: timedelta


def _is_stale_absolute(ctx: StatusContext) -> bool:
    app = ctx.app
    if app.match_type is not MatchType.ABSOLUTE or app.last_seen is None:
        return False
    return ctx.now - app.last_seen > ctx.stale_after and app.is_installed is False


StatusRule = tuple[str, Callable[[StatusContext], bool], Callable[[StatusContext], AppStatus]]

STATUS_RULES: tuple[StatusRule, ...] = (
    ("superseded", lambda ctx: not ctx.is_newest, lambda ctx: AppStatus.UNINSTALLED),
    ("backend", lambda ctx: bool(ctx.app.backend_status), lambda ctx: parse_app_status(ctx.app.backend_status) or AppStatus.INSTALLED),
    ("stale-absolute", _is_stale_absolute, lambda ctx: AppStatus.UNINSTALLED),
    ("heuristic", lambda ctx: ctx.app.match_type is MatchType.HEURISTIC, lambda ctx: AppStatus.UPDATED),
    ("default", lambda ctx: True, lambda ctx: AppStatus.INSTALLED),
)


def resolve_status(ctx: StatusContext) -> AppStatus:
    for _name, predicate, outcome in STATUS_RULES:
        if predicate(ctx):
            return outcome(ctx)
    return AppStatus.INSTALLED


def compute_app_status(apps: Iterable[AppRecord], now: datetime, stale_after_days: int = 30) -> tuple[AppRecord, ...]:
    groups: dict[tuple[str, str], list[AppRecord]] = {}
    for app in apps:
        groups.setdefault(group_key(app), []).append(app)

    stale_after = timedelta(days=stale_after_days)
    result: list[AppRecord] = []
    for entries in groups.values():
        for index, app in enumerate(newest_first(entries)):
            ctx = StatusContext(app=app, is_newest=index == 0, now=now, stale_after=stale_after)
            result.append(replace(app, status=resolve_status(ctx)))
    return tuple(result)


def is_active(app: AppRecord) -> bool:
    return app.status in {AppStatus.INSTALLED, AppStatus.UPDATED}


def app_status_summary(apps: Iterable[AppRecord], backend_summary: dict[str, Any] | None = None) -> AppStatusSummary:
    apps = list(apps)
    computed = {
        "total": len(apps),
        "installed": sum(1 for app in apps if app.status is AppStatus.INSTALLED),
        "updated": sum(1 for app in apps if app.status is AppStatus.UPDATED),
        "uninstalled": sum(1 for app in apps if app.status is AppStatus.UNINSTALLED),
    }
    backend = backend_summary or {}
    values = {}
    for name, aliases in APP_SUMMARY_ALIASES.items():
        supplied = resolve(backend, aliases, accept=lambda v: isinstance(v, int) and not isinstance(v, bool))
        values[name] = supplied if supplied is not None else computed[name]
    return AppStatusSummary(**values)


def collapse_apps_by_name_vendor(apps: Iterable[AppRecord]) -> list[dict[str, Any]]:
    """Fold sightings sharing a name and vendor into the latest one plus older versions."""
    grouped: dict[str, dict[str, Any]] = {}
    for app in apps:
        key = f"{(app.app_name or '').lower()}|{(app.vendor or '').lower()}"
        entry = grouped.get(key)
        if entry is None:
            grouped[key] = {"latest": app, "older": []}
            continue
        if _sort_instant(app.last_seen) > _sort_instant(entry["latest"].last_seen):
            entry["older"].append(entry["latest"])
            entry["latest"] = app
        else:
            entry["older"].append(app)
    return list(grouped.values())


def derive_last_scan_time(apps: Iterable[AppRecord], sample: int = 5) -> datetime | None:
    # median of the most recent sightings, so one outlier cannot move it
    stamps = sorted((app.last_seen for app in apps if app.last_seen is not None), reverse=True)[:sample]
    if not stamps:
        return None
    return stamps[len(stamps) // 2]
