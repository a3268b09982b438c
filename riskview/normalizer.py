from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from riskview.models import (
    AppRecord,
    AppStatus,
    CveRecord,
    DetectionMethod,
    DeviceSummary,
    MatchType,
    RiskConstituents,
    Severity,
)
from riskview.severity import parse_severity, weight

LOGGER = logging.getLogger(__name__)


# canonical field -> ordered source aliases. Adding a backend spelling is a
# one-line change here.
SUMMARY_ALIASES: dict[str, tuple[str, ...]] = {
    "critical": ("criticalCveCount", "critical", "criticalCves"),
    "high": ("highCveCount", "high", "highCves"),
    "medium": ("mediumCveCount", "medium", "mediumCves"),
    "low": ("lowCveCount", "low", "lowCves"),
    "cve_count": ("totalCveCount", "cveCount", "cves"),
    "vulnerable_app_count": ("vulnerableAppCount", "vulnerableApps", "appsWithCves", "appWithVulnCount"),
    "app_count": ("appCount", "apps"),
    "known_exploit_count": ("knownExploitCount", "exploitedCveCount", "exploitCount"),
    "known_exploit_ids": ("knownExploitIds", "exploitedCveIds"),
    "worst_severity": ("highestRiskBucket", "worstSeverity"),
    "score": ("riskScore", "score", "riskScoreNormalized", "risk"),
    "constituents": ("riskScoreConstituents", "constituents"),
    "cve_ids": ("cveIds", "topCveIds", "recentCveIds"),
}

CONSTITUENT_ALIASES: dict[str, tuple[str, ...]] = {
    "max_cvss_normalized": ("maxCvssNormalized", "maxCvss", "highestCvssNormalized", "highestCvss"),
    "max_epss_stored": ("maxEpssStored", "maxEpss", "maxEpssProbability"),
    "exposure_factor": ("exposureFactor",),
    "privilege_factor": ("privilegeFactor",),
    "epss_date": ("epssDate", "epssScoreDate"),
}

NESTED_CVE_ID_ALIASES = ("cveId", "cveID", "CVE")

APP_ALIASES: dict[str, tuple[str, ...]] = {
    "app_name": ("appName", "AppName"),
    "vendor": ("vendor", "AppVendor", "appVendor"),
    "version": ("applicationVersion", "ApplicationVersion", "version", "Version"),
    "match_type": ("matchType", "MatchType"),
    "is_installed": ("isInstalled", "IsInstalled"),
    "first_seen": ("firstSeen", "FirstSeen"),
    "last_seen": ("lastSeen", "LastSeen"),
    "app_row_key": ("appRowKey", "RowKey", "rowKey"),
    "status": ("status", "Status"),
}

CVE_ALIASES: dict[str, tuple[str, ...]] = {
    "cve_id": ("cveId", "CveId", "cveID", "CVE"),
    "app_name": ("appName", "AppName"),
    "vendor": ("vendor", "AppVendor", "appVendor"),
    "severity": ("severity", "Severity"),
    "epss_probability": ("epssProbability", "epss", "EPSS"),
    "cvss_score": ("cvssScore", "score", "Score", "cvss"),
    "last_seen": ("lastDetected", "lastSeen", "LastSeen"),
    "app_status": ("appStatus", "AppStatus"),
    "app_row_key": ("appRowKey", "rowKey"),
    "detection_method": ("detectionMethod", "DetectionMethod", "howFound", "HowFound", "source", "Source", "detectedBy", "DetectedBy"),
    "is_patched": ("isPatched", "IsPatched"),
}

MATCH_TYPE_MAP = {
    "absolute": MatchType.ABSOLUTE,
    "exact": MatchType.ABSOLUTE,
    "2": MatchType.ABSOLUTE,
    "heuristic": MatchType.HEURISTIC,
    "1": MatchType.HEURISTIC,
}

APP_STATUS_MAP = {
    "installed": AppStatus.INSTALLED,
    "updated": AppStatus.UPDATED,
    "uninstalled": AppStatus.UNINSTALLED,
}

_IP_SPLIT = re.compile(r"[;,\s]+")
_MISSING = object()


def resolve(raw: Any, aliases: Iterable[str], accept: Callable[[Any], bool] | None = None, default: Any = None) -> Any:
    """Return the first alias value in ``raw`` that is set (and accepted)."""
    if not isinstance(raw, dict):
        return default
    for alias in aliases:
        value = raw.get(alias, _MISSING)
        if value is _MISSING or value is None or value == "":
            continue
        if accept is not None and not accept(value):
            continue
        return value
    return default


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_mapping(value: Any) -> bool:
    return isinstance(value, dict)


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _to_count(value: Any) -> int:
    number = _to_float(value)
    if number is None or number < 0:
        return 0
    return int(number)


def _to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes"}:
            return True
        if lowered in {"false", "0", "no"}:
            return False
    return None


def _unique_ids(values: Iterable[Any]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        if isinstance(value, str) and value:
            seen.setdefault(value, None)
    return tuple(seen)


def round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def clamp_score(value: float) -> float:
    return min(100.0, max(0.0, value))


def parse_timestamp(value: Any) -> datetime | None:
    """Parse datetimes, ISO-8601 strings and epoch seconds/milliseconds.

    Anything unparseable yields None; callers order such values as epoch 0.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            LOGGER.debug("Unparseable epoch timestamp %r", value)
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            LOGGER.debug("Unparseable timestamp %r", value)
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def parse_ip_addresses(value: Any) -> list[str]:
    if _is_list(value):
        return [str(item).strip() for item in value if isinstance(item, str) and item.strip()]
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            return parse_ip_addresses(decoded)
        return [part for part in _IP_SPLIT.split(value) if part]
    return []


def decode_payload(raw: Any) -> Any:
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except ValueError:
            LOGGER.warning("Ignoring undecodable JSON payload (%d chars)", len(raw))
            return None
    return raw


def _normalize_cvss(value: Any) -> float | None:
    number = _to_float(value)
    if number is None:
        return None
    # Some backends store the raw 0-10 base score under maxCvss.
    if number > 1:
        number = number / 10.0
    return min(1.0, max(0.0, number))


def _constituent(primary: dict[str, Any], fallback: dict[str, Any], name: str) -> Any:
    aliases = CONSTITUENT_ALIASES[name]
    value = resolve(primary, aliases)
    if value is None:
        value = resolve(fallback, aliases)
    return value


def _summary_cve_ids(summary: dict[str, Any]) -> tuple[str, ...]:
    ids = resolve(summary, SUMMARY_ALIASES["cve_ids"], accept=lambda v: _is_list(v) and any(v))
    if ids:
        return _unique_ids(ids)
    nested = summary.get("cves")
    if _is_list(nested):
        return _unique_ids(resolve(item, NESTED_CVE_ID_ALIASES) for item in nested)
    return ()


def derive_worst_severity(critical: int, high: int, medium: int, low: int) -> Severity:
    if critical > 0:
        return Severity.CRITICAL
    if high > 0:
        return Severity.HIGH
    if medium > 0:
        return Severity.MEDIUM
    return Severity.LOW


def normalize_summary(raw: Any) -> DeviceSummary | None:
    summary = decode_payload(raw)
    if not isinstance(summary, dict):
        return None

    critical = _to_count(resolve(summary, SUMMARY_ALIASES["critical"], accept=_is_number, default=0))
    high = _to_count(resolve(summary, SUMMARY_ALIASES["high"], accept=_is_number, default=0))
    medium = _to_count(resolve(summary, SUMMARY_ALIASES["medium"], accept=_is_number, default=0))
    low = _to_count(resolve(summary, SUMMARY_ALIASES["low"], accept=_is_number, default=0))
    cve_count = _to_count(resolve(summary, SUMMARY_ALIASES["cve_count"], accept=_is_number, default=critical + high + medium + low))

    explicit_worst = resolve(summary, SUMMARY_ALIASES["worst_severity"], accept=lambda v: bool(str(v).strip()))
    if explicit_worst is not None:
        worst = parse_severity(explicit_worst)
        if worst is Severity.UNKNOWN:
            worst = derive_worst_severity(critical, high, medium, low)
    else:
        worst = derive_worst_severity(critical, high, medium, low)

    explicit_score = _to_float(resolve(summary, SUMMARY_ALIASES["score"], accept=lambda v: _to_float(v) is not None))
    if explicit_score is None:
        explicit_score = cve_count * 2 + weight(worst) * 10 if cve_count else 0.0
    score = round_half_up(clamp_score(explicit_score))

    nested = resolve(summary, SUMMARY_ALIASES["constituents"], accept=_is_mapping, default={})
    exploit_ids = resolve(summary, SUMMARY_ALIASES["known_exploit_ids"], accept=_is_list, default=[])
    constituents = RiskConstituents(
        max_cvss_normalized=_normalize_cvss(_constituent(summary, nested, "max_cvss_normalized")),
        max_epss_stored=_to_float(_constituent(summary, nested, "max_epss_stored")),
        exposure_factor=_to_float(_constituent(nested, summary, "exposure_factor")),
        privilege_factor=_to_float(_constituent(nested, summary, "privilege_factor")),
        epss_date=parse_timestamp(_constituent(nested, summary, "epss_date")),
        cve_count=cve_count,
        cve_ids=_summary_cve_ids(summary),
        known_exploit_count=_to_count(resolve(summary, SUMMARY_ALIASES["known_exploit_count"], accept=_is_number, default=0)),
        known_exploit_ids=_unique_ids(exploit_ids),
    )
    return DeviceSummary(
        app_count=_to_count(resolve(summary, SUMMARY_ALIASES["app_count"], accept=_is_number, default=0)),
        cve_count=cve_count,
        critical_cve_count=critical,
        high_cve_count=high,
        medium_cve_count=medium,
        low_cve_count=low,
        vulnerable_app_count=_to_count(resolve(summary, SUMMARY_ALIASES["vulnerable_app_count"], accept=_is_number, default=0)),
        worst_severity=worst,
        score=score,
        constituents=constituents,
    )


def _match_type(value: Any) -> MatchType:
    if isinstance(value, MatchType):
        return value
    if value is None or isinstance(value, bool):
        return MatchType.NONE
    return MATCH_TYPE_MAP.get(str(value).strip().lower(), MatchType.NONE)


def parse_app_status(value: Any) -> AppStatus | None:
    if isinstance(value, AppStatus):
        return value
    if value is None:
        return None
    return APP_STATUS_MAP.get(str(value).strip().lower())


def normalize_app(raw: dict[str, Any]) -> AppRecord:
    version = resolve(raw, APP_ALIASES["version"])
    backend_status = resolve(raw, APP_ALIASES["status"])
    return AppRecord(
        app_name=str(resolve(raw, APP_ALIASES["app_name"], default="")),
        vendor=str(resolve(raw, APP_ALIASES["vendor"], default="")),
        version=str(version) if version is not None else None,
        match_type=_match_type(resolve(raw, APP_ALIASES["match_type"])),
        is_installed=_to_bool(resolve(raw, APP_ALIASES["is_installed"])),
        first_seen=parse_timestamp(resolve(raw, APP_ALIASES["first_seen"])),
        last_seen=parse_timestamp(resolve(raw, APP_ALIASES["last_seen"])),
        app_row_key=str(resolve(raw, APP_ALIASES["app_row_key"], default="")),
        backend_status=str(backend_status).strip().lower() if backend_status is not None else None,
    )


def classify_detection_source(value: Any) -> DetectionMethod:
    source = str(value or "").lower()
    if "ai" in source or "heur" in source:
        return DetectionMethod.HEURISTIC
    return DetectionMethod.DATABASE


def normalize_cve(raw: dict[str, Any], default_app_status: AppStatus = AppStatus.INSTALLED) -> CveRecord:
    severity = resolve(raw, CVE_ALIASES["severity"])
    return CveRecord(
        cve_id=str(resolve(raw, CVE_ALIASES["cve_id"], default="")),
        app_name=str(resolve(raw, CVE_ALIASES["app_name"], default="")),
        vendor=str(resolve(raw, CVE_ALIASES["vendor"], default="")),
        severity=parse_severity(severity),
        severity_label=str(severity).strip() if severity is not None else "",
        epss_probability=_to_float(resolve(raw, CVE_ALIASES["epss_probability"])),
        cvss_score=_to_float(resolve(raw, CVE_ALIASES["cvss_score"])),
        last_seen=parse_timestamp(resolve(raw, CVE_ALIASES["last_seen"])),
        app_row_key=str(resolve(raw, CVE_ALIASES["app_row_key"], default="")),
        app_status=parse_app_status(resolve(raw, CVE_ALIASES["app_status"])) or default_app_status,
        detection_method=classify_detection_source(resolve(raw, CVE_ALIASES["detection_method"], default="database")),
        is_patched=_to_bool(resolve(raw, CVE_ALIASES["is_patched"])),
    )


def normalize_apps(items: Iterable[Any]) -> list[AppRecord]:
    return [normalize_app(item) for item in items if isinstance(item, dict)]


def normalize_cves(items: Iterable[Any], default_app_status: AppStatus = AppStatus.INSTALLED) -> list[CveRecord]:
    return [normalize_cve(item, default_app_status) for item in items if isinstance(item, dict)]
