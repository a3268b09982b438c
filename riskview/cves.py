from __future__ import annotations

from typing import AbstractSet, Any, Iterable, Sequence

from riskview.inventory import is_active, normalize_app_name
from riskview.models import AppRecord, AppStatus, CveRecord, DetectionBucket, DetectionMethod, MitigationStats, Severity
from riskview.severity import cvss_from_severity, label_from_weight, weight, worst_severity


def dedupe(cves: Iterable[CveRecord]) -> tuple[CveRecord, ...]:
    """One record per ``cveId|appRowKey``; the last occurrence wins."""
    unique: dict[str, CveRecord] = {}
    for cve in cves:
        unique[cve.dedup_key] = cve
    return tuple(unique.values())


def active_app_names(apps: Iterable[AppRecord]) -> set[str]:
    return {normalize_app_name(app.app_name) for app in apps if is_active(app)}


def partition_active_vs_mitigated(
    cves: Sequence[CveRecord],
    apps: Iterable[AppRecord],
    backend_mitigated: Sequence[CveRecord] | None = None,
) -> tuple[tuple[CveRecord, ...], tuple[CveRecord, ...]]:
    names = active_app_names(apps)
    active = tuple(cve for cve in cves if normalize_app_name(cve.app_name) in names)
    if backend_mitigated:
        # backend lists carry the authoritative app status at detection time
        return active, tuple(backend_mitigated)
    mitigated = tuple(cve for cve in cves if normalize_app_name(cve.app_name) not in names)
    return active, mitigated


def compute_mitigation_stats(mitigated: Sequence[CveRecord], apps: Iterable[AppRecord]) -> MitigationStats:
    by_severity = {"critical": 0, "high": 0, "medium": 0, "low": 0}
    for cve in mitigated:
        key = cve.severity.value.lower()
        if key in by_severity:
            by_severity[key] += 1
    return MitigationStats(
        total_mitigated=len(mitigated),
        mitigated_apps=sum(1 for app in apps if app.status is AppStatus.UNINSTALLED),
        by_severity=by_severity,
        mitigated_cves=tuple(mitigated),
    )


def detection_buckets(cves: Iterable[CveRecord]) -> dict[str, DetectionBucket]:
    by_method: dict[DetectionMethod, list[Severity]] = {method: [] for method in DetectionMethod}
    for cve in cves:
        by_method[cve.detection_method].append(cve.severity)
    return {
        method.value: DetectionBucket(count=len(severities), highest=worst_severity(severities))
        for method, severities in by_method.items()
    }


def exploit_lookup(known_ids: AbstractSet[str]) -> frozenset[str]:
    """Upper-cased ids for case-insensitive CVE matching."""
    return frozenset(str(item).strip().upper() for item in known_ids)


def known_exploit_matches(cves: Iterable[CveRecord], known_ids: AbstractSet[str] | None) -> tuple[str, ...]:
    if not known_ids:
        return ()
    known = exploit_lookup(known_ids)
    matched: dict[str, str] = {}
    for cve in cves:
        key = cve.cve_id.strip().upper()
        if key in known:
            matched.setdefault(key, cve.cve_id)
    return tuple(matched.values())


def top_vulnerable_apps(cves: Iterable[CveRecord], limit: int = 15) -> list[dict[str, Any]]:
    by_app: dict[str, list[CveRecord]] = {}
    for cve in cves:
        name = (cve.app_name or "").strip()
        if name:
            by_app.setdefault(name, []).append(cve)

    ranked = []
    for app_name, items in by_app.items():
        worst = max((weight(item.severity) for item in items), default=0.0)
        ranked.append({
            "app_name": app_name,
            "cve_count": len(items),
            "worst_severity": label_from_weight(worst).value,
        })
    ranked.sort(key=lambda x: (-x["cve_count"], -weight(x["worst_severity"]), x["app_name"]))
    return ranked[:limit]


def top_cves(cves: Iterable[CveRecord], limit: int = 25) -> list[dict[str, Any]]:
    ordered = sorted(cves, key=lambda c: (-weight(c.severity), c.cve_id))
    return [
        {
            "cve_id": cve.cve_id,
            "severity": cve.severity.value,
            "cvss_score": cve.cvss_score if cve.cvss_score is not None else cvss_from_severity(cve.severity),
            "app_name": cve.app_name,
            "is_patched": cve.is_patched,
        }
        for cve in ordered[:limit]
    ]
