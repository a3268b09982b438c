from __future__ import annotations

from typing import Any, Iterable

from riskview.models import Severity


SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 3.0,
    Severity.HIGH: 2.0,
    Severity.MEDIUM: 1.0,
    Severity.LOW: 0.5,
    Severity.UNKNOWN: 0.0,
}

# Used only when a device reports a severity bucket but no CVSS value.
CVSS_ESTIMATES = {
    Severity.CRITICAL: 9.5,
    Severity.HIGH: 7.5,
    Severity.MEDIUM: 5.0,
    Severity.LOW: 2.5,
}

SEVERITY_ALIASES = {
    "CRITICAL": Severity.CRITICAL,
    "HIGH": Severity.HIGH,
    "IMPORTANT": Severity.HIGH,
    "MEDIUM": Severity.MEDIUM,
    "MODERATE": Severity.MEDIUM,
    "LOW": Severity.LOW,
}


def parse_severity(value: Any) -> Severity:
    if isinstance(value, Severity):
        return value
    if value is None:
        return Severity.UNKNOWN
    return SEVERITY_ALIASES.get(str(value).strip().upper(), Severity.UNKNOWN)


def weight(value: Any) -> float:
    return SEVERITY_WEIGHTS[parse_severity(value)]


def label_from_weight(value: float) -> Severity:
    if value >= 3:
        return Severity.CRITICAL
    if value >= 2:
        return Severity.HIGH
    if value >= 1:
        return Severity.MEDIUM
    return Severity.LOW


def cvss_from_severity(value: Any) -> float | None:
    return CVSS_ESTIMATES.get(parse_severity(value))


def worst_severity(values: Iterable[Any]) -> Severity | None:
    """Highest-weighted severity in ``values``, or None if nothing weighs above zero."""
    best: Severity | None = None
    best_weight = 0.0
    for value in values:
        current = weight(value)
        if current > best_weight:
            best = parse_severity(value)
            best_weight = current
    return best


def severity_histogram(records: Iterable[Any]) -> dict[str, int]:
    counts = {"CRITICAL": 0, "HIGH": 0, "MEDIUM": 0, "LOW": 0, "UNKNOWN": 0}
    for record in records:
        sev = parse_severity(getattr(record, "severity", record))
        counts[sev.value] += 1
    return counts
