"""Device risk scoring.

Provides the baseline volume/severity score, the summary-vs-inventory
fallback, and the enriched multi-factor score (CVSS x EPSS, exposure,
privilege, known exploitation and EPSS staleness).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import AbstractSet, Any, Iterable, Sequence

from riskview.cves import exploit_lookup
from riskview.models import CveRecord, DeviceSummary, EnrichedScore, EnrichmentFactors, Severity
from riskview.normalizer import clamp_score
from riskview.severity import weight

LOGGER = logging.getLogger(__name__)

MS_PER_DAY = 86_400_000

DEFAULT_SCORING = {
    "exploit_multiplier": 1.5,
    "decay_floor": 0.1,
    "decay_horizon_days": 365,
}

RISK_BANDS = (
    (80, "critical"),
    (60, "elevated"),
    (40, "moderate"),
)


def score_from_cves(cves: Iterable[CveRecord]) -> int:
    """Baseline score: ``total * 2 + worst_weight * 10`` clamped to 0-100.

    ``worst_weight`` is the weight of the single most severe CVE, not a sum.
    CVEs without a severity are not counted; a reported but unrecognized
    severity counts as LOW.
    """
    total = 0
    worst = 0.0
    for cve in cves:
        severity = cve.severity
        if severity is Severity.UNKNOWN:
            if not cve.severity_label:
                continue
            severity = Severity.LOW
        total += 1
        worst = max(worst, weight(severity))
    return int(clamp_score(total * 2 + worst * 10))


def calculate_risk_score(summary: DeviceSummary | None, cves: Sequence[CveRecord]) -> int:
    """Prefer the summary score; fall back to the live inventory.

    Summaries can be stale: a zero summary score with CVEs still present in
    the inventory yields the inventory-based score instead.
    """
    if summary is not None and summary.score:
        return summary.score
    if not cves:
        return 0
    if summary is not None:
        LOGGER.debug("Summary score is zero with %d CVEs in inventory, using inventory score", len(cves))
    return score_from_cves(cves)


def has_known_exploit(
    summary: DeviceSummary,
    cves: Iterable[CveRecord],
    known_exploit_ids: AbstractSet[str] | None,
) -> bool:
    if not known_exploit_ids:
        return False
    known = exploit_lookup(known_exploit_ids)
    if any(cve.cve_id.strip().upper() in known for cve in cves):
        return True
    return any(cve_id.strip().upper() in known for cve_id in summary.constituents.cve_ids)


def time_decay(epss_date: datetime | None, now: datetime, floor: float, horizon_days: float) -> tuple[float, float]:
    """Return ``(decay_factor, days_since_epss)``; unknown dates do not decay."""
    if epss_date is None:
        return 1.0, 0.0
    elapsed_ms = (now - epss_date).total_seconds() * 1000
    days = max(0.0, elapsed_ms / MS_PER_DAY)
    return max(floor, 1.0 - days / horizon_days), days


def enrich_score(
    summary: DeviceSummary | None,
    cves: Sequence[CveRecord],
    known_exploit_ids: AbstractSet[str] | None,
    now: datetime,
    base_score: float | None = None,
    scoring: dict[str, Any] | None = None,
) -> EnrichedScore:
    """Calculate the enriched device score (0-100, two decimals).

    Scoring factors:
    - CVSS x EPSS (risk factor)
    - exposure and privilege multipliers (neutral when absent)
    - known exploitation (x1.5)
    - EPSS staleness (linear decay over a year, floored at 10%)

    Without constituents, or with no CVEs, the base score is returned
    unchanged and no enrichment factors are reported.
    """
    params = {**DEFAULT_SCORING, **(scoring or {})}
    base = float(base_score if base_score is not None else (summary.score if summary else score_from_cves(cves)))
    if summary is None:
        return EnrichedScore(score=base)

    constituents = summary.constituents
    if constituents.cve_count == 0 or constituents.max_cvss_normalized is None or constituents.max_epss_stored is None:
        return EnrichedScore(score=base, constituents=constituents)

    risk_factor = constituents.max_cvss_normalized * constituents.max_epss_stored
    exploited = has_known_exploit(summary, cves, known_exploit_ids)
    exploit_factor = max(1.0, float(params["exploit_multiplier"])) if exploited else 1.0
    decay, days = time_decay(constituents.epss_date, now, params["decay_floor"], params["decay_horizon_days"])
    exposure = constituents.exposure_factor if constituents.exposure_factor is not None else 1.0
    privilege = constituents.privilege_factor if constituents.privilege_factor is not None else 1.0

    raw_score = risk_factor * exposure * privilege * exploit_factor * decay * 100
    return EnrichedScore(
        score=round(clamp_score(raw_score), 2),
        constituents=constituents,
        enrichment_factors=EnrichmentFactors(
            has_known_exploit=exploited,
            time_decay_factor=round(decay, 4),
            days_since_epss=int(days + 0.5),
        ),
    )


def risk_band(score: float) -> str:
    for threshold, label in RISK_BANDS:
        if score >= threshold:
            return label
    return "low"

