from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from riskview.models import CveRecord, DeviceSummary, RiskConstituents, Severity
from riskview.normalizer import normalize_cve
from riskview.scoring import calculate_risk_score, enrich_score, risk_band, score_from_cves

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _cves(*severities: Severity) -> list[CveRecord]:
    return [CveRecord(cve_id=f"CVE-2024-{i}", severity=sev) for i, sev in enumerate(severities)]


def _summary(score: int = 50, **constituents) -> DeviceSummary:
    defaults = {
        "max_cvss_normalized": 0.9,
        "max_epss_stored": 0.5,
        "exposure_factor": 1.2,
        "privilege_factor": 1.0,
        "epss_date": NOW,
        "cve_count": 3,
        "cve_ids": ("CVE-2024-0001",),
    }
    defaults.update(constituents)
    return DeviceSummary(cve_count=3, score=score, constituents=RiskConstituents(**defaults))


def test_score_from_cves_uses_worst_weight_not_sum():
    assert score_from_cves(_cves(Severity.CRITICAL, Severity.LOW)) == 2 * 2 + 30
    assert score_from_cves(_cves(Severity.MEDIUM, Severity.MEDIUM, Severity.MEDIUM)) == 3 * 2 + 10


def test_score_from_cves_bounds():
    assert score_from_cves([]) == 0
    assert score_from_cves(_cves(*[Severity.CRITICAL] * 80)) == 100
    assert score_from_cves(_cves(Severity.UNKNOWN)) == 0


def test_unrecognized_severity_counts_as_low():
    reported = [normalize_cve({"cveId": "CVE-1", "appName": "A", "severity": "Informational"})]
    assert reported[0].severity is Severity.UNKNOWN
    assert score_from_cves(reported) == 1 * 2 + 5
    assert calculate_risk_score(DeviceSummary(score=0), reported) == 7

    blank = [normalize_cve({"cveId": "CVE-2", "appName": "A", "severity": "  "})]
    assert score_from_cves(blank) == 0
    assert score_from_cves(reported + _cves(Severity.HIGH)) == 2 * 2 + 20


def test_score_from_cves_monotone():
    base = _cves(Severity.LOW, Severity.MEDIUM)
    more = base + _cves(Severity.LOW)
    worse = base + _cves(Severity.CRITICAL)
    assert score_from_cves(more) >= score_from_cves(base)
    assert score_from_cves(worse) >= score_from_cves(more)


def test_calculate_risk_score_prefers_summary():
    assert calculate_risk_score(DeviceSummary(score=64), _cves(Severity.LOW)) == 64


def test_calculate_risk_score_falls_back_to_inventory():
    cves = _cves(Severity.HIGH)
    assert calculate_risk_score(None, cves) == 22
    assert calculate_risk_score(DeviceSummary(score=0), cves) == 22
    assert calculate_risk_score(None, []) == 0


def test_enriched_score_example():
    result = enrich_score(_summary(), [], {"CVE-2024-0001"}, NOW)
    assert result.score == pytest.approx(81.0)
    assert result.enrichment_factors.has_known_exploit is True
    assert result.enrichment_factors.time_decay_factor == 1.0
    assert result.enrichment_factors.days_since_epss == 0


def test_enriched_score_without_exploit_data():
    result = enrich_score(_summary(), [], None, NOW)
    assert result.score == pytest.approx(54.0)
    assert result.enrichment_factors.has_known_exploit is False


def test_exploit_data_never_lowers_score():
    summary = _summary()
    cves = _cves(Severity.HIGH)
    before = enrich_score(summary, cves, None, NOW).score
    after = enrich_score(summary, cves, {"CVE-2024-0"}, NOW).score
    assert after >= before


def test_exploit_multiplier_below_one_is_ignored():
    result = enrich_score(_summary(), [], {"CVE-2024-0001"}, NOW, scoring={"exploit_multiplier": 0.5})
    assert result.enrichment_factors.has_known_exploit is True
    assert result.score == pytest.approx(54.0)


def test_known_exploit_lookup_ignores_case():
    lower = [CveRecord(cve_id="cve-2024-7")]
    assert enrich_score(_summary(cve_ids=()), lower, {"CVE-2024-7"}, NOW).enrichment_factors.has_known_exploit is True
    assert enrich_score(_summary(cve_ids=("cve-2024-0001",)), [], {"CVE-2024-0001"}, NOW).score == pytest.approx(81.0)


def test_time_decay_floor_and_rounding():
    aged = enrich_score(_summary(epss_date=NOW - timedelta(days=73)), [], None, NOW)
    assert aged.enrichment_factors.time_decay_factor == pytest.approx(0.8)
    assert aged.enrichment_factors.days_since_epss == 73
    assert aged.score == pytest.approx(43.2)

    ancient = enrich_score(_summary(epss_date=NOW - timedelta(days=900)), [], None, NOW)
    assert ancient.enrichment_factors.time_decay_factor == pytest.approx(0.1)


def test_future_epss_date_does_not_inflate():
    result = enrich_score(_summary(epss_date=NOW + timedelta(days=10)), [], None, NOW)
    assert result.enrichment_factors.days_since_epss == 0
    assert result.enrichment_factors.time_decay_factor == 1.0


def test_unparsed_epss_date_means_no_decay():
    result = enrich_score(_summary(epss_date=None), [], None, NOW)
    assert result.enrichment_factors.time_decay_factor == 1.0
    assert result.enrichment_factors.days_since_epss == 0


def test_missing_factors_are_neutral():
    result = enrich_score(_summary(exposure_factor=None, privilege_factor=None), [], None, NOW)
    assert result.score == pytest.approx(45.0)


def test_enriched_score_is_clamped():
    result = enrich_score(_summary(max_cvss_normalized=1.0, max_epss_stored=1.0, exposure_factor=2.0), [], {"CVE-2024-0001"}, NOW)
    assert result.score == 100.0


def test_falls_back_to_base_score_without_constituents():
    missing_epss = enrich_score(_summary(score=37, max_epss_stored=None), [], None, NOW)
    assert missing_epss.score == 37
    assert missing_epss.enriched is False
    assert missing_epss.to_dict()["enrichment_factors"] == {}

    no_cves = enrich_score(_summary(score=12, cve_count=0), [], None, NOW)
    assert no_cves.score == 12

    no_summary = enrich_score(None, _cves(Severity.HIGH), None, NOW)
    assert no_summary.score == 22
    assert no_summary.constituents is None


def test_risk_band():
    assert risk_band(80) == "critical"
    assert risk_band(79.99) == "elevated"
    assert risk_band(40) == "moderate"
    assert risk_band(0) == "low"
