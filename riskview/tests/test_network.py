from __future__ import annotations

import pytest

from riskview.models import NetworkRisk
from riskview.network import (
    APIPA_FACTOR,
    PUBLIC_IP_FACTOR,
    analyze_network_risk,
    detect_mobile_device,
    is_private_ip,
    most_recent_first,
)


def _entry(ts: str, *ips: str) -> dict:
    return {"timestamp": ts, "ipAddresses": list(ips)}


def test_apipa_is_high_risk():
    result = analyze_network_risk(["169.254.1.5"])
    assert result.risk is NetworkRisk.HIGH
    assert result.apipa_present is True
    assert result.public_ip_present is False
    assert result.reason == APIPA_FACTOR


def test_public_ip_is_medium_risk():
    result = analyze_network_risk(["203.0.113.9"])
    assert result.risk is NetworkRisk.MEDIUM
    assert result.public_ip_present is True
    assert result.risk_factors == (PUBLIC_IP_FACTOR,)


def test_private_ip_is_normal():
    result = analyze_network_risk(["192.168.1.5"])
    assert result.risk is NetworkRisk.NORMAL
    assert result.reason == ""
    assert result.risk_factors == ()


def test_loopback_and_garbage_are_ignored():
    result = analyze_network_risk(["127.0.0.1", "not-an-ip", "", "::1", "fe80::1%eth0", "fd00::5"])
    assert result.risk is NetworkRisk.NORMAL


def test_risk_factors_deduplicated():
    result = analyze_network_risk(["8.8.8.8", "1.1.1.1", "169.254.0.9", "169.254.3.3"])
    assert result.risk_factors == (PUBLIC_IP_FACTOR, APIPA_FACTOR)
    assert result.risk is NetworkRisk.HIGH
    assert result.reason == PUBLIC_IP_FACTOR


def test_rapid_network_changes_flagged():
    history = [
        _entry("2024-01-01T00:00:00Z", "10.0.0.1"),
        _entry("2024-01-02T00:00:00Z", "10.0.0.2"),
        _entry("2024-01-03T00:00:00Z", "10.0.0.3"),
        _entry("2024-01-04T00:00:00Z", "10.0.0.4"),
    ]
    result = analyze_network_risk(["10.0.0.4"], history)
    assert result.suspicious_patterns == ("Rapid network changes: 4 different IPs in recent activity",)
    assert result.risk is NetworkRisk.NORMAL


def test_rapid_changes_only_consider_recent_window():
    history = [_entry(f"2024-01-{day:02d}T00:00:00Z", f"10.0.0.{day}") for day in range(1, 10)]
    history += [_entry(f"2024-02-{day:02d}T00:00:00Z", "10.1.0.1") for day in range(1, 6)]
    result = analyze_network_risk([], history)
    assert result.suspicious_patterns == ()


def test_most_recent_first_puts_undated_last():
    undated = {"ipAddresses": ["10.0.0.9"]}
    old = _entry("2024-01-01T00:00:00Z", "10.0.0.1")
    new = {"Timestamp": 1706745600, "fields": {"IPAddresses": "10.0.0.2"}}
    assert most_recent_first([undated, old, new]) == [new, old, undated]


def test_is_private_ip():
    assert is_private_ip("10.1.2.3")
    assert is_private_ip("172.31.0.1")
    assert not is_private_ip("172.32.0.1")
    assert not is_private_ip("garbage")


def test_stationary_device():
    history = [_entry("2024-01-01T00:00:00Z", "10.0.0.1", "10.0.0.2"), _entry("2024-01-02T00:00:00Z", "10.0.0.1")]
    status = detect_mobile_device(history)
    assert status.is_mobile is False
    assert status.unique_ip_count == 2
    assert status.category == "Stationary Device"
    assert status.confidence == 1.0


def test_mobile_device_confidence():
    history = [_entry("2024-01-01T00:00:00Z", *[f"10.0.0.{i}" for i in range(1, 6)])]
    status = detect_mobile_device(history, stationary_threshold=3)
    assert status.is_mobile is True
    assert status.category == "Mobile Device"
    assert status.confidence == pytest.approx(0.2)
    assert detect_mobile_device(None).unique_ip_count == 0
