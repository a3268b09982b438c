"""Canonical device risk view assembly.

``build_device_view`` is a pure function of ``(raw device payload,
known-exploit set, now)``: the same inputs always produce the same
``to_dict()`` output. Callers re-run it when exploit data arrives and keep
the newest result with ``riskview.refresh.ViewLedger``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import AbstractSet, Any

from riskview.cves import (
    compute_mitigation_stats,
    dedupe,
    detection_buckets,
    known_exploit_matches,
    partition_active_vs_mitigated,
    top_cves,
    top_vulnerable_apps,
)
from riskview.inventory import app_status_summary, collapse_apps_by_name_vendor, compute_app_status, derive_last_scan_time
from riskview.models import AppStatus, DeviceRiskView, NetworkRiskAssessment, utc_now
from riskview.network import analyze_network_risk, detect_mobile_device, history_ips, most_recent_first
from riskview.normalizer import decode_payload, normalize_apps, normalize_cves, normalize_summary, parse_ip_addresses, resolve
from riskview.scoring import calculate_risk_score, enrich_score
from riskview.severity import severity_histogram

LOGGER = logging.getLogger(__name__)

DEVICE_ID_ALIASES = ("deviceId", "DeviceId", "id")
SUMMARY_KEYS = ("summary", "Summary")
CURRENT_IP_ALIASES = ("ipAddresses", "IPAddresses")
STATE_ALIASES = ("state", "State")

EXPLOIT_DATA_UNAVAILABLE = "Using baseline risk scores (known exploits unavailable)"

RECOMMEND_PUBLIC_IP = "Reduce network exposure: avoid public IPs where possible; enforce firewalling/VPN."
RECOMMEND_APIPA = "Investigate network misconfiguration (APIPA addresses detected)."
RECOMMEND_KNOWN_EXPLOITS = "Prioritize remediation for CVEs with known public exploitation."
RECOMMEND_CRITICAL = "Prioritize patching for CRITICAL vulnerabilities."
RECOMMEND_NO_CVES = "No CVEs detected in current inventory. Continue monitoring."
RECOMMEND_DEVICE_STATE = "Validate license/device state and re-register if needed."


class DeviceIdentifierError(ValueError):
    """Raised when a device payload carries no identifier."""


def _items(value: Any, keys: tuple[str, ...] = ("items",)) -> list[Any]:
    value = decode_payload(value)
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in keys:
            if isinstance(value.get(key), list):
                return value[key]
    return []


def _raw_summary(device: dict[str, Any]) -> Any:
    raw = resolve(device, SUMMARY_KEYS)
    if raw is None:
        raw = resolve(device.get("device"), SUMMARY_KEYS)
    return raw


def _ip_history(device: dict[str, Any]) -> list[Any]:
    history = device.get("ipHistory")
    if isinstance(history, list):
        return history
    telemetry = device.get("telemetry")
    if isinstance(telemetry, dict) and isinstance(telemetry.get("history"), list):
        return telemetry["history"]
    return []


def _current_ips(device: dict[str, Any], history: list[Any]) -> list[str]:
    ips = parse_ip_addresses(resolve(device, CURRENT_IP_ALIASES))
    if ips:
        return ips
    telemetry = device.get("telemetry")
    latest = telemetry.get("latest") if isinstance(telemetry, dict) else None
    fields = latest.get("fields") if isinstance(latest, dict) else None
    ips = parse_ip_addresses(resolve(fields, CURRENT_IP_ALIASES))
    if ips:
        return ips
    ordered = most_recent_first(history)
    return history_ips(ordered[0]) if ordered else []


def build_recommendations(
    network: NetworkRiskAssessment,
    known_exploit_count: int,
    critical_count: int,
    cve_count: int,
    device_state: Any = None,
) -> tuple[str, ...]:
    recommendations = []
    if device_state is not None and str(device_state).strip().upper() != "ACTIVE":
        recommendations.append(RECOMMEND_DEVICE_STATE)
    if network.public_ip_present:
        recommendations.append(RECOMMEND_PUBLIC_IP)
    if network.apipa_present:
        recommendations.append(RECOMMEND_APIPA)
    if known_exploit_count > 0:
        recommendations.append(RECOMMEND_KNOWN_EXPLOITS)
    if critical_count > 0:
        recommendations.append(RECOMMEND_CRITICAL)
    if cve_count == 0:
        recommendations.append(RECOMMEND_NO_CVES)
    return tuple(recommendations)


def build_device_view(
    raw_device: Any,
    known_exploit_ids: AbstractSet[str] | None = None,
    now: datetime | None = None,
    sequence: int | None = None,
    settings: dict[str, Any] | None = None,
) -> DeviceRiskView:
    device = decode_payload(raw_device)
    if not isinstance(device, dict):
        device = {}
    device_id = resolve(device, DEVICE_ID_ALIASES)
    if device_id is None:
        raise DeviceIdentifierError("Device payload has no deviceId")
    device_id = str(device_id)

    now = now or utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    settings = settings or {}
    scoring = settings.get("scoring", {})
    inventory_settings = settings.get("inventory", {})
    network_settings = settings.get("network", {})

    summary = normalize_summary(_raw_summary(device))

    raw_apps = decode_payload(device.get("apps"))
    backend_app_summary = raw_apps.get("summary") if isinstance(raw_apps, dict) else None
    apps = compute_app_status(
        normalize_apps(_items(raw_apps)),
        now,
        stale_after_days=int(inventory_settings.get("stale_after_days", 30)),
    )

    raw_cves = decode_payload(device.get("cves"))
    cves = dedupe(normalize_cves(_items(raw_cves, ("items", "cves"))))
    raw_mitigated = _items(device.get("mitigatedCves"))
    if not raw_mitigated and isinstance(raw_cves, dict):
        raw_mitigated = _items(raw_cves.get("mitigatedCves"))
    backend_mitigated = dedupe(normalize_cves(raw_mitigated, default_app_status=AppStatus.UPDATED))

    active, mitigated = partition_active_vs_mitigated(cves, apps, backend_mitigated)
    active_counts = severity_histogram(active)

    base_score = calculate_risk_score(summary, cves)
    enriched = enrich_score(summary, cves, known_exploit_ids, now, base_score=base_score, scoring=scoring)
    exploit_data_available = known_exploit_ids is not None
    known_exploit_count = len(known_exploit_matches(active, known_exploit_ids))

    history = _ip_history(device)
    network = analyze_network_risk(
        _current_ips(device, history),
        history,
        recent_window=int(network_settings.get("recent_window", 5)),
        rapid_change_threshold=int(network_settings.get("rapid_change_threshold", 3)),
    )
    mobility = detect_mobile_device(history, stationary_threshold=int(network_settings.get("stationary_threshold", 3)))

    if not exploit_data_available:
        LOGGER.debug("Device %s scored without known-exploit data", device_id)

    return DeviceRiskView(
        device_id=device_id,
        computed_at=now,
        summary=summary,
        base_score=base_score,
        enriched=enriched,
        apps=apps,
        app_summary=app_status_summary(apps, backend_app_summary),
        active_cves=active,
        mitigated_cves=mitigated,
        mitigation_stats=compute_mitigation_stats(mitigated, apps),
        active_severity_counts=active_counts,
        detection_buckets=detection_buckets(cves),
        known_exploit_count=known_exploit_count,
        exploit_data_available=exploit_data_available,
        network=network,
        mobility=mobility,
        top_vulnerable_apps=tuple(top_vulnerable_apps(active)),
        top_cves=tuple(top_cves(active)),
        app_groups=tuple(collapse_apps_by_name_vendor(apps)),
        last_scan_time=derive_last_scan_time(apps),
        recommendations=build_recommendations(
            network,
            known_exploit_count,
            active_counts["CRITICAL"],
            len(active),
            device_state=resolve(device, STATE_ALIASES),
        ),
        exploit_status_message=None if exploit_data_available else EXPLOIT_DATA_UNAVAILABLE,
        sequence=sequence,
    )
