"""Network exposure and mobility signals derived from a device's IP history."""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Iterable, Sequence

from riskview.models import EPOCH, MobilityStatus, NetworkRisk, NetworkRiskAssessment
from riskview.normalizer import parse_ip_addresses, parse_timestamp, resolve

LOGGER = logging.getLogger(__name__)

PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)
LOOPBACK_NETWORK = ipaddress.ip_network("127.0.0.0/8")
APIPA_NETWORK = ipaddress.ip_network("169.254.0.0/16")
UNIQUE_LOCAL_NETWORK = ipaddress.ip_network("fc00::/7")

APIPA_FACTOR = "APIPA detected: Device has network connectivity issues"
PUBLIC_IP_FACTOR = "Public IP detected: Device may be exposed to internet risks"

HISTORY_IP_ALIASES = ("ipAddresses", "IPAddresses", "ip_addresses", "ips")
HISTORY_TIME_ALIASES = ("timestamp", "Timestamp", "ts", "time")


def history_ips(entry: Any) -> list[str]:
    if not isinstance(entry, dict):
        return []
    raw = resolve(entry, HISTORY_IP_ALIASES)
    if raw is None:
        raw = resolve(entry.get("fields"), HISTORY_IP_ALIASES)
    return parse_ip_addresses(raw)


def most_recent_first(history: Sequence[Any]) -> list[Any]:
    """Order history newest first; entries without a parseable timestamp keep input order at the end."""
    def sort_key(item: tuple[int, Any]):
        index, entry = item
        stamp = parse_timestamp(resolve(entry, HISTORY_TIME_ALIASES)) if isinstance(entry, dict) else None
        return (stamp is None, -(stamp or EPOCH).timestamp(), index)

    return [entry for _, entry in sorted(enumerate(history), key=sort_key)]


def _parse_address(value: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(value.split("%", 1)[0])
    except ValueError:
        LOGGER.debug("Ignoring unparseable IP address %r", value)
        return None


def _is_private(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    if address.version == 4:
        return any(address in network for network in PRIVATE_NETWORKS)
    return address in UNIQUE_LOCAL_NETWORK


def is_private_ip(value: str) -> bool:
    """RFC 1918 (and IPv6 unique-local) check on a textual address."""
    address = _parse_address(value)
    return address is not None and _is_private(address)


def is_apipa(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return address.version == 4 and address in APIPA_NETWORK


def is_public(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    if _is_private(address):
        return False
    if address.version == 4:
        return address not in LOOPBACK_NETWORK and address not in APIPA_NETWORK
    return not (address.is_loopback or address.is_link_local or address.is_unspecified)


def detect_mobile_device(history: Sequence[Any] | None, stationary_threshold: int = 3) -> MobilityStatus:
    unique: set[str] = set()
    for entry in history or ():
        unique.update(history_ips(entry))

    count = len(unique)
    is_mobile = count > stationary_threshold
    confidence = min(1.0, (count - stationary_threshold) / 10) if is_mobile else 1.0
    return MobilityStatus(
        is_mobile=is_mobile,
        unique_ip_count=count,
        stationary_threshold=stationary_threshold,
        category="Mobile Device" if is_mobile else "Stationary Device",
        confidence=confidence,
    )


def analyze_network_risk(
    current_ips: Iterable[str] | None,
    history: Sequence[Any] | None = None,
    recent_window: int = 5,
    rapid_change_threshold: int = 3,
) -> NetworkRiskAssessment:
    risk_factors: list[str] = []
    suspicious: list[str] = []
    public_present = False
    apipa_present = False

    for value in current_ips or ():
        if not isinstance(value, str):
            continue
        address = _parse_address(value.strip())
        if address is None:
            continue
        if is_apipa(address):
            apipa_present = True
            if APIPA_FACTOR not in risk_factors:
                risk_factors.append(APIPA_FACTOR)
        if is_public(address):
            public_present = True
            if PUBLIC_IP_FACTOR not in risk_factors:
                risk_factors.append(PUBLIC_IP_FACTOR)

    if history and len(history) > 1:
        recent: set[str] = set()
        for entry in most_recent_first(history)[:recent_window]:
            recent.update(history_ips(entry))
        if len(recent) > rapid_change_threshold:
            suspicious.append(f"Rapid network changes: {len(recent)} different IPs in recent activity")

    if apipa_present:
        risk = NetworkRisk.HIGH
    elif risk_factors:
        risk = NetworkRisk.MEDIUM
    else:
        risk = NetworkRisk.NORMAL

    return NetworkRiskAssessment(
        risk=risk,
        reason=risk_factors[0] if risk_factors else "",
        public_ip_present=public_present,
        apipa_present=apipa_present,
        suspicious_patterns=tuple(suspicious),
        risk_factors=tuple(risk_factors),
    )
