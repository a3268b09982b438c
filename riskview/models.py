from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _plain(value: Any) -> Any:
    """Convert dataclass output into JSON-friendly primitives."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"


class MatchType(str, Enum):
    NONE = "none"
    HEURISTIC = "heuristic"
    ABSOLUTE = "absolute"


class AppStatus(str, Enum):
    INSTALLED = "installed"
    UPDATED = "updated"
    UNINSTALLED = "uninstalled"


class DetectionMethod(str, Enum):
    DATABASE = "database"
    HEURISTIC = "heuristic"


class NetworkRisk(str, Enum):
    NORMAL = "Normal"
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(frozen=True)
class AppRecord:
    app_name: str
    vendor: str = ""
    version: str | None = None
    match_type: MatchType = MatchType.NONE
    is_installed: bool | None = None
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    app_row_key: str = ""
    backend_status: str | None = None
    status: AppStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class CveRecord:
    cve_id: str
    app_name: str = ""
    vendor: str = ""
    severity: Severity = Severity.UNKNOWN
    severity_label: str = ""
    epss_probability: float | None = None
    cvss_score: float | None = None
    last_seen: datetime | None = None
    app_row_key: str = ""
    app_status: AppStatus = AppStatus.INSTALLED
    detection_method: DetectionMethod = DetectionMethod.DATABASE
    is_patched: bool | None = None

    @property
    def dedup_key(self) -> str:
        return f"{self.cve_id}|{self.app_row_key}"

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class RiskConstituents:
    max_cvss_normalized: float | None = None
    max_epss_stored: float | None = None
    exposure_factor: float | None = None
    privilege_factor: float | None = None
    epss_date: datetime | None = None
    cve_count: int = 0
    cve_ids: tuple[str, ...] = ()
    known_exploit_count: int = 0
    known_exploit_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class DeviceSummary:
    app_count: int = 0
    cve_count: int = 0
    critical_cve_count: int = 0
    high_cve_count: int = 0
    medium_cve_count: int = 0
    low_cve_count: int = 0
    vulnerable_app_count: int = 0
    worst_severity: Severity = Severity.LOW
    score: int = 0
    constituents: RiskConstituents = field(default_factory=RiskConstituents)

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class EnrichmentFactors:
    has_known_exploit: bool
    time_decay_factor: float
    days_since_epss: int


@dataclass(frozen=True)
class EnrichedScore:
    score: float
    constituents: RiskConstituents | None = None
    enrichment_factors: EnrichmentFactors | None = None

    @property
    def enriched(self) -> bool:
        return self.enrichment_factors is not None

    def to_dict(self) -> dict[str, Any]:
        payload = _plain(asdict(self))
        if payload["enrichment_factors"] is None:
            payload["enrichment_factors"] = {}
        return payload


@dataclass(frozen=True)
class MobilityStatus:
    is_mobile: bool
    unique_ip_count: int
    stationary_threshold: int
    category: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NetworkRiskAssessment:
    risk: NetworkRisk = NetworkRisk.NORMAL
    reason: str = ""
    public_ip_present: bool = False
    apipa_present: bool = False
    suspicious_patterns: tuple[str, ...] = ()
    risk_factors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class MitigationStats:
    total_mitigated: int
    mitigated_apps: int
    by_severity: dict[str, int]
    mitigated_cves: tuple[CveRecord, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class AppStatusSummary:
    total: int
    installed: int
    updated: int
    uninstalled: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DetectionBucket:
    count: int = 0
    highest: Severity | None = None


@dataclass(frozen=True)
class DeviceRiskView:
    device_id: str
    computed_at: datetime
    summary: DeviceSummary | None
    base_score: int
    enriched: EnrichedScore
    apps: tuple[AppRecord, ...]
    app_summary: AppStatusSummary
    active_cves: tuple[CveRecord, ...]
    mitigated_cves: tuple[CveRecord, ...]
    mitigation_stats: MitigationStats
    active_severity_counts: dict[str, int]
    detection_buckets: dict[str, DetectionBucket]
    known_exploit_count: int
    exploit_data_available: bool
    network: NetworkRiskAssessment
    mobility: MobilityStatus
    top_vulnerable_apps: tuple[dict[str, Any], ...] = ()
    top_cves: tuple[dict[str, Any], ...] = ()
    app_groups: tuple[dict[str, Any], ...] = ()
    last_scan_time: datetime | None = None
    recommendations: tuple[str, ...] = ()
    exploit_status_message: str | None = None
    sequence: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = _plain(asdict(self))
        payload["enriched"] = self.enriched.to_dict()
        return payload
