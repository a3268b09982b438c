from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from riskview.models import AppRecord, DeviceSummary, MatchType, RiskConstituents, Severity


class ConstituentsSnapshot(BaseModel):
    max_cvss_normalized: float | None = None
    max_epss_stored: float | None = None
    exposure_factor: float | None = None
    privilege_factor: float | None = None
    epss_date: datetime | None = None
    cve_count: int = 0
    cve_ids: list[str] = []
    known_exploit_count: int = 0
    known_exploit_ids: list[str] = []


class SummarySnapshot(BaseModel):
    device_id: str
    captured_at: datetime
    app_count: int
    cve_count: int
    critical_cve_count: int
    high_cve_count: int
    medium_cve_count: int
    low_cve_count: int
    vulnerable_app_count: int
    worst_severity: Severity
    score: int
    constituents: ConstituentsSnapshot

    @classmethod
    def from_summary(cls, device_id: str, summary: DeviceSummary, captured_at: datetime) -> "SummarySnapshot":
        c = summary.constituents
        return cls(
            device_id=device_id,
            captured_at=captured_at,
            app_count=summary.app_count,
            cve_count=summary.cve_count,
            critical_cve_count=summary.critical_cve_count,
            high_cve_count=summary.high_cve_count,
            medium_cve_count=summary.medium_cve_count,
            low_cve_count=summary.low_cve_count,
            vulnerable_app_count=summary.vulnerable_app_count,
            worst_severity=summary.worst_severity,
            score=summary.score,
            constituents=ConstituentsSnapshot(
                max_cvss_normalized=c.max_cvss_normalized,
                max_epss_stored=c.max_epss_stored,
                exposure_factor=c.exposure_factor,
                privilege_factor=c.privilege_factor,
                epss_date=c.epss_date,
                cve_count=c.cve_count,
                cve_ids=list(c.cve_ids),
                known_exploit_count=c.known_exploit_count,
                known_exploit_ids=list(c.known_exploit_ids),
            ),
        )

    def to_summary(self) -> DeviceSummary:
        c = self.constituents
        return DeviceSummary(
            app_count=self.app_count,
            cve_count=self.cve_count,
            critical_cve_count=self.critical_cve_count,
            high_cve_count=self.high_cve_count,
            medium_cve_count=self.medium_cve_count,
            low_cve_count=self.low_cve_count,
            vulnerable_app_count=self.vulnerable_app_count,
            worst_severity=self.worst_severity,
            score=self.score,
            constituents=RiskConstituents(
                max_cvss_normalized=c.max_cvss_normalized,
                max_epss_stored=c.max_epss_stored,
                exposure_factor=c.exposure_factor,
                privilege_factor=c.privilege_factor,
                epss_date=c.epss_date,
                cve_count=c.cve_count,
                cve_ids=tuple(c.cve_ids),
                known_exploit_count=c.known_exploit_count,
                known_exploit_ids=tuple(c.known_exploit_ids),
            ),
        )


class AppSnapshot(BaseModel):
    app_name: str
    vendor: str = ""
    version: str | None = None
    match_type: MatchType = MatchType.NONE
    is_installed: bool | None = None
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    app_row_key: str = ""
    backend_status: str | None = None


class InventorySnapshot(BaseModel):
    device_id: str
    captured_at: datetime
    apps: list[AppSnapshot]

    @classmethod
    def from_apps(cls, device_id: str, apps: list[AppRecord], captured_at: datetime) -> "InventorySnapshot":
        # derived status is not stored; every load recomputes it
        return cls(
            device_id=device_id,
            captured_at=captured_at,
            apps=[
                AppSnapshot(
                    app_name=app.app_name,
                    vendor=app.vendor,
                    version=app.version,
                    match_type=app.match_type,
                    is_installed=app.is_installed,
                    first_seen=app.first_seen,
                    last_seen=app.last_seen,
                    app_row_key=app.app_row_key,
                    backend_status=app.backend_status,
                )
                for app in apps
            ],
        )

    def to_apps(self) -> list[AppRecord]:
        return [AppRecord(**item.model_dump()) for item in self.apps]


class ViewStatus(BaseModel):
    device_id: str
    computed_at: datetime
    base_score: int
    enriched_score: float
    risk_band: str
    exploit_data_available: bool
    sequence: int | None = None
