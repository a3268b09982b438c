from __future__ import annotations

from datetime import datetime, timezone

from riskview.inventory import compute_app_status
from riskview.models import AppRecord, AppStatus, MatchType, Severity
from riskview.normalizer import normalize_summary
from riskview.schemas import InventorySnapshot, SummarySnapshot

CAPTURED = datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_summary_snapshot_restores_summary():
    summary = normalize_summary({
        "riskScore": 71,
        "highCveCount": 2,
        "cveIds": ["CVE-2024-1", "CVE-2024-2"],
        "constituents": {"maxCvss": 0.7, "maxEpss": 0.2, "epssDate": "2024-05-01T00:00:00Z"},
    })
    snapshot = SummarySnapshot.from_summary("dev-1", summary, CAPTURED)
    restored = SummarySnapshot.model_validate_json(snapshot.model_dump_json())

    assert restored.device_id == "dev-1"
    assert restored.worst_severity is Severity.HIGH
    assert restored.to_summary() == summary


def test_inventory_snapshot_drops_derived_status():
    apps = compute_app_status([
        AppRecord(app_name="Foo", version="1", match_type=MatchType.HEURISTIC, first_seen=CAPTURED, app_row_key="r1"),
    ], CAPTURED)
    assert apps[0].status is AppStatus.UPDATED

    snapshot = InventorySnapshot.from_apps("dev-1", list(apps), CAPTURED)
    restored = InventorySnapshot.model_validate_json(snapshot.model_dump_json()).to_apps()

    assert restored[0].status is None
    assert restored[0].match_type is MatchType.HEURISTIC
    assert restored[0].first_seen == CAPTURED
    assert compute_app_status(restored, CAPTURED) == apps
