from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from riskview.pipeline import build_device_view
from riskview.refresh import ViewLedger

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _view(sequence=None, now=NOW, device_id="dev-1"):
    return build_device_view({"deviceId": device_id}, now=now, sequence=sequence)


def test_next_sequence_is_monotonic():
    ledger = ViewLedger()
    assert [ledger.next_sequence() for _ in range(3)] == [1, 2, 3]


def test_stale_sequence_discarded():
    ledger = ViewLedger()
    newer = _view(sequence=2)
    assert ledger.apply(newer) is True
    assert ledger.apply(_view(sequence=1)) is False
    assert ledger.get("dev-1") is newer


def test_views_without_sequence_compare_computed_at():
    ledger = ViewLedger()
    assert ledger.apply(_view(now=NOW)) is True
    assert ledger.apply(_view(now=NOW - timedelta(minutes=1))) is False
    assert ledger.apply(_view(now=NOW + timedelta(minutes=1))) is True


def test_devices_tracked_independently():
    ledger = ViewLedger()
    assert ledger.apply(_view(sequence=5, device_id="a")) is True
    assert ledger.apply(_view(sequence=1, device_id="b")) is True


def test_concurrent_sequences_unique():
    ledger = ViewLedger()
    with ThreadPoolExecutor(max_workers=4) as executor:
        sequences = list(executor.map(lambda _: ledger.next_sequence(), range(200)))
    assert sorted(sequences) == list(range(1, 201))
