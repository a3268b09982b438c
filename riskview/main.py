from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from riskview.cache import CachePort, JsonFileCache, build_cache_key
from riskview.inventory import compute_app_status, is_active
from riskview.kev import load_known_exploits
from riskview.models import DeviceRiskView, utc_now
from riskview.normalizer import parse_timestamp
from riskview.pipeline import DeviceIdentifierError, build_device_view
from riskview.refresh import ViewLedger
from riskview.schemas import InventorySnapshot, SummarySnapshot, ViewStatus
from riskview.scoring import risk_band
from riskview.settings import resolve_settings

LOGGER = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def write_json_file(path: str | Path, payload: dict | list) -> None:
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)


def load_devices(path: str) -> list[Any]:
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if isinstance(data, dict) and isinstance(data.get("devices"), list):
        return data["devices"]
    if isinstance(data, list):
        return data
    return [data]


def build_cache(settings: dict[str, Any]) -> CachePort | None:
    cache_settings = settings.get("cache", {})
    if not cache_settings.get("enabled", False):
        return None
    return JsonFileCache(str(cache_settings["dir"]))


def view_status(view: DeviceRiskView) -> ViewStatus:
    return ViewStatus(
        device_id=view.device_id,
        computed_at=view.computed_at,
        base_score=view.base_score,
        enriched_score=view.enriched.score,
        risk_band=risk_band(view.enriched.score),
        exploit_data_available=view.exploit_data_available,
        sequence=view.sequence,
    )


def store_summary_snapshot(cache: CachePort, org_id: str, view: DeviceRiskView, ttl_seconds: int) -> None:
    if view.summary is None:
        return
    snapshot = SummarySnapshot.from_summary(view.device_id, view.summary, view.computed_at)
    cache.set(build_cache_key("summary", org_id, view.device_id), json.loads(snapshot.model_dump_json()), ttl_seconds)


def store_inventory_snapshot(cache: CachePort, org_id: str, view: DeviceRiskView, ttl_seconds: int) -> None:
    snapshot = InventorySnapshot.from_apps(view.device_id, list(view.apps), view.computed_at)
    cache.set(build_cache_key("inventory", org_id, view.device_id), json.loads(snapshot.model_dump_json()), ttl_seconds)


def load_snapshot(cache: CachePort, kind: str, org_id: str, device_id: str) -> Any | None:
    model = {"summary": SummarySnapshot, "inventory": InventorySnapshot}[kind]
    raw = cache.get(build_cache_key(kind, org_id, device_id))
    if raw is None:
        return None
    try:
        return model.model_validate(raw)
    except ValueError as exc:
        LOGGER.warning("Ignoring invalid %s snapshot for device %s: %s", kind, device_id, exc)
        return None


def _installed_names(apps: Any) -> set[str]:
    return {app.app_name for app in apps if is_active(app) and app.app_name}


def describe_changes(
    view: DeviceRiskView,
    previous_summary: SummarySnapshot | None,
    previous_inventory: InventorySnapshot | None,
    stale_after_days: int = 30,
) -> dict[str, Any] | None:
    """Compare a view against the snapshots stored by the previous run.

    Stored inventories carry no derived status, so it is recomputed at the
    current evaluation time before comparing installed apps.
    """
    if previous_summary is None and previous_inventory is None:
        return None
    changes: dict[str, Any] = {}
    if previous_summary is not None:
        summary = previous_summary.to_summary()
        changes["previous_captured_at"] = previous_summary.captured_at.isoformat()
        changes["previous_score"] = summary.score
        changes["score_delta"] = view.base_score - summary.score
    if previous_inventory is not None:
        before = _installed_names(compute_app_status(previous_inventory.to_apps(), view.computed_at, stale_after_days))
        after = _installed_names(view.apps)
        changes["apps_added"] = sorted(after - before)
        changes["apps_removed"] = sorted(before - after)
    return changes


def score_devices(
    devices: list[Any],
    settings: dict[str, Any],
    kev_path: str | None,
    now: datetime,
    org_id: str,
) -> tuple[list[dict[str, Any]], int]:
    cache = build_cache(settings)
    ttl_seconds = int(settings["cache"].get("ttl_seconds", 86400))
    stale_after_days = int(settings.get("inventory", {}).get("stale_after_days", 30))
    ledger = ViewLedger()
    results: list[dict[str, Any]] = []
    overall_exit = 0

    # first pass renders baseline scores; exploit data re-scores on arrival
    known_exploits = load_known_exploits(kev_path, cache=cache, ttl_seconds=ttl_seconds, org_id=org_id)

    for raw_device in devices:
        try:
            view = build_device_view(raw_device, None, now=now, sequence=ledger.next_sequence(), settings=settings)
        except DeviceIdentifierError as exc:
            LOGGER.error("Skipping device payload: %s", exc)
            overall_exit = 2
            continue
        ledger.apply(view)
        if known_exploits is not None:
            rescored = build_device_view(raw_device, known_exploits, now=now, sequence=ledger.next_sequence(), settings=settings)
            ledger.apply(rescored)

        current = ledger.get(view.device_id) or view
        changes = None
        if cache is not None:
            changes = describe_changes(
                current,
                load_snapshot(cache, "summary", org_id, current.device_id),
                load_snapshot(cache, "inventory", org_id, current.device_id),
                stale_after_days=stale_after_days,
            )
            store_summary_snapshot(cache, org_id, current, ttl_seconds)
            store_inventory_snapshot(cache, org_id, current, ttl_seconds)
        LOGGER.info(
            "Scored device=%s base=%s enriched=%s exploit_data=%s",
            current.device_id,
            current.base_score,
            current.enriched.score,
            current.exploit_data_available,
        )
        result = {
            "status": view_status(current).model_dump(mode="json"),
            "view": current.to_dict(),
        }
        if changes is not None:
            LOGGER.info("Device %s changed since %s: %s", current.device_id, changes.get("previous_captured_at"), changes)
            result["changes"] = changes
        results.append(result)
    return results, overall_exit


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Device risk scoring and inventory reconciliation")
    parser.add_argument("--payload", required=True, help="JSON file with one device, a list, or {\"devices\": [...]}")
    parser.add_argument("--kev", help="Known-exploited-vulnerability catalog (JSON)")
    parser.add_argument("--settings", help="Path to settings YAML")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Logging level")
    parser.add_argument("--now", help="Evaluation time (ISO-8601), defaults to the current time")
    parser.add_argument("--org-id", default="default", help="Organization id used to scope cache keys")
    parser.add_argument("--json-output", help="Optional path for aggregate JSON output")
    return parser


def main() -> int:
    parser = build_arg_parser()
    args = parser.parse_args()
    setup_logging(args.log_level)
    settings = resolve_settings(args.settings)

    now = parse_timestamp(args.now) if args.now else utc_now()
    if now is None:
        LOGGER.error("Invalid arguments: cannot parse --now %r", args.now)
        return 2

    try:
        devices = load_devices(args.payload)
    except (OSError, ValueError) as exc:
        LOGGER.error("Unreadable payload %s: %s", args.payload, exc)
        return 2

    results, overall_exit = score_devices(
        devices=devices,
        settings=settings,
        kev_path=args.kev or settings["kev"].get("catalog_path"),
        now=now,
        org_id=args.org_id,
    )

    payload = {"results": results, "generated_at": utc_now().isoformat()}
    if args.json_output:
        write_json_file(args.json_output, payload)
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return overall_exit


if __name__ == "__main__":
    sys.exit(main())
