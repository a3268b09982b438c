from __future__ import annotations

import os
from typing import Any

import yaml


def load_yaml(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def resolve_settings(path: str | None = None) -> dict[str, Any]:
    settings = load_yaml(path) if path else {}
    settings.setdefault("scoring", {})
    settings.setdefault("inventory", {})
    settings.setdefault("network", {})
    settings.setdefault("kev", {})
    settings.setdefault("cache", {})
    settings["scoring"].setdefault("exploit_multiplier", 1.5)
    settings["scoring"].setdefault("decay_floor", 0.1)
    settings["scoring"].setdefault("decay_horizon_days", 365)
    settings["inventory"].setdefault("stale_after_days", 30)
    settings["network"].setdefault("stationary_threshold", 3)
    settings["network"].setdefault("recent_window", 5)
    settings["network"].setdefault("rapid_change_threshold", 3)
    settings["kev"].setdefault("catalog_path", os.getenv("RISKVIEW_KEV_PATH"))
    settings["cache"].setdefault("enabled", _env_flag("RISKVIEW_CACHE_ENABLED", "false"))
    settings["cache"].setdefault("dir", os.getenv("RISKVIEW_CACHE_DIR", os.path.join(os.path.expanduser("~"), ".cache", "riskview")))
    settings["cache"].setdefault("ttl_seconds", int(os.getenv("RISKVIEW_CACHE_TTL_SECONDS", "86400")))
    return settings
