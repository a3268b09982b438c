from __future__ import annotations

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Protocol

LOGGER = logging.getLogger(__name__)


class CachePort(Protocol):
    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...


def build_cache_key(kind: str, org_id: str, key: str, context: dict[str, Any] | None = None) -> str:
    payload = {
        "kind": kind,
        "org_id": org_id,
        "key": key,
        "context": context or {},
    }
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class JsonFileCache:
    """One JSON file per key, each holding its own expiry stamp."""

    def __init__(self, cache_dir: str | Path) -> None:
        self.cache_dir = Path(cache_dir)

    def _cache_file(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def get(self, key: str) -> Any | None:
        cache_file = self._cache_file(key)
        if not cache_file.exists():
            return None
        try:
            entry = json.loads(cache_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable cache entry %s: %s", cache_file.name, exc)
            return None
        if not isinstance(entry, dict) or time.time() >= float(entry.get("expires_at", 0)):
            return None
        return entry.get("value")

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        entry = {"expires_at": time.time() + ttl_seconds, "value": value}
        self._cache_file(key).write_text(json.dumps(entry, ensure_ascii=False), encoding="utf-8")
