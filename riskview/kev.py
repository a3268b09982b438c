"""Known-exploited-vulnerability catalog loading.

The catalog is a local file, either a CISA KEV feed document or a plain
list of CVE ids. Any failure puts the caller in degraded mode (``None``)
rather than raising.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from riskview.cache import CachePort, build_cache_key

LOGGER = logging.getLogger(__name__)

KEV_ID_FIELDS = ("cveID", "cveId", "cve_id", "id")


def extract_ids(document: Any) -> set[str]:
    if isinstance(document, dict):
        document = document.get("vulnerabilities", [])
    ids: set[str] = set()
    if not isinstance(document, list):
        return ids
    for item in document:
        if isinstance(item, str):
            value = item
        elif isinstance(item, dict):
            value = next((item[name] for name in KEV_ID_FIELDS if isinstance(item.get(name), str)), "")
        else:
            continue
        value = value.strip().upper()
        if value:
            ids.add(value)
    return ids


def load_known_exploits(
    path: str | Path | None,
    cache: CachePort | None = None,
    ttl_seconds: int = 86400,
    org_id: str = "default",
) -> frozenset[str] | None:
    if not path:
        LOGGER.info("No known-exploit catalog configured")
        return None

    cache_key = build_cache_key("kev", org_id, str(path))
    if cache is not None:
        cached = cache.get(cache_key)
        if isinstance(cached, list):
            LOGGER.debug("Loaded %d known-exploit ids from cache", len(cached))
            return frozenset(cached)

    try:
        with open(path, "r", encoding="utf-8") as handle:
            document = json.load(handle)
    except (OSError, ValueError) as exc:
        LOGGER.warning("Known-exploit catalog unavailable at %s: %s", path, exc)
        return None

    ids = extract_ids(document)
    LOGGER.info("Loaded %d known-exploit ids from %s", len(ids), path)
    if cache is not None:
        cache.set(cache_key, sorted(ids), ttl_seconds)
    return frozenset(ids)
