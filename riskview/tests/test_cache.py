from __future__ import annotations

import json

from riskview.cache import JsonFileCache, build_cache_key


def test_build_cache_key_stable():
    context = {"fields": ["summary", "apps"], "version": 2}
    k1 = build_cache_key("summary", "org-1", "dev-1", context)
    k2 = build_cache_key("summary", "org-1", "dev-1", dict(reversed(list(context.items()))))
    assert k1 == k2


def test_build_cache_key_scoped_by_org_and_kind():
    assert build_cache_key("summary", "org-1", "dev-1") != build_cache_key("summary", "org-2", "dev-1")
    assert build_cache_key("summary", "org-1", "dev-1") != build_cache_key("apps", "org-1", "dev-1")


def test_set_and_get(tmp_path):
    cache = JsonFileCache(tmp_path / "cache")
    key = build_cache_key("summary", "org-1", "dev-1")
    cache.set(key, {"score": 42}, ttl_seconds=60)
    assert cache.get(key) == {"score": 42}
    assert cache.get(build_cache_key("summary", "org-1", "dev-2")) is None


def test_cache_expired(tmp_path):
    cache = JsonFileCache(tmp_path / "cache")
    key = build_cache_key("apps", "org-1", "dev-1")
    cache.set(key, [1, 2], ttl_seconds=0)
    assert cache.get(key) is None


def test_corrupt_entry_is_a_miss(tmp_path):
    cache_dir = tmp_path / "cache"
    cache = JsonFileCache(cache_dir)
    key = build_cache_key("apps", "org-1", "dev-1")
    cache.set(key, [1], ttl_seconds=60)
    (cache_dir / f"{key}.json").write_text("{oops", encoding="utf-8")
    assert cache.get(key) is None

    (cache_dir / f"{key}.json").write_text(json.dumps(["not", "an", "entry"]), encoding="utf-8")
    assert cache.get(key) is None
