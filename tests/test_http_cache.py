"""Tests for plancal.http_cache: request fingerprints and the two-tier cache."""

import json

import pytest

from plancal.http_cache import CachedEntry, RevalidationCache, cache_key


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


# ---------------------------------------------------------------------------
# cache_key
# ---------------------------------------------------------------------------


class TestCacheKey:
    def test_query_order_does_not_matter(self):
        a = cache_key("GET", "https://x/api?b=2&a=1")
        b = cache_key("get", "https://x/api?a=1&b=2")
        assert a == b

    def test_different_queries_differ(self):
        assert cache_key("GET", "https://x/api?a=1") != cache_key("GET", "https://x/api?a=2")
        assert cache_key("GET", "https://x/api") != cache_key("POST", "https://x/api")

    def test_filename_safe_and_fixed_length(self):
        key = cache_key("GET", "https://x/api/workout_calendar/ann@example.com?filter_date=2025-03-10")
        assert len(key) == 43
        assert "=" not in key and "/" not in key and "+" not in key

    def test_only_vary_headers_count(self):
        plain = cache_key("GET", "https://x/api")
        assert cache_key("GET", "https://x/api", {"Authorization": "Bearer t"}) == plain
        assert cache_key("GET", "https://x/api", {"Accept-Language": "ru"}) != plain


# ---------------------------------------------------------------------------
# RevalidationCache
# ---------------------------------------------------------------------------


class TestRevalidationCache:
    def test_put_get_memory_only(self):
        cache = RevalidationCache()
        assert cache.put("k", b"body", ttl=60)
        assert cache.get("k") == b"body"

    def test_expiry(self):
        clock = Clock()
        cache = RevalidationCache(clock=clock)
        cache.put("k", b"body", ttl=10)
        clock.now += 10
        assert cache.get("k") == b"body"  # expires strictly after ttl
        clock.now += 0.5
        assert cache.get("k") is None

    def test_zero_ttl_and_oversized_are_skipped(self):
        cache = RevalidationCache(max_memory_bytes=4)
        assert not cache.put("k", b"abc", ttl=0)
        assert not cache.put("k", b"abcde", ttl=60)
        assert cache.get("k") is None

    def test_disk_hit_survives_new_instance(self, tmp_path):
        clock = Clock()
        RevalidationCache(tmp_path, clock=clock).put("k", b"\x00\xffdata", ttl=60)
        fresh = RevalidationCache(tmp_path, clock=clock)
        assert fresh.get("k") == b"\x00\xffdata"

    def test_expired_disk_entry_is_deleted(self, tmp_path):
        clock = Clock()
        RevalidationCache(tmp_path, clock=clock).put("k", b"data", ttl=5)
        clock.now += 6
        assert RevalidationCache(tmp_path, clock=clock).get("k") is None
        assert not (tmp_path / "k.json").exists()

    @pytest.mark.parametrize(
        "content",
        [
            "not json",
            json.dumps({"data": "!!!not-base64!!!", "created_at": 1000, "ttl": 60}),
            json.dumps({"created_at": 1000}),
        ],
    )
    def test_undecodable_disk_entry_is_a_miss(self, tmp_path, content):
        (tmp_path / "k.json").write_text(content)
        cache = RevalidationCache(tmp_path, clock=Clock())
        assert cache.get("k") is None
        assert not (tmp_path / "k.json").exists()

    def test_invalidate(self, tmp_path):
        cache = RevalidationCache(tmp_path, clock=Clock())
        cache.put("a", b"1")
        cache.put("b", b"2")
        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.get("b") == b"2"
        cache.invalidate_all()
        assert cache.get("b") is None
        assert list(tmp_path.glob("*.json")) == []


class TestCachedEntry:
    def test_is_expired_boundary(self):
        entry = CachedEntry(data=b"", created_at=100.0, ttl=10.0)
        assert not entry.is_expired(110.0)
        assert entry.is_expired(110.01)
