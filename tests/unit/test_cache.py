# ABOUTME: Unit tests for the TTL cache
# ABOUTME: Covers expiry boundaries, lazy eviction, and prefix invalidation

import pytest

from argocd_sync.cache import CacheEntry, TTLCache


@pytest.mark.unit
class TestCacheEntry:
    def test_valid_at_exact_ttl(self):
        """Test that an entry is still valid exactly at its TTL."""
        entry = CacheEntry(data="x", stored_at=100.0, ttl=30.0)
        assert entry.is_valid(130.0)

    def test_invalid_past_ttl(self):
        """Test that an entry is invalid once its TTL has passed."""
        entry = CacheEntry(data="x", stored_at=100.0, ttl=30.0)
        assert not entry.is_valid(130.001)


@pytest.mark.unit
class TestTTLCache:
    def test_get_returns_stored_value(self, cache, clock):
        """Test that get returns the stored value."""
        cache.set("detection:prod", {"installed": True}, ttl=300)
        clock.advance(299)
        assert cache.get("detection:prod") == {"installed": True}

    def test_hit_at_ttl_boundary_miss_after(self, cache, clock):
        """Test that a read at the TTL hits and a later one misses."""
        cache.set("applications:prod:argocd", ["app"], ttl=30)

        clock.advance(30)
        assert cache.get("applications:prod:argocd") == ["app"]

        clock.advance(0.5)
        assert cache.get("applications:prod:argocd") is None

    def test_stale_entry_is_evicted_on_access(self, cache, clock):
        """Test that reading a stale entry removes it."""
        cache.set("k", 1, ttl=1)
        clock.advance(2)
        assert len(cache) == 1

        assert cache.get("k") is None
        assert len(cache) == 0

    def test_missing_key(self, cache):
        """Test that a missing key reads as None."""
        assert cache.get("nope") is None
        assert "nope" not in cache

    def test_contains(self, cache):
        """Test that membership follows entry validity."""
        cache.set("k", 1, ttl=10)
        assert "k" in cache

    def test_overwrite_replaces_entry_and_restarts_ttl(self, cache, clock):
        """Test that set on an existing key replaces it and restarts its TTL."""
        cache.set("k", "old", ttl=10)
        clock.advance(8)
        cache.set("k", "new", ttl=10)
        clock.advance(8)
        assert cache.get("k") == "new"

    def test_infinite_ttl_never_expires(self, cache, clock):
        """Test that an infinite TTL never expires."""
        cache.set("last-known:prod:argocd", ("a",), ttl=float("inf"))
        clock.advance(10**9)
        assert cache.get("last-known:prod:argocd") == ("a",)

    def test_invalidate(self, cache):
        """Test that invalidate removes one key and reports whether it existed."""
        cache.set("k", 1, ttl=10)
        assert cache.invalidate("k") is True
        assert cache.invalidate("k") is False
        assert cache.get("k") is None

    def test_invalidate_prefix_only_touches_matching_keys(self, cache):
        """Test that invalidate_prefix removes only keys with the prefix."""
        cache.set("applications:prod:argocd", 1, ttl=10)
        cache.set("applications:prod:team-a", 2, ttl=10)
        cache.set("applications:staging:argocd", 3, ttl=10)
        cache.set("detection:prod", 4, ttl=10)

        removed = cache.invalidate_prefix("applications:prod:")

        assert removed == 2
        assert cache.get("applications:staging:argocd") == 3
        assert cache.get("detection:prod") == 4

    def test_clear(self, cache):
        """Test that clear empties the cache."""
        cache.set("a", 1, ttl=10)
        cache.set("b", 2, ttl=10)
        cache.clear()
        assert len(cache) == 0

    def test_default_clock_is_monotonic(self):
        """Test that the cache works with its default clock."""
        cache = TTLCache()
        cache.set("k", 1, ttl=60)
        assert cache.get("k") == 1
