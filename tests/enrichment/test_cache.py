"""Tests for the enrichment result cache."""

from unittest.mock import Mock

from agent_context.enrichment.cache import EnrichmentCache, fingerprint, make_cache_key
from agent_context.enrichment.types import ContextEnrichmentResult

from tests.helpers.fakes import FakeClock


def _result(value: int = 1) -> ContextEnrichmentResult:
    return ContextEnrichmentResult(success=True, enriched_context={"x_context": {"v": value}})


class TestCacheKeys:
    """Test cache key construction."""

    def test_fingerprint_ignores_key_order(self):
        """Test that equal mappings fingerprint identically."""
        assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})
        assert fingerprint({"a": 1}) != fingerprint({"a": 2})

    def test_key_components(self):
        """Test that the key includes enricher, agent, context and time bucket."""
        key = make_cache_key(
            "memory", "a1", {"query": "hi"}, context_id="c1", time_bucket_seconds=60, now=125.0
        )
        enricher_id, agent_id, context_id, bucket, digest = key.split(":")

        assert (enricher_id, agent_id, context_id, bucket) == ("memory", "a1", "c1", "2")
        assert digest == fingerprint({"query": "hi"})

    def test_time_bucket_changes_key(self):
        """Test that keys roll over with the time bucket."""
        inputs = {"query": "hi"}
        same = make_cache_key("m", "a", inputs, now=60.0), make_cache_key("m", "a", inputs, now=119.0)
        later = make_cache_key("m", "a", inputs, now=120.0)

        assert same[0] == same[1]
        assert later != same[0]

    def test_explicit_key_replaces_fingerprint(self):
        """Test that a caller-supplied key is namespaced by enricher."""
        assert make_cache_key("social", "a1", {"x": 1}, explicit_key="k") == "social:k"


class TestEnrichmentCache:
    """Test TTL cache behaviour."""

    def test_get_returns_stored_result_unchanged(self):
        """Test a stored result is returned as stored."""
        cache = EnrichmentCache()
        result = _result()
        cache.set("k", result, ttl_seconds=10, now=100.0)

        assert cache.get("k", now=105.0) == result
        assert cache.stats()["hits"] == 1

    def test_cached_data_is_isolated_from_callers(self):
        """Test that editing a stored or returned result leaves the entry intact."""
        cache = EnrichmentCache()
        result = _result()
        cache.set("k", result, ttl_seconds=10, now=100.0)

        result.enriched_context["x_context"]["v"] = 500
        cache.get("k", now=101.0).enriched_context["x_context"]["v"] = 999

        assert cache.get("k", now=102.0).enriched_context == {"x_context": {"v": 1}}

    def test_entry_valid_strictly_before_expiry(self):
        """Test that an entry is a miss at exactly its expiry time."""
        cache = EnrichmentCache()
        cache.set("k", _result(), ttl_seconds=10, now=100.0)

        assert cache.get("k", now=109.999) is not None
        assert cache.get("k", now=110.0) is None
        assert "k" not in cache

    def test_set_replaces_existing_entry(self):
        """Test that at most one entry exists per key."""
        on_evict = Mock()
        cache = EnrichmentCache(on_evict=on_evict)
        cache.set("k", _result(1), ttl_seconds=10, now=0.0)
        cache.set("k", _result(2), ttl_seconds=10, now=0.0)

        assert len(cache) == 1
        assert cache.get("k", now=1.0).enriched_context == {"x_context": {"v": 2}}
        assert on_evict.call_args.args[2] == "replaced"

    def test_capacity_evicts_oldest(self):
        """Test that the oldest entry is evicted at capacity."""
        on_evict = Mock()
        cache = EnrichmentCache(max_size=2, on_evict=on_evict)
        for key in ("a", "b", "c"):
            cache.set(key, _result(), ttl_seconds=10, now=0.0)

        assert "a" not in cache
        assert len(cache) == 2
        key, entry, reason = on_evict.call_args.args
        assert (key, reason) == ("a", "capacity")
        assert entry.key == "a"

    def test_capacity_evicts_least_recently_read(self):
        """Test that a read keeps an entry ahead of newer unread ones."""
        cache = EnrichmentCache(max_size=2)
        cache.set("a", _result(), ttl_seconds=10, now=0.0)
        cache.set("b", _result(), ttl_seconds=10, now=0.0)

        cache.get("a", now=1.0)
        cache.set("c", _result(), ttl_seconds=10, now=1.0)

        assert "a" in cache
        assert "b" not in cache

    def test_prune_expired_uses_clock(self):
        """Test periodic pruning against the injected clock."""
        clock = FakeClock(start=0.0)
        cache = EnrichmentCache(clock=clock)
        cache.set("short", _result(), ttl_seconds=5)
        cache.set("long", _result(), ttl_seconds=50)

        clock.advance(10)

        assert cache.prune_expired() == 1
        assert "long" in cache

    def test_clear_by_enricher_prefix(self):
        """Test clearing one enricher's entries."""
        cache = EnrichmentCache()
        cache.set("memory:a", _result(), ttl_seconds=10)
        cache.set("memory:b", _result(), ttl_seconds=10)
        cache.set("social:a", _result(), ttl_seconds=10)

        assert cache.clear("memory") == 2
        assert len(cache) == 1
        assert cache.clear() == 1

    def test_failing_callback_does_not_break_cache(self):
        """Test that eviction callback errors are contained."""
        cache = EnrichmentCache(on_evict=Mock(side_effect=RuntimeError("listener")))
        cache.set("k", _result(), ttl_seconds=10)

        assert cache.delete("k") is True
        assert cache.delete("k") is False

    def test_hit_rate(self):
        """Test hit statistics."""
        cache = EnrichmentCache()
        cache.set("k", _result(), ttl_seconds=10, now=0.0)
        cache.get("k", now=1.0)
        cache.get("missing", now=1.0)

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
