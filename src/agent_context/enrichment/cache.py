"""Per-enricher TTL cache of enrichment results.

Keys are content-addressed: they combine the enricher id, the agent id,
the context id, a fingerprint of the enricher's declared inputs and a
coarse time bucket. Expiry is checked lazily on read and by an optional
periodic prune.
"""

import copy
import dataclasses
import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Mapping, Optional

from agent_context.enrichment.types import ContextEnrichmentResult, EnrichmentCacheEntry
from agent_context.utils.logging import get_logger

logger = get_logger(__name__)


# Called with (key, entry, reason); reason is "expired", "replaced",
# "removed" or "capacity"
EvictionCallback = Callable[[str, EnrichmentCacheEntry, str], None]


def fingerprint(inputs: Mapping[str, Any]) -> str:
    """Stable digest of a mapping regardless of key order."""
    encoded = json.dumps(inputs, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]


def make_cache_key(
    enricher_id: str,
    agent_id: str,
    inputs: Mapping[str, Any],
    context_id: Optional[str] = None,
    time_bucket_seconds: int = 60,
    now: Optional[float] = None,
    explicit_key: Optional[str] = None,
) -> str:
    """Build the cache key for one enricher invocation.

    Args:
        enricher_id: Enricher being invoked
        agent_id: Agent the context belongs to
        inputs: The enricher's declared inputs
        context_id: Id of the context, when known
        time_bucket_seconds: Width of the time bucket
        now: Current epoch seconds (defaults to the wall clock)
        explicit_key: Caller-supplied key replacing the fingerprint

    Returns:
        Cache key string
    """
    if explicit_key:
        return f"{enricher_id}:{explicit_key}"
    now = time.time() if now is None else now
    bucket = int(now // time_bucket_seconds)
    return f"{enricher_id}:{agent_id}:{context_id or '-'}:{bucket}:{fingerprint(inputs)}"


def _detached(result: ContextEnrichmentResult) -> ContextEnrichmentResult:
    return dataclasses.replace(
        result,
        enriched_context=copy.deepcopy(result.enriched_context),
        sources=list(result.sources),
        warnings=list(result.warnings),
    )


class EnrichmentCache:
    """TTL cache holding at most one live entry per key.

    Capacity eviction drops the least recently read entry. Results are
    copied on the way in and out so callers never share nested data with
    the cache.
    """

    def __init__(
        self,
        max_size: int = 1000,
        on_evict: Optional[EvictionCallback] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            max_size: Entries kept before the least recently used is evicted
            on_evict: Optional callback fired when an entry is dropped
            clock: Source of epoch seconds
        """
        self.max_size = max_size
        self.on_evict = on_evict
        self._clock = clock
        self._entries: "OrderedDict[str, EnrichmentCacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: str, now: Optional[float] = None) -> Optional[ContextEnrichmentResult]:
        """Return the cached result for a key while it is valid.

        Args:
            key: Cache key
            now: Current epoch seconds (defaults to the clock)

        Returns:
            A copy of the stored result, or None on a miss
        """
        now = self._clock() if now is None else now
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if not entry.is_valid(now):
            self._drop(key, "expired")
            self.misses += 1
            return None

        entry.access_count += 1
        self.hits += 1
        self._entries.move_to_end(key)
        return _detached(entry.result)

    def set(
        self,
        key: str,
        result: ContextEnrichmentResult,
        ttl_seconds: float,
        now: Optional[float] = None,
    ) -> EnrichmentCacheEntry:
        """Store a result under a key, replacing any previous entry.

        Args:
            key: Cache key
            result: Result to memoize
            ttl_seconds: Lifetime of the entry
            now: Current epoch seconds (defaults to the clock)

        Returns:
            The new entry
        """
        now = self._clock() if now is None else now
        if key in self._entries:
            self._drop(key, "replaced")

        while len(self._entries) >= self.max_size:
            oldest_key = next(iter(self._entries))
            self._drop(oldest_key, "capacity")

        entry = EnrichmentCacheEntry(
            key=key,
            result=_detached(result),
            created_at=now,
            expires_at=now + ttl_seconds,
        )
        self._entries[key] = entry
        return entry

    def delete(self, key: str) -> bool:
        """Remove a key; returns whether it was present."""
        if key not in self._entries:
            return False
        self._drop(key, "removed")
        return True

    def clear(self, enricher_id: Optional[str] = None) -> int:
        """Remove all entries, or only those of one enricher.

        Returns:
            Number of entries removed
        """
        prefix = f"{enricher_id}:" if enricher_id else ""
        keys = [k for k in self._entries if k.startswith(prefix)]
        for key in keys:
            self._drop(key, "removed")
        return len(keys)

    def prune_expired(self, now: Optional[float] = None) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock() if now is None else now
        expired = [k for k, e in self._entries.items() if not e.is_valid(now)]
        for key in expired:
            self._drop(key, "expired")
        if expired:
            logger.debug(f"Pruned {len(expired)} expired cache entries")
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        """Size and hit statistics."""
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            "evictions": self.evictions,
        }

    def _drop(self, key: str, reason: str) -> None:
        entry = self._entries.pop(key)
        self.evictions += 1
        if self.on_evict is not None:
            try:
                self.on_evict(key, entry, reason)
            except Exception as e:
                logger.warning(f"Cache eviction callback failed for {key}: {e}")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
