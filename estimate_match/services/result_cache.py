"""
Result Cache
============

TTL cache of match results keyed by a fingerprint of the exact request
content (invoices, estimates, project).

Two backends share one async contract:
- ResultCache: in-process dict, expired entries treated as absent
- RedisResultCache: redis.asyncio with PSETEX expiry

The cache is advisory. A miss, an expired entry, or a backend error
all mean "recompute".
"""

import hashlib
import json
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import redis.asyncio as aioredis
from pydantic import TypeAdapter, ValidationError

from estimate_match.schemas.domain import CacheEntry, EstimateLineItem, Invoice, MatchResult
from estimate_match.utils.logger import get_logger

logger = get_logger(__name__)

CACHE_PREFIX = "estimate-match:cache:"
DEFAULT_TTL_SECONDS = 3600

_results_adapter = TypeAdapter(list[MatchResult])


def fingerprint(
    invoices: Sequence[Invoice],
    estimates: Sequence[EstimateLineItem],
    project_id: str,
) -> str:
    """
    Compute the cache key for a matching request.

    Serializes the request to canonical JSON (sorted keys, no whitespace)
    and hashes it. Equal content gives an equal key regardless of object
    identity; any content change gives a different key.

    Args:
        invoices: Invoices in the batch
        estimates: Candidate estimate line items
        project_id: Project scope

    Returns:
        "<project_id>:<sha256 hex digest>"
    """
    payload = {
        "project_id": project_id,
        "invoices": [invoice.model_dump(mode="json") for invoice in invoices],
        "estimates": [estimate.model_dump(mode="json") for estimate in estimates],
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{project_id}:{digest}"


def serialize_results(results: Sequence[MatchResult]) -> str:
    """Serialize match results for storage."""
    return _results_adapter.dump_json(list(results)).decode("utf-8")


def deserialize_results(value: str | bytes) -> list[MatchResult]:
    """Deserialize stored match results."""
    return _results_adapter.validate_json(value)


class MatchResultCache(Protocol):
    """Contract shared by cache backends."""

    async def get(self, key: str) -> list[MatchResult] | None: ...

    async def set(
        self, key: str, value: Sequence[MatchResult], ttl_ms: int | None = None
    ) -> None: ...

    async def clear(self, key: str | None = None) -> None: ...

    async def stats(self) -> dict[str, Any]: ...


class ResultCache:
    """
    In-process TTL cache.

    Entries are never swept; an entry past expires_at is reported as
    absent and overwritten on the next set().

    Usage:
        cache = ResultCache(default_ttl_seconds=600)
        key = fingerprint(invoices, estimates, project_id)
        if (results := await cache.get(key)) is None:
            results = await compute()
            await cache.set(key, results)
    """

    def __init__(self, default_ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._default_ttl_ms = default_ttl_seconds * 1000
        self._hits = 0
        self._misses = 0

    async def get(self, key: str) -> list[MatchResult] | None:
        """Return cached results, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired():
            self._misses += 1
            return None

        try:
            results = deserialize_results(entry.value)
        except ValidationError as e:
            logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            self._misses += 1
            return None

        self._hits += 1
        return results

    async def set(
        self, key: str, value: Sequence[MatchResult], ttl_ms: int | None = None
    ) -> None:
        """Store results under key, replacing any previous entry."""
        ttl = ttl_ms if ttl_ms is not None else self._default_ttl_ms
        self._entries[key] = CacheEntry(
            key=key,
            value=serialize_results(value),
            expires_at=datetime.now(timezone.utc) + timedelta(milliseconds=ttl),
        )

    async def clear(self, key: str | None = None) -> None:
        """Remove one entry, or every entry when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def stats(self) -> dict[str, Any]:
        """Size, keys and approximate memory held by stored values."""
        return {
            "backend": "memory",
            "size": len(self._entries),
            "keys": list(self._entries.keys()),
            "memory_bytes": sum(
                len(entry.key) + len(entry.value.encode("utf-8"))
                for entry in self._entries.values()
            ),
            "hits": self._hits,
            "misses": self._misses,
        }


class RedisResultCache:
    """
    Redis-backed result cache.

    Redis handles expiry. Backend errors are logged and reported as a
    miss (get) or ignored (set/clear) because the cache is advisory.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        prefix: str = CACHE_PREFIX,
    ) -> None:
        self._redis = redis_client
        self._default_ttl_ms = default_ttl_seconds * 1000
        self._prefix = prefix
        self._hits = 0
        self._misses = 0

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> list[MatchResult] | None:
        """Return cached results, or None on miss or error."""
        try:
            raw = await self._redis.get(self._key(key))
        except Exception as e:
            logger.warning("Redis cache read failed", key=key, error=str(e))
            self._misses += 1
            return None

        if raw is None:
            self._misses += 1
            return None

        try:
            results = deserialize_results(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            self._misses += 1
            return None

        self._hits += 1
        return results

    async def set(
        self, key: str, value: Sequence[MatchResult], ttl_ms: int | None = None
    ) -> None:
        """Store results with a millisecond TTL."""
        ttl = ttl_ms if ttl_ms is not None else self._default_ttl_ms
        try:
            await self._redis.psetex(self._key(key), ttl, serialize_results(value))
        except Exception as e:
            logger.warning("Redis cache write failed", key=key, error=str(e))

    async def clear(self, key: str | None = None) -> None:
        """Delete one key, or every key under the cache prefix."""
        try:
            if key is not None:
                await self._redis.delete(self._key(key))
                return

            keys = [k async for k in self._redis.scan_iter(match=f"{self._prefix}*")]
            if keys:
                await self._redis.delete(*keys)
        except Exception as e:
            logger.warning("Redis cache clear failed", key=key, error=str(e))

    async def stats(self) -> dict[str, Any]:
        """Key count and approximate memory of cached values."""
        keys: list[str] = []
        memory = 0
        try:
            async for raw_key in self._redis.scan_iter(match=f"{self._prefix}*"):
                name = raw_key.decode("utf-8") if isinstance(raw_key, bytes) else raw_key
                keys.append(name[len(self._prefix):])
                memory += await self._redis.strlen(raw_key)
        except Exception as e:
            logger.warning("Redis cache stats failed", error=str(e))

        return {
            "backend": "redis",
            "size": len(keys),
            "keys": keys,
            "memory_bytes": memory,
            "hits": self._hits,
            "misses": self._misses,
        }
