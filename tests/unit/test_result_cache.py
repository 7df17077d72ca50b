"""
Unit Tests for Result Cache
===========================

In-process and Redis-backed caches of match results.
Redis is replaced by an AsyncMock.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from estimate_match.schemas.domain import MatchResult, MatchType
from estimate_match.services.result_cache import (
    CACHE_PREFIX,
    RedisResultCache,
    ResultCache,
    deserialize_results,
    fingerprint,
    serialize_results,
)


@pytest.fixture
def results() -> list[MatchResult]:
    return [
        MatchResult(
            invoice_line_item_id="li-concrete",
            estimate_line_item_id="est-concrete",
            confidence=0.59,
            reasoning="Logic-based match: price alignment (score 0.59)",
            match_type=MatchType.CONCEPTUAL,
        ),
        MatchResult.no_match("li-office", "No matching estimate found"),
    ]


class TestFingerprint:
    """Tests for request fingerprinting."""

    def test_same_content_same_key(self, invoice, estimates):
        copy = invoice.model_copy(deep=True)

        assert fingerprint([invoice], estimates, "p1") == fingerprint([copy], list(estimates), "p1")

    def test_key_is_project_scoped(self, invoice, estimates):
        key = fingerprint([invoice], estimates, "p1")

        assert key.startswith("p1:")
        assert key != fingerprint([invoice], estimates, "p2")

    def test_estimate_change_changes_key(self, invoice, estimates):
        changed = [estimates[0].model_copy(update={"labor_cost_est": 900}), *estimates[1:]]

        assert fingerprint([invoice], estimates, "p1") != fingerprint([invoice], changed, "p1")

    def test_invoice_change_changes_key(self, invoice, estimates):
        item = invoice.line_items[0].model_copy(update={"description": "Concrete pumping"})
        changed = invoice.model_copy(update={"line_items": [item, invoice.line_items[1]]})

        assert fingerprint([invoice], estimates, "p1") != fingerprint([changed], estimates, "p1")


class TestSerialization:
    def test_round_trip(self, results):
        assert deserialize_results(serialize_results(results)) == results


class TestResultCache:
    """Tests for the in-process cache."""

    @pytest.mark.asyncio
    async def test_get_missing(self):
        cache = ResultCache()

        assert await cache.get("missing") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, results):
        cache = ResultCache()
        await cache.set("k", results)

        assert await cache.get("k") == results

    @pytest.mark.asyncio
    async def test_expired_entry_is_absent_but_not_swept(self, results):
        cache = ResultCache()
        await cache.set("k", results, ttl_ms=60_000)
        entry = cache._entries["k"]
        cache._entries["k"] = entry.model_copy(
            update={"expires_at": datetime.now(timezone.utc) - timedelta(seconds=1)}
        )

        assert await cache.get("k") is None
        assert (await cache.stats())["size"] == 1

    @pytest.mark.asyncio
    async def test_set_overwrites(self, results):
        cache = ResultCache()
        await cache.set("k", results)
        await cache.set("k", results[:1])

        assert await cache.get("k") == results[:1]

    @pytest.mark.asyncio
    async def test_clear_one_and_all(self, results):
        cache = ResultCache()
        await cache.set("a", results)
        await cache.set("b", results)

        await cache.clear("a")
        assert await cache.get("a") is None
        assert await cache.get("b") == results

        await cache.clear()
        assert (await cache.stats())["size"] == 0

    @pytest.mark.asyncio
    async def test_stats(self, results):
        cache = ResultCache()
        await cache.set("k", results)
        await cache.get("k")
        await cache.get("missing")

        stats = await cache.stats()

        assert stats["backend"] == "memory"
        assert stats["keys"] == ["k"]
        assert stats["memory_bytes"] > 0
        assert stats["hits"] == 1
        assert stats["misses"] == 1


class TestRedisResultCache:
    """Tests for the Redis cache with a mocked client."""

    @pytest.fixture
    def mock_redis(self):
        client = AsyncMock()
        client.get = AsyncMock(return_value=None)
        client.psetex = AsyncMock()
        client.delete = AsyncMock()
        client.strlen = AsyncMock(return_value=10)
        return client

    @pytest.mark.asyncio
    async def test_set_uses_prefix_and_ttl(self, mock_redis, results):
        cache = RedisResultCache(mock_redis, default_ttl_seconds=60)

        await cache.set("k", results)

        key, ttl, value = mock_redis.psetex.call_args.args
        assert key == f"{CACHE_PREFIX}k"
        assert ttl == 60_000
        assert deserialize_results(value) == results

    @pytest.mark.asyncio
    async def test_get_hit(self, mock_redis, results):
        mock_redis.get.return_value = serialize_results(results)
        cache = RedisResultCache(mock_redis)

        assert await cache.get("k") == results
        mock_redis.get.assert_called_once_with(f"{CACHE_PREFIX}k")

    @pytest.mark.asyncio
    async def test_get_miss(self, mock_redis):
        cache = RedisResultCache(mock_redis)

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_backend_error_is_a_miss(self, mock_redis):
        mock_redis.get.side_effect = ConnectionError("redis down")
        cache = RedisResultCache(mock_redis)

        assert await cache.get("k") is None
        assert (await cache.stats())["misses"] == 1

    @pytest.mark.asyncio
    async def test_write_error_is_swallowed(self, mock_redis, results):
        mock_redis.psetex.side_effect = ConnectionError("redis down")
        cache = RedisResultCache(mock_redis)

        await cache.set("k", results)

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_a_miss(self, mock_redis):
        mock_redis.get.return_value = "not json"
        cache = RedisResultCache(mock_redis)

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_clear_all_scans_prefix(self, mock_redis):
        async def scan_iter(match):
            for key in (f"{CACHE_PREFIX}a", f"{CACHE_PREFIX}b"):
                yield key

        mock_redis.scan_iter = MagicMock(side_effect=scan_iter)
        cache = RedisResultCache(mock_redis)

        await cache.clear()

        mock_redis.delete.assert_called_once_with(f"{CACHE_PREFIX}a", f"{CACHE_PREFIX}b")

    @pytest.mark.asyncio
    async def test_stats(self, mock_redis):
        async def scan_iter(match):
            yield f"{CACHE_PREFIX}a"

        mock_redis.scan_iter = MagicMock(side_effect=scan_iter)
        cache = RedisResultCache(mock_redis)

        stats = await cache.stats()

        assert stats["backend"] == "redis"
        assert stats["keys"] == ["a"]
        assert stats["memory_bytes"] == 10
