"""
API Dependencies
================

Application-lifetime resources (database, cache, pattern repository,
model client) and the FastAPI dependencies that hand them to routes.

Every backend degrades instead of blocking startup:
- no DATABASE_URL or a failed connection -> in-memory pattern repository
- Redis unreachable -> in-process result cache
- llm_provider=none -> fallback-only matching
"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass

import redis.asyncio as aioredis
from fastapi import HTTPException, Request, status

from estimate_match.config.settings import Settings
from estimate_match.db.connection import DatabaseManager
from estimate_match.db.repositories import (
    InMemoryPatternRepository,
    MatchingPatternRepository,
    ProjectLineItemsRepository,
    SqlPatternRepository,
)
from estimate_match.llm.client import SemanticModelClient, create_model_client
from estimate_match.llm.semantic_matcher import SemanticMatcher
from estimate_match.services.fallback_matcher import FallbackMatcher
from estimate_match.services.matching_service import MatchingService
from estimate_match.services.pattern_learning import PatternLearningConfig, PatternLearningService
from estimate_match.services.result_cache import MatchResultCache, RedisResultCache, ResultCache
from estimate_match.utils.errors import CacheError
from estimate_match.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class AppState:
    """Resources shared by all requests."""

    settings: Settings
    cache: MatchResultCache
    pattern_repository: MatchingPatternRepository
    fallback_matcher: FallbackMatcher
    model_client: SemanticModelClient | None = None
    database: DatabaseManager | None = None
    redis_client: aioredis.Redis | None = None

    @property
    def semantic_matcher(self) -> SemanticMatcher | None:
        if self.model_client is None:
            return None
        return SemanticMatcher(self.model_client, self.settings)

    def pattern_service(self, user_id: str, project_id: str | None = None) -> PatternLearningService:
        return PatternLearningService(
            self.pattern_repository,
            user_id=user_id,
            project_id=project_id,
            config=PatternLearningConfig.from_settings(self.settings),
        )

    def matching_service(self, user_id: str | None, project_id: str) -> MatchingService:
        """Matching service; pattern tiers are only wired in for a known user."""
        return MatchingService(
            semantic_matcher=self.semantic_matcher,
            fallback_matcher=self.fallback_matcher,
            cache=self.cache,
            pattern_store=self.pattern_service(user_id, project_id) if user_id else None,
            settings=self.settings,
        )


async def connect_redis_cache(settings: Settings) -> tuple[aioredis.Redis, RedisResultCache]:
    """
    Connect to Redis and wrap it in a result cache.

    Raises:
        CacheError: If Redis does not answer PING
    """
    client = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except Exception as e:
        await client.aclose()
        raise CacheError(
            message="Failed to connect to Redis",
            details={"error": str(e), "host": settings.redis_host},
        ) from e
    return client, RedisResultCache(client, default_ttl_seconds=settings.cache_ttl_seconds)


async def build_state(settings: Settings) -> AppState:
    """Create every shared resource, degrading where a backend is unavailable."""
    database = None
    if settings.database_url:
        try:
            database = await DatabaseManager.initialize(settings)
        except Exception as e:
            logger.error("Database unavailable, using in-memory pattern store", error=str(e))

    pattern_repository: MatchingPatternRepository = (
        SqlPatternRepository(database.session_factory) if database else InMemoryPatternRepository()
    )

    redis_client = None
    cache: MatchResultCache = ResultCache(default_ttl_seconds=settings.cache_ttl_seconds)
    if settings.cache_backend == "redis":
        try:
            redis_client, cache = await connect_redis_cache(settings)
            logger.info("Redis result cache connected")
        except CacheError as e:
            logger.error("Redis unavailable, using in-process cache", error=e.message)

    model_client = create_model_client(settings)
    logger.info(
        "Matching engine ready",
        llm_provider=settings.llm_provider,
        pattern_store="sql" if database else "memory",
        cache=type(cache).__name__,
    )

    return AppState(
        settings=settings,
        cache=cache,
        pattern_repository=pattern_repository,
        fallback_matcher=FallbackMatcher(settings=settings),
        model_client=model_client,
        database=database,
        redis_client=redis_client,
    )


async def close_state(state: AppState) -> None:
    """Release network resources held by the state."""
    if state.model_client is not None:
        try:
            await state.model_client.close()
        except Exception as e:
            logger.error("Error closing model client", error=str(e))

    if state.redis_client is not None:
        try:
            await state.redis_client.aclose()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error("Error closing Redis connection", error=str(e))

    if state.database is not None:
        try:
            await state.database.close()
            logger.info("Database connections closed")
        except Exception as e:
            logger.error("Error closing database connections", error=str(e))


# =============================================================================
# FastAPI dependencies
# =============================================================================


def get_state(request: Request) -> AppState:
    """Application state created in the lifespan handler."""
    return request.app.state.engine


async def get_line_items_repository(
    request: Request,
) -> AsyncGenerator[ProjectLineItemsRepository, None]:
    """
    Project line items repository bound to a request-scoped session.

    Raises:
        HTTPException 503: If no database is configured
    """
    state = get_state(request)
    if state.database is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured",
        )

    async with state.database.session() as session:
        yield ProjectLineItemsRepository(session)


async def get_optional_line_items_repository(
    request: Request,
) -> AsyncGenerator[ProjectLineItemsRepository | None, None]:
    """Like get_line_items_repository, but yields None without a database."""
    state = get_state(request)
    if state.database is None:
        yield None
        return

    async with state.database.session() as session:
        yield ProjectLineItemsRepository(session)
