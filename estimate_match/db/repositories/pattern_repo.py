"""
Pattern Repository
==================

Storage for learned matching patterns and matching history.

Implementations:
- InMemoryPatternRepository: dict-backed, for tests and single-process use
- SqlPatternRepository: SQLAlchemy async ORM, one session per operation

Scoping: a query for a project sees that project's patterns plus the
user's project-less patterns.
"""

from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import and_, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from estimate_match.db.models import MatchingHistoryRow, MatchingPatternRow
from estimate_match.schemas.domain import MatchingHistoryEntry, MatchingPattern, PatternType
from estimate_match.utils.errors import DatabaseError
from estimate_match.utils.logger import get_logger

logger = get_logger(__name__)

_PATTERN_FIELDS = tuple(MatchingPattern.model_fields)
_HISTORY_FIELDS = tuple(MatchingHistoryEntry.model_fields)


class MatchingPatternRepository(Protocol):
    """Contract shared by pattern store backends."""

    async def find_pattern(
        self,
        user_id: str,
        project_id: str | None,
        pattern_type: PatternType,
        trade_id: str,
        *,
        supplier_pattern: str | None = None,
        line_item_pattern: str | None = None,
        amount_range_min: float | None = None,
        estimate_line_item_id: str | None = None,
    ) -> MatchingPattern | None: ...

    async def get_pattern(self, pattern_id: str) -> MatchingPattern | None: ...

    async def save_pattern(self, pattern: MatchingPattern) -> MatchingPattern: ...

    async def search_patterns(
        self,
        user_id: str,
        project_id: str | None,
        *,
        supplier_key: str = "",
        description_key: str = "",
        amount: float | None = None,
        limit: int = 5,
    ) -> list[MatchingPattern]: ...

    async def list_patterns(
        self, user_id: str, project_id: str | None = None
    ) -> list[MatchingPattern]: ...

    async def add_history(self, entry: MatchingHistoryEntry) -> MatchingHistoryEntry: ...

    async def get_history(self, history_id: str) -> MatchingHistoryEntry | None: ...

    async def recent_history(
        self,
        user_id: str,
        project_id: str | None,
        since: datetime,
        limit: int = 20,
    ) -> list[MatchingHistoryEntry]: ...

    async def list_history(
        self, user_id: str, project_id: str | None = None
    ) -> list[MatchingHistoryEntry]: ...


def _in_scope(record_project_id: str | None, project_id: str | None) -> bool:
    return project_id is None or record_project_id in (project_id, None)


def _pattern_rank(pattern: MatchingPattern) -> tuple[float, int, int]:
    return (pattern.confidence, pattern.usage_count, pattern.success_count)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo; stored values are UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# =============================================================================
# In-memory
# =============================================================================


class InMemoryPatternRepository:
    """
    Dict-backed pattern store.

    Stored models are copied on the way in and out so callers never
    mutate repository state by accident.
    """

    def __init__(self) -> None:
        self._patterns: dict[str, MatchingPattern] = {}
        self._history: dict[str, MatchingHistoryEntry] = {}

    async def find_pattern(
        self,
        user_id: str,
        project_id: str | None,
        pattern_type: PatternType,
        trade_id: str,
        *,
        supplier_pattern: str | None = None,
        line_item_pattern: str | None = None,
        amount_range_min: float | None = None,
        estimate_line_item_id: str | None = None,
    ) -> MatchingPattern | None:
        for pattern in self._patterns.values():
            if (
                pattern.user_id == user_id
                and pattern.project_id == project_id
                and pattern.pattern_type == pattern_type
                and pattern.trade_id == trade_id
                and pattern.supplier_pattern == supplier_pattern
                and pattern.line_item_pattern == line_item_pattern
                and pattern.amount_range_min == amount_range_min
                and pattern.estimate_line_item_id == estimate_line_item_id
            ):
                return pattern.model_copy()
        return None

    async def get_pattern(self, pattern_id: str) -> MatchingPattern | None:
        pattern = self._patterns.get(pattern_id)
        return pattern.model_copy() if pattern else None

    async def save_pattern(self, pattern: MatchingPattern) -> MatchingPattern:
        self._patterns[pattern.id] = pattern.model_copy()
        return pattern

    async def search_patterns(
        self,
        user_id: str,
        project_id: str | None,
        *,
        supplier_key: str = "",
        description_key: str = "",
        amount: float | None = None,
        limit: int = 5,
    ) -> list[MatchingPattern]:
        supplier_key = supplier_key.lower()
        description_key = description_key.lower()

        hits = []
        for pattern in self._patterns.values():
            if pattern.user_id != user_id or not _in_scope(pattern.project_id, project_id):
                continue

            supplier_hit = bool(supplier_key) and supplier_key in (pattern.supplier_pattern or "").lower()
            description_hit = bool(description_key) and description_key in (
                pattern.line_item_pattern or ""
            ).lower()
            amount_hit = (
                amount is not None
                and pattern.amount_range_min is not None
                and pattern.amount_range_max is not None
                and pattern.amount_range_min <= amount < pattern.amount_range_max
            )
            if supplier_hit or description_hit or amount_hit:
                hits.append(pattern.model_copy())

        hits.sort(key=_pattern_rank, reverse=True)
        return hits[:limit]

    async def list_patterns(
        self, user_id: str, project_id: str | None = None
    ) -> list[MatchingPattern]:
        return [
            p.model_copy()
            for p in self._patterns.values()
            if p.user_id == user_id and _in_scope(p.project_id, project_id)
        ]

    async def add_history(self, entry: MatchingHistoryEntry) -> MatchingHistoryEntry:
        self._history[entry.id] = entry.model_copy()
        return entry

    async def get_history(self, history_id: str) -> MatchingHistoryEntry | None:
        entry = self._history.get(history_id)
        return entry.model_copy() if entry else None

    async def recent_history(
        self,
        user_id: str,
        project_id: str | None,
        since: datetime,
        limit: int = 20,
    ) -> list[MatchingHistoryEntry]:
        entries = [
            e.model_copy()
            for e in self._history.values()
            if e.user_id == user_id
            and _in_scope(e.project_id, project_id)
            and e.user_confirmed
            and not e.user_corrected
            and e.created_at >= since
        ]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit]

    async def list_history(
        self, user_id: str, project_id: str | None = None
    ) -> list[MatchingHistoryEntry]:
        return [
            e.model_copy()
            for e in self._history.values()
            if e.user_id == user_id and _in_scope(e.project_id, project_id)
        ]


# =============================================================================
# SQLAlchemy
# =============================================================================


class SqlPatternRepository:
    """
    SQLAlchemy-backed pattern store.

    Table Schema: see MatchingPatternRow / MatchingHistoryRow.

    Every method opens its own session from the factory and commits before
    returning, so the repository is safe under asyncio.gather.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Initialize repository with a session factory.

        Args:
            session_factory: SQLAlchemy async session factory
        """
        self._session_factory = session_factory

    @staticmethod
    def _pattern(row: MatchingPatternRow) -> MatchingPattern:
        data = {name: getattr(row, name) for name in _PATTERN_FIELDS}
        data["created_at"] = _aware(row.created_at)
        data["last_used_at"] = _aware(row.last_used_at)
        return MatchingPattern.model_validate(data)

    @staticmethod
    def _history(row: MatchingHistoryRow) -> MatchingHistoryEntry:
        data = {name: getattr(row, name) for name in _HISTORY_FIELDS}
        data["created_at"] = _aware(row.created_at)
        return MatchingHistoryEntry.model_validate(data)

    @staticmethod
    def _scope(column, project_id: str | None):
        if project_id is None:
            return true()
        return or_(column == project_id, column.is_(None))

    async def find_pattern(
        self,
        user_id: str,
        project_id: str | None,
        pattern_type: PatternType,
        trade_id: str,
        *,
        supplier_pattern: str | None = None,
        line_item_pattern: str | None = None,
        amount_range_min: float | None = None,
        estimate_line_item_id: str | None = None,
    ) -> MatchingPattern | None:
        def _eq(column, value):
            return column.is_(None) if value is None else column == value

        query = (
            select(MatchingPatternRow)
            .where(
                MatchingPatternRow.user_id == user_id,
                _eq(MatchingPatternRow.project_id, project_id),
                MatchingPatternRow.pattern_type == pattern_type.value,
                MatchingPatternRow.trade_id == trade_id,
                _eq(MatchingPatternRow.supplier_pattern, supplier_pattern),
                _eq(MatchingPatternRow.line_item_pattern, line_item_pattern),
                _eq(MatchingPatternRow.amount_range_min, amount_range_min),
                _eq(MatchingPatternRow.estimate_line_item_id, estimate_line_item_id),
            )
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                row = (await session.execute(query)).scalar_one_or_none()
                return self._pattern(row) if row else None
        except Exception as e:
            logger.error("Failed to find pattern", user_id=user_id, error=str(e))
            raise DatabaseError(
                message="Failed to find pattern",
                details={"error": str(e), "pattern_type": pattern_type.value},
            ) from e

    async def get_pattern(self, pattern_id: str) -> MatchingPattern | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(MatchingPatternRow, pattern_id)
                return self._pattern(row) if row else None
        except Exception as e:
            raise DatabaseError(
                message="Failed to load pattern",
                details={"error": str(e), "pattern_id": pattern_id},
            ) from e

    async def save_pattern(self, pattern: MatchingPattern) -> MatchingPattern:
        """Insert the pattern, or overwrite the stored row with the same id."""
        values = pattern.model_dump(mode="python")
        values["pattern_type"] = pattern.pattern_type.value

        try:
            async with self._session_factory() as session:
                row = await session.get(MatchingPatternRow, pattern.id)
                if row is None:
                    session.add(MatchingPatternRow(**values))
                else:
                    for name, value in values.items():
                        setattr(row, name, value)
                await session.commit()
        except Exception as e:
            logger.error("Failed to save pattern", pattern_id=pattern.id, error=str(e))
            raise DatabaseError(
                message="Failed to save pattern",
                details={"error": str(e), "pattern_id": pattern.id},
            ) from e

        return pattern

    async def search_patterns(
        self,
        user_id: str,
        project_id: str | None,
        *,
        supplier_key: str = "",
        description_key: str = "",
        amount: float | None = None,
        limit: int = 5,
    ) -> list[MatchingPattern]:
        conditions = []
        if supplier_key:
            conditions.append(MatchingPatternRow.supplier_pattern.icontains(supplier_key, autoescape=True))
        if description_key:
            conditions.append(
                MatchingPatternRow.line_item_pattern.icontains(description_key, autoescape=True)
            )
        if amount is not None:
            conditions.append(
                and_(
                    MatchingPatternRow.amount_range_min <= amount,
                    MatchingPatternRow.amount_range_max > amount,
                )
            )
        if not conditions:
            return []

        query = (
            select(MatchingPatternRow)
            .where(
                MatchingPatternRow.user_id == user_id,
                self._scope(MatchingPatternRow.project_id, project_id),
                or_(*conditions),
            )
            .order_by(
                MatchingPatternRow.confidence.desc(),
                MatchingPatternRow.usage_count.desc(),
                MatchingPatternRow.success_count.desc(),
            )
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).scalars().all()
                return [self._pattern(row) for row in rows]
        except Exception as e:
            logger.error("Pattern search failed", user_id=user_id, error=str(e))
            raise DatabaseError(
                message="Pattern search failed",
                details={"error": str(e)},
            ) from e

    async def list_patterns(
        self, user_id: str, project_id: str | None = None
    ) -> list[MatchingPattern]:
        query = select(MatchingPatternRow).where(
            MatchingPatternRow.user_id == user_id,
            self._scope(MatchingPatternRow.project_id, project_id),
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).scalars().all()
                return [self._pattern(row) for row in rows]
        except Exception as e:
            raise DatabaseError(
                message="Failed to list patterns",
                details={"error": str(e)},
            ) from e

    async def add_history(self, entry: MatchingHistoryEntry) -> MatchingHistoryEntry:
        values = entry.model_dump(mode="python")
        values["matching_method"] = entry.matching_method.value

        try:
            async with self._session_factory() as session:
                session.add(MatchingHistoryRow(**values))
                await session.commit()
        except Exception as e:
            logger.error("Failed to record history", history_id=entry.id, error=str(e))
            raise DatabaseError(
                message="Failed to record matching history",
                details={"error": str(e), "invoice_line_item_id": entry.invoice_line_item_id},
            ) from e

        return entry

    async def get_history(self, history_id: str) -> MatchingHistoryEntry | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(MatchingHistoryRow, history_id)
                return self._history(row) if row else None
        except Exception as e:
            raise DatabaseError(
                message="Failed to load history entry",
                details={"error": str(e), "history_id": history_id},
            ) from e

    async def recent_history(
        self,
        user_id: str,
        project_id: str | None,
        since: datetime,
        limit: int = 20,
    ) -> list[MatchingHistoryEntry]:
        query = (
            select(MatchingHistoryRow)
            .where(
                MatchingHistoryRow.user_id == user_id,
                self._scope(MatchingHistoryRow.project_id, project_id),
                MatchingHistoryRow.user_confirmed.is_(True),
                MatchingHistoryRow.user_corrected.is_(False),
                MatchingHistoryRow.created_at >= since,
            )
            .order_by(MatchingHistoryRow.created_at.desc())
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).scalars().all()
                return [self._history(row) for row in rows]
        except Exception as e:
            raise DatabaseError(
                message="Failed to load matching history",
                details={"error": str(e)},
            ) from e

    async def list_history(
        self, user_id: str, project_id: str | None = None
    ) -> list[MatchingHistoryEntry]:
        query = select(MatchingHistoryRow).where(
            MatchingHistoryRow.user_id == user_id,
            self._scope(MatchingHistoryRow.project_id, project_id),
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).scalars().all()
                return [self._history(row) for row in rows]
        except Exception as e:
            raise DatabaseError(
                message="Failed to list matching history",
                details={"error": str(e)},
            ) from e
