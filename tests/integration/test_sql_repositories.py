"""
Integration Tests for SQL Repositories
======================================

SqlPatternRepository and ProjectLineItemsRepository against a SQLite
database file (aiosqlite).
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from estimate_match.db.connection import DatabaseManager
from estimate_match.db.repositories import ProjectLineItemsRepository, SqlPatternRepository
from estimate_match.schemas.domain import (
    LineItemCategory,
    MatchingHistoryEntry,
    MatchingPattern,
    PatternType,
)
from estimate_match.services.pattern_learning import PatternLearningConfig, PatternLearningService
from estimate_match.utils.errors import DatabaseError

HOST_SCHEMA = [
    "CREATE TABLE invoices (id TEXT PRIMARY KEY, project_id TEXT, invoice_number TEXT, supplier_name TEXT)",
    """CREATE TABLE invoice_line_items (
        id TEXT PRIMARY KEY, invoice_id TEXT, description TEXT, quantity REAL, unit_price REAL,
        total_price REAL, category TEXT, estimate_line_item_id TEXT, line_number INTEGER)""",
    "CREATE TABLE estimates (id TEXT PRIMARY KEY, project_id TEXT)",
    "CREATE TABLE trades (id TEXT PRIMARY KEY, estimate_id TEXT, name TEXT, sort_order INTEGER)",
    """CREATE TABLE estimate_line_items (
        id TEXT PRIMARY KEY, trade_id TEXT, description TEXT, quantity REAL, unit TEXT,
        material_cost_est REAL, labor_cost_est REAL, equipment_cost_est REAL, sort_order INTEGER)""",
]

HOST_DATA = [
    "INSERT INTO invoices VALUES ('inv-2', 'project-1', 'INV-002', 'Sparks Electrical')",
    "INSERT INTO invoices VALUES ('inv-1', 'project-1', 'INV-001', 'ABC Concrete Supplies Ltd')",
    "INSERT INTO invoices VALUES ('inv-empty', 'project-1', 'INV-003', NULL)",
    "INSERT INTO invoices VALUES ('inv-x', 'project-2', 'INV-900', 'Elsewhere')",
    "INSERT INTO invoice_line_items VALUES ('li-2', 'inv-1', 'Concrete pumping', 1, 400, 400, 'equipment', NULL, 2)",
    "INSERT INTO invoice_line_items VALUES ('li-1', 'inv-1', 'Concrete pouring', 1, 2500, 2500, 'MATERIAL', NULL, 1)",
    "INSERT INTO invoice_line_items VALUES ('li-3', 'inv-2', 'Wiring', 10, 20, 200, NULL, 'est-electrical', 1)",
    "INSERT INTO estimates VALUES ('estimate-1', 'project-1')",
    "INSERT INTO trades VALUES ('trade-electrical', 'estimate-1', 'Electrical', 2)",
    "INSERT INTO trades VALUES ('trade-concrete', 'estimate-1', 'Concrete', 1)",
    "INSERT INTO estimate_line_items VALUES ('est-electrical', 'trade-electrical', 'Electrical rough-in', 1, 'item', 1800, 2200, 0, 1)",
    "INSERT INTO estimate_line_items VALUES ('est-pump', 'trade-concrete', 'Concrete pump hire', 1, 'day', 0, 0, 450, 2)",
    "INSERT INTO estimate_line_items VALUES ('est-concrete', 'trade-concrete', 'Concrete for foundation', 30, 'm3', 2000, 800, 200, 1)",
]


@pytest.fixture
async def database(tmp_path, test_settings):
    db = await DatabaseManager.initialize(
        test_settings, database_url=f"sqlite+aiosqlite:///{tmp_path / 'estimate_match.db'}"
    )
    yield db
    await db.close()


@pytest.fixture
def sql_repository(database) -> SqlPatternRepository:
    return SqlPatternRepository(database.session_factory)


@pytest.fixture
async def host_tables(database):
    async with database.session() as session:
        for statement in HOST_SCHEMA + HOST_DATA:
            await session.execute(text(statement))
    return database


def _pattern(**overrides) -> MatchingPattern:
    values = {
        "user_id": "user-1",
        "project_id": "project-1",
        "pattern_type": PatternType.SUPPLIER_TO_TRADE,
        "supplier_pattern": "abc concrete supplies",
        "trade_id": "trade-concrete",
    }
    values.update(overrides)
    return MatchingPattern(**values)


class TestDatabaseManager:
    @pytest.mark.asyncio
    async def test_health_check(self, database):
        status = await database.health_check()

        assert status["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_missing_url(self, test_settings):
        with pytest.raises(DatabaseError):
            await DatabaseManager.initialize(test_settings)


class TestSqlPatternRepository:
    """Tests for pattern and history persistence."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, sql_repository):
        pattern = _pattern()
        await sql_repository.save_pattern(pattern)

        loaded = await sql_repository.get_pattern(pattern.id)

        assert loaded.supplier_pattern == "abc concrete supplies"
        assert loaded.pattern_type == PatternType.SUPPLIER_TO_TRADE
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_save_overwrites(self, sql_repository):
        pattern = _pattern()
        await sql_repository.save_pattern(pattern)
        await sql_repository.save_pattern(pattern.model_copy(update={"confidence": 0.8, "usage_count": 2}))

        loaded = await sql_repository.get_pattern(pattern.id)

        assert loaded.confidence == pytest.approx(0.8)
        assert loaded.usage_count == 2
        assert len(await sql_repository.list_patterns("user-1", "project-1")) == 1

    @pytest.mark.asyncio
    async def test_find_pattern_matches_null_columns(self, sql_repository):
        await sql_repository.save_pattern(_pattern())

        found = await sql_repository.find_pattern(
            "user-1",
            "project-1",
            PatternType.SUPPLIER_TO_TRADE,
            "trade-concrete",
            supplier_pattern="abc concrete supplies",
        )
        other_trade = await sql_repository.find_pattern(
            "user-1",
            "project-1",
            PatternType.SUPPLIER_TO_TRADE,
            "trade-carpentry",
            supplier_pattern="abc concrete supplies",
        )

        assert found is not None
        assert other_trade is None

    @pytest.mark.asyncio
    async def test_search_patterns(self, sql_repository):
        await sql_repository.save_pattern(_pattern(confidence=0.7))
        await sql_repository.save_pattern(
            _pattern(
                pattern_type=PatternType.AMOUNT_TO_TRADE,
                supplier_pattern=None,
                amount_range_min=2000.0,
                amount_range_max=3000.0,
                confidence=0.5,
            )
        )
        await sql_repository.save_pattern(_pattern(user_id="user-2", confidence=0.9))

        hits = await sql_repository.search_patterns(
            "user-1", "project-1", supplier_key="concrete", amount=2500
        )

        assert [h.pattern_type for h in hits] == [
            PatternType.SUPPLIER_TO_TRADE,
            PatternType.AMOUNT_TO_TRADE,
        ]
        assert await sql_repository.search_patterns("user-1", "project-1", amount=3000) == []
        assert await sql_repository.search_patterns("user-1", "project-1") == []

    @pytest.mark.asyncio
    async def test_search_scope(self, sql_repository):
        await sql_repository.save_pattern(_pattern(project_id=None))
        await sql_repository.save_pattern(_pattern(project_id="project-2", trade_id="trade-other"))

        hits = await sql_repository.search_patterns("user-1", "project-1", supplier_key="concrete")

        assert [h.project_id for h in hits] == [None]

    @pytest.mark.asyncio
    async def test_history(self, sql_repository):
        now = datetime.now(timezone.utc)
        confirmed = MatchingHistoryEntry(
            user_id="user-1",
            project_id="project-1",
            invoice_line_item_id="li-1",
            supplier_name="ABC Concrete Supplies Ltd",
            trade_id="trade-concrete",
            user_confirmed=True,
        )
        corrected = confirmed.model_copy(
            update={"id": "h-corrected", "user_confirmed": False, "user_corrected": True, "parent_id": confirmed.id}
        )
        stale = confirmed.model_copy(update={"id": "h-stale", "created_at": now - timedelta(days=90)})
        for entry in (confirmed, corrected, stale):
            await sql_repository.add_history(entry)

        recent = await sql_repository.recent_history("user-1", "project-1", now - timedelta(days=30))
        loaded = await sql_repository.get_history("h-corrected")

        assert [e.id for e in recent] == [confirmed.id]
        assert loaded.parent_id == confirmed.id
        assert loaded.user_corrected
        assert len(await sql_repository.list_history("user-1", "project-1")) == 3

    @pytest.mark.asyncio
    async def test_learning_over_sql(self, sql_repository):
        service = PatternLearningService(
            sql_repository, user_id="user-1", project_id="project-1", config=PatternLearningConfig()
        )

        await service.learn_from_mapping("li-1", "ABC Concrete Supplies Ltd", "Concrete pouring", 2500, "trade-concrete")
        await service.learn_from_mapping("li-2", "ABC Concrete Supplies Ltd", "Concrete pouring", 2600, "trade-concrete")

        patterns = await sql_repository.list_patterns("user-1", "project-1")
        assert len(patterns) == 3
        assert all(p.usage_count == 2 for p in patterns)

        suggestions = await service.get_suggestions("ABC Concrete Supplies Ltd", "Concrete pouring", 2500)
        assert suggestions[0].trade_id == "trade-concrete"
        assert suggestions[0].confidence == pytest.approx(0.8)


class TestProjectLineItemsRepository:
    """Tests for host table access."""

    @pytest.mark.asyncio
    async def test_get_project_invoices(self, host_tables):
        async with host_tables.session() as session:
            invoices = await ProjectLineItemsRepository(session).get_project_invoices("project-1")

        assert [i.id for i in invoices] == ["inv-1", "inv-2", "inv-empty"]
        assert [li.id for li in invoices[0].line_items] == ["li-1", "li-2"]
        assert invoices[0].line_items[1].category == LineItemCategory.EQUIPMENT
        assert invoices[1].line_items[0].estimate_line_item_id == "est-electrical"
        assert invoices[1].line_items[0].category == LineItemCategory.OTHER
        assert invoices[2].line_items == []
        assert invoices[2].supplier_name == ""

    @pytest.mark.asyncio
    async def test_get_project_estimates(self, host_tables):
        async with host_tables.session() as session:
            estimates = await ProjectLineItemsRepository(session).get_project_estimates("project-1")

        assert [e.id for e in estimates] == ["est-concrete", "est-pump", "est-electrical"]
        assert estimates[0].total_cost == 3000
        assert estimates[0].trade_name == "Concrete"

    @pytest.mark.asyncio
    async def test_link_estimate(self, host_tables):
        async with host_tables.session() as session:
            repository = ProjectLineItemsRepository(session)
            assert await repository.link_estimate("li-1", "est-concrete")
            assert not await repository.link_estimate("li-missing", "est-concrete")

        async with host_tables.session() as session:
            invoices = await ProjectLineItemsRepository(session).get_project_invoices("project-1")

        assert invoices[0].line_items[0].estimate_line_item_id == "est-concrete"
