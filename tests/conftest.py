"""
Test Configuration and Fixtures
================================

Shared pytest fixtures for estimate-match tests.
"""

import json
from unittest.mock import AsyncMock

import pytest

from estimate_match.config.settings import Settings
from estimate_match.db.repositories import InMemoryPatternRepository
from estimate_match.llm.client import LLMResponse, SemanticModelClient
from estimate_match.schemas.domain import (
    EstimateLineItem,
    Invoice,
    InvoiceLineItem,
    LineItemCategory,
)
from estimate_match.services.pattern_learning import PatternLearningConfig, PatternLearningService


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment, fallback-only by default."""
    return Settings(
        _env_file=None,
        llm_provider="none",
        cache_backend="memory",
        database_url=None,
        environment="development",
    )


@pytest.fixture
def estimates() -> list[EstimateLineItem]:
    """Three estimate lines across two trades."""
    return [
        EstimateLineItem(
            id="est-concrete",
            description="Concrete for foundation",
            quantity=30,
            unit="m3",
            material_cost_est=2000,
            labor_cost_est=800,
            equipment_cost_est=200,
            trade_name="Concrete",
            trade_id="trade-concrete",
        ),
        EstimateLineItem(
            id="est-framing",
            description="Timber wall framing",
            quantity=120,
            unit="lm",
            material_cost_est=4500,
            labor_cost_est=3000,
            trade_name="Carpentry",
            trade_id="trade-carpentry",
        ),
        EstimateLineItem(
            id="est-electrical",
            description="Electrical rough-in wiring",
            quantity=1,
            unit="item",
            material_cost_est=1800,
            labor_cost_est=2200,
            trade_name="Electrical",
            trade_id="trade-electrical",
        ),
    ]


@pytest.fixture
def invoice() -> Invoice:
    """A supplier invoice with one concrete line and one unrelated line."""
    return Invoice(
        id="inv-1",
        invoice_number="INV-1001",
        supplier_name="ABC Concrete Supplies Ltd",
        line_items=[
            InvoiceLineItem(
                id="li-concrete",
                description="Concrete pouring",
                quantity=1,
                unit_price=2500,
                total_price=2500,
                category=LineItemCategory.MATERIAL,
            ),
            InvoiceLineItem(
                id="li-office",
                description="Office supplies",
                quantity=3,
                unit_price=15,
                total_price=45,
                category=LineItemCategory.OTHER,
            ),
        ],
    )


@pytest.fixture
def pattern_repository() -> InMemoryPatternRepository:
    return InMemoryPatternRepository()


@pytest.fixture
def pattern_service(pattern_repository) -> PatternLearningService:
    """Pattern store for user-1 on project-1 with default increments."""
    return PatternLearningService(
        pattern_repository,
        user_id="user-1",
        project_id="project-1",
        config=PatternLearningConfig(),
    )


def _payload(*matches: dict) -> str:
    return json.dumps({"matches": list(matches)})


@pytest.fixture
def llm_payload():
    """Builds model response text in the expected JSON shape."""
    return _payload


@pytest.fixture
def mock_model_client():
    """Model client whose complete() is an AsyncMock."""
    client = AsyncMock(spec=SemanticModelClient)
    client.model_name = "mock-model"
    client.complete = AsyncMock(
        return_value=LLMResponse(
            content=_payload(),
            model="mock-model",
            usage={"total_tokens": 0},
        )
    )
    return client
