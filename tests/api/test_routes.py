"""
API Tests
=========

HTTP surface of the matching service through FastAPI's TestClient.
Lifespan runs with fallback-only matching, in-memory patterns and the
in-process cache.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from estimate_match.api.dependencies import get_line_items_repository, get_optional_line_items_repository
from estimate_match.api.main import create_app


class FakeLineItemsRepository:
    """Stands in for the host tables."""

    def __init__(self, invoices, estimates) -> None:
        self.invoices = invoices
        self.estimates = estimates
        self.links: dict[str, str | None] = {}

    async def get_project_invoices(self, project_id):
        return self.invoices

    async def get_project_estimates(self, project_id):
        return self.estimates

    async def link_estimate(self, invoice_line_item_id, estimate_line_item_id):
        known = {item.id for invoice in self.invoices for item in invoice.line_items}
        if invoice_line_item_id not in known:
            return False
        self.links[invoice_line_item_id] = estimate_line_item_id
        return True


@pytest.fixture
def app(test_settings):
    return create_app(test_settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def batch_body(invoice, estimates):
    return {
        "project_id": "project-1",
        "invoices": [invoice.model_dump(mode="json")],
        "estimates": [e.model_dump(mode="json") for e in estimates],
    }


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "not_configured"
        assert body["checks"]["cache"]["backend"] == "memory"
        assert body["checks"]["llm"] == {"status": "healthy", "provider": "none"}

    def test_request_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Request-ID"]
        assert float(response.headers["X-Process-Time"]) >= 0


class TestMatchRoutes:
    """Tests for /match endpoints."""

    def test_match_batch(self, client, batch_body):
        response = client.post("/match/batch", json=batch_body)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert [m["invoice_line_item_id"] for m in body["matches"]] == ["li-concrete", "li-office"]
        assert body["matches"][0]["estimate_line_item_id"] == "est-concrete"
        assert body["summary"]["total_items"] == 2
        assert body["processing_details"]["logic_matches"] == 1

    def test_second_batch_served_from_cache(self, client, batch_body):
        client.post("/match/batch", json=batch_body)
        response = client.post("/match/batch", json=batch_body)

        assert response.json()["processing_details"]["cache_hit"] is True

    def test_duplicate_item_ids(self, client, batch_body):
        batch_body["invoices"].append({**batch_body["invoices"][0], "id": "inv-2"})

        response = client.post("/match/batch", json=batch_body)

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert "Duplicate" in response.json()["error"]

    def test_invalid_body(self, client):
        response = client.post("/match/batch", json={"project_id": "project-1"})

        assert response.status_code == 422

    def test_user_batches_learn_patterns(self, client, batch_body):
        batch_body["user_id"] = "user-1"
        batch_body["options"] = {"quality_threshold": 0.5}

        response = client.post("/match/batch", json=batch_body)

        assert response.json()["processing_details"]["patterns_learned"] == 1
        stats = client.get("/patterns/stats", params={"user_id": "user-1", "project_id": "project-1"})
        assert stats.json()["total_patterns"] == 3

    def test_project_routes_need_database(self, client):
        assert client.post("/match/project/project-1", json={}).status_code == 503
        links = {"links": [{"invoice_line_item_id": "li-1", "estimate_line_item_id": "est-1"}]}
        assert client.post("/match/links", json=links).status_code == 503

    def test_match_project(self, app, client, invoice, estimates):
        app.dependency_overrides[get_line_items_repository] = lambda: FakeLineItemsRepository(
            [invoice], estimates
        )

        response = client.post("/match/project/project-1", json={"user_id": "user-1"})

        assert response.status_code == 200
        assert len(response.json()["matches"]) == 2

    def test_link_estimates(self, app, client, invoice, estimates):
        repository = FakeLineItemsRepository([invoice], estimates)
        app.dependency_overrides[get_line_items_repository] = lambda: repository

        response = client.post(
            "/match/links",
            json={
                "links": [
                    {"invoice_line_item_id": "li-concrete", "estimate_line_item_id": "est-concrete"},
                    {"invoice_line_item_id": "li-unknown", "estimate_line_item_id": "est-framing"},
                ]
            },
        )

        assert response.status_code == 200
        assert response.json() == {"updated": 1, "missing": ["li-unknown"]}
        assert repository.links == {"li-concrete": "est-concrete"}

    def test_cache_stats_and_clear(self, client, batch_body):
        client.post("/match/batch", json=batch_body)

        assert client.get("/match/cache/stats").json()["size"] == 1
        assert client.delete("/match/cache").status_code == 204
        assert client.get("/match/cache/stats").json()["size"] == 0


class TestPatternRoutes:
    """Tests for /patterns endpoints."""

    @pytest.fixture
    def learned(self, client):
        response = client.post(
            "/patterns/learn",
            json={
                "user_id": "user-1",
                "project_id": "project-1",
                "invoice_line_item_id": "li-1",
                "supplier_name": "ABC Concrete Supplies Ltd",
                "description": "Concrete pouring",
                "amount": 2500,
                "trade_id": "trade-concrete",
                "estimate_line_item_id": "est-concrete",
            },
        )
        assert response.status_code == 201
        return response.json()

    def test_suggestions(self, client, learned):
        response = client.get(
            "/patterns/suggestions",
            params={
                "user_id": "user-1",
                "project_id": "project-1",
                "supplier_name": "ABC Concrete Supplies Ltd",
                "description": "Concrete pouring",
                "amount": 2500,
            },
        )

        assert response.status_code == 200
        suggestions = response.json()
        assert suggestions
        assert suggestions[0]["trade_id"] == "trade-concrete"
        assert suggestions[0]["trade_name"] == ""

    def test_suggestions_named_from_project_estimates(self, app, client, learned, invoice, estimates):
        app.dependency_overrides[get_optional_line_items_repository] = lambda: FakeLineItemsRepository(
            [invoice], estimates
        )

        response = client.get(
            "/patterns/suggestions",
            params={"user_id": "user-1", "project_id": "project-1", "supplier_name": "ABC Concrete Supplies Ltd"},
        )

        assert response.status_code == 200
        assert {s["trade_name"] for s in response.json()} == {"Concrete"}

    def test_suggestions_require_user(self, client):
        assert client.get("/patterns/suggestions").status_code == 422

    def test_confirm(self, client, learned):
        response = client.post(f"/patterns/history/{learned['id']}/confirm", params={"user_id": "user-1"})

        assert response.status_code == 201
        assert response.json()["parent_id"] == learned["id"]

    def test_confirm_unknown(self, client):
        response = client.post("/patterns/history/missing/confirm", params={"user_id": "user-1"})

        assert response.status_code == 404

    def test_correct(self, client, learned):
        response = client.post(
            f"/patterns/history/{learned['id']}/correct",
            json={"user_id": "user-1", "project_id": "project-1", "trade_id": "trade-carpentry"},
        )

        assert response.status_code == 201
        assert response.json()["user_corrected"] is True
        assert response.json()["trade_id"] == "trade-carpentry"

    def test_stats(self, client, learned):
        params = {"user_id": "user-1", "project_id": "project-1"}
        assert client.get("/patterns/stats", params=params).json()["accuracy_rate"] == 0.0

        client.post(f"/patterns/history/{learned['id']}/confirm", params={"user_id": "user-1"})
        response = client.get("/patterns/stats", params=params)

        assert response.status_code == 200
        assert response.json()["total_patterns"] == 3
        assert response.json()["accuracy_rate"] == 1.0

    def test_store_failure_maps_to_500(self, app, client):
        failing = AsyncMock()
        failing.add_history.side_effect = RuntimeError("database down")
        app.state.engine.pattern_repository = failing

        response = client.post(
            "/patterns/learn",
            json={"user_id": "user-1", "invoice_line_item_id": "li-1", "trade_id": "trade-concrete"},
        )

        assert response.status_code == 500
        assert response.json()["error"] == "PatternStoreError"
