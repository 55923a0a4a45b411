"""
Tests for routes_intelligence.py and main.py - HTTP API

Tests the intelligence endpoints against an in-memory orchestrator and
SQLite history, API key handling, request validation, the 402 budget
mapping and the CORS origin policy.
"""
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from salesintel.api import routes_intelligence
from salesintel.core.config import Settings
from salesintel.core.db import get_db
from salesintel.main import cors_origins
from salesintel.models.collection_run import RunStatus
from salesintel.services.orchestration_core import CostLimitExceeded
from salesintel.services.orchestrator import DataSourceOrchestrator
from salesintel.services.types import SourceType

from tests.fixtures.db_fixtures import add_run, load_run, sqlite_session_factory
from tests.fixtures.orchestration_fixtures import (
    CONTACTS_PAYLOAD,
    SERP_NEWS_PAYLOAD,
    SERP_ORGANIC_PAYLOAD,
    InMemoryCacheStore,
    RecordingSleep,
    build_registry,
    fast_config,
    returning,
)


@pytest.fixture
def orchestrator():
    collectors = {
        SourceType.serp_organic: returning(SERP_ORGANIC_PAYLOAD),
        SourceType.serp_news: returning(SERP_NEWS_PAYLOAD),
        SourceType.snov_contacts: returning(CONTACTS_PAYLOAD),
    }
    return DataSourceOrchestrator(
        fast_config(),
        build_registry(collectors),
        InMemoryCacheStore(),
        sleep=RecordingSleep(),
    )


@pytest.fixture
def session_factory():
    return sqlite_session_factory()


@pytest.fixture
def app(orchestrator, session_factory):
    """Router-only app with the orchestrator and database swapped out."""
    app = FastAPI()
    app.include_router(routes_intelligence.router)

    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[routes_intelligence.orchestrator_dependency] = lambda: orchestrator
    app.dependency_overrides[get_db] = override_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def refusing_orchestrator():
    refused = MagicMock()
    error = CostLimitExceeded(0.5, 0.1)
    refused.create_collection_plan = AsyncMock(side_effect=error)
    refused.get_multi_source_data = AsyncMock(side_effect=error)
    refused.get_customer_intelligence = AsyncMock(side_effect=error)
    return refused


# ---------------------------------------------------------------------------
# Plan & Collect Tests
# ---------------------------------------------------------------------------

class TestPlanEndpoint:
    """Tests for POST /intelligence/plan."""

    def test_default_profile_plan(self, client):
        """The profile consumer plans organic search and news."""
        response = client.post("/intelligence/plan", json={"company_name": "Acme"})

        assert response.status_code == 200
        body = response.json()
        assert body["requester"] == "profile"
        assert body["to_collect"] == ["serp_organic", "serp_news"]
        assert body["estimated_cost"] == pytest.approx(0.10)

    def test_required_sources_honoured(self, client):
        """Explicit sources replace the consumer defaults."""
        response = client.post(
            "/intelligence/plan",
            json={"company_name": "Acme", "required_sources": [" SERP_NEWS "]},
        )

        assert response.status_code == 200
        assert response.json()["to_collect"] == ["serp_news"]

    @pytest.mark.parametrize("payload", [
        {"company_name": "   "},
        {"company_name": "x" * 201},
        {"company_name": "Acme", "max_cost": -1},
        {"company_name": "Acme", "consumer_type": "astrologer"},
    ])
    def test_invalid_requests_rejected(self, client, payload):
        """Blank names, over-long names, negative budgets and unknown consumers are 422."""
        response = client.post("/intelligence/plan", json=payload)
        assert response.status_code == 422

    @pytest.mark.parametrize("path,payload", [
        ("/intelligence/plan", {"company_name": "Acme"}),
        ("/intelligence/collect", {"company_name": "Acme"}),
        ("/intelligence/customer", {"customer_company": "Prospect Corp", "vendor_company": "Acme"}),
    ])
    def test_budget_refusal_maps_to_402(self, app, client, path, payload):
        """CostLimitExceeded becomes a 402 with both figures."""
        app.dependency_overrides[routes_intelligence.orchestrator_dependency] = refusing_orchestrator

        response = client.post(path, json=payload)

        assert response.status_code == 402
        assert response.json()["detail"] == {
            "error": "cost_limit_exceeded",
            "estimated_cost": 0.5,
            "max_cost": 0.1,
        }


class TestCollectEndpoint:
    """Tests for POST /intelligence/collect."""

    def test_collects_and_then_serves_from_cache(self, client):
        """The second identical request is all cache hits."""
        first = client.post("/intelligence/collect", json={"company_name": "Acme"}).json()
        second = client.post("/intelligence/collect", json={"company_name": "Acme"}).json()

        assert first["new_api_calls"] == 2
        assert first["source_status"] == {"serp_organic": "collected", "serp_news": "collected"}
        assert first["sources"]["serp_organic"] == SERP_ORGANIC_PAYLOAD
        assert second["cache_hits"] == 2
        assert second["new_api_calls"] == 0
        assert second["total_new_cost"] == 0.0


# ---------------------------------------------------------------------------
# Async Run Tests
# ---------------------------------------------------------------------------

class TestAsyncRuns:
    """Tests for POST /intelligence/collect/async and GET /intelligence/runs/{id}."""

    def test_async_collection_queues_task(self, client, session_factory):
        """A pending row is created and the worker task is sent."""
        with patch.object(routes_intelligence.celery_app, "send_task") as send_task:
            response = client.post(
                "/intelligence/collect/async",
                json={"company_name": "Acme", "max_cost": 0.25},
            )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "PENDING"

        run = load_run(session_factory, UUID(body["run_id"]))
        assert run.status == RunStatus.PENDING
        assert run.company_name == "Acme"

        send_task.assert_called_once_with(
            "salesintel.services.tasks.run_collection",
            args=[body["run_id"], "Acme", "profile"],
            kwargs={"max_cost": 0.25, "required_sources": None},
            queue="collection",
        )

    def test_get_run(self, client, session_factory):
        """Stored runs are returned with their ledger fields."""
        run_id = add_run(session_factory, "Acme", status=RunStatus.COMPLETED, new_api_calls=2)

        response = client.get(f"/intelligence/runs/{run_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == str(run_id)
        assert body["status"] == "COMPLETED"
        assert body["new_api_calls"] == 2
        assert body["total_new_cost"] == 0.0

    def test_missing_run_is_404(self, client):
        response = client.get(f"/intelligence/runs/{uuid4()}")
        assert response.status_code == 404

    def test_malformed_run_id_is_422(self, client):
        response = client.get("/intelligence/runs/not-a-uuid")
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Customer / Status / Health / Metrics Tests
# ---------------------------------------------------------------------------

class TestCustomerEndpoint:
    """Tests for POST /intelligence/customer."""

    def test_customer_intelligence(self, client):
        """Vendor context and prospect data come back together."""
        response = client.post(
            "/intelligence/customer",
            json={"customer_company": "Prospect Corp", "vendor_company": "Acme Analytics"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["vendor_context"]["company_name"] == "Acme Analytics"
        assert body["vendor_context"]["competitors"] == ["Gong", "Clari"]
        assert body["plan"]["plan"]["company_name"] == "Prospect Corp"
        assert body["quality_score"] == 90
        assert body["recommendations"] == []

    def test_invalid_urgency_rejected(self, client):
        response = client.post(
            "/intelligence/customer",
            json={"customer_company": "Prospect Corp", "vendor_company": "Acme", "urgency": "asap"},
        )
        assert response.status_code == 422


class TestStatusHealthMetrics:
    """Tests for the read-only reporting endpoints."""

    def test_status_reflects_cache(self, client):
        """Collected sources show as available, untouched ones do not."""
        client.post("/intelligence/collect", json={"company_name": "Acme"})

        body = client.get("/intelligence/status/Acme").json()

        assert body["company_name"] == "Acme"
        assert body["sources"] == {
            "serp_organic": True,
            "serp_news": True,
            "snov_contacts": False,
        }
        assert body["overall_availability"] == pytest.approx(2 / 3)

    def test_health(self, client):
        """Every registered collector is configured and the cache answers."""
        body = client.get("/intelligence/health").json()

        assert body["status"] == "healthy"
        assert body["is_healthy"] is True
        assert {s["source"] for s in body["sources"]} == {"serp_organic", "serp_news", "snov_contacts"}

    def test_metrics_count_requests(self, client):
        """Spend metrics accumulate across requests."""
        client.post("/intelligence/collect", json={"company_name": "Acme"})
        client.post("/intelligence/collect", json={"company_name": "Acme"})

        body = client.get("/intelligence/metrics").json()

        assert body["total_requests"] == 2
        assert body["api_calls"] == 2
        assert body["cache_hits"] == 2
        assert body["requests_by_consumer"] == {"profile": 2}


# ---------------------------------------------------------------------------
# Auth Tests
# ---------------------------------------------------------------------------

class TestApiKey:
    """Tests for the X-API-Key header check."""

    def test_dev_without_key_is_open(self, client):
        assert client.get("/intelligence/metrics").status_code == 200

    def test_configured_key_required(self, client, monkeypatch):
        """Once a key is configured the header must match it."""
        monkeypatch.setattr(routes_intelligence.settings, "API_AUTH_KEY", "secret")

        assert client.get("/intelligence/metrics").status_code == 401
        assert client.get("/intelligence/metrics", headers={"X-API-Key": "wrong"}).status_code == 401
        assert client.get("/intelligence/metrics", headers={"X-API-Key": "secret"}).status_code == 200

    def test_prod_without_key_is_misconfigured(self, client, monkeypatch):
        """Outside dev a missing key is refused rather than skipped."""
        monkeypatch.setattr(routes_intelligence.settings, "ENV", "prod")
        monkeypatch.setattr(routes_intelligence.settings, "API_AUTH_KEY", None)

        response = client.get("/intelligence/metrics")

        assert response.status_code == 401
        assert response.json()["detail"] == "API key not configured"


# ---------------------------------------------------------------------------
# CORS Policy Tests
# ---------------------------------------------------------------------------

class TestCorsOrigins:
    """Tests for cors_origins."""

    @pytest.mark.parametrize("env,frontend,allow_all,expected", [
        ("dev", None, False, ["*"]),
        ("dev", "https://app.example.com", False, ["https://app.example.com"]),
        ("dev", "https://app.example.com", True, ["*"]),
        ("prod", "https://a.example.com, https://b.example.com,", False,
         ["https://a.example.com", "https://b.example.com"]),
        ("prod", "https://a.example.com", True, ["https://a.example.com"]),
    ])
    def test_origin_policy(self, env, frontend, allow_all, expected):
        settings = Settings(ENV=env, FRONTEND_ORIGIN=frontend, CORS_ALLOW_ALL_ORIGINS=allow_all)
        assert cors_origins(settings) == expected

    def test_prod_requires_frontend_origin(self):
        with pytest.raises(RuntimeError):
            cors_origins(Settings(ENV="prod", FRONTEND_ORIGIN=None))
