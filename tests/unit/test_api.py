"""
Unit tests for monitoring/api.py
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from campaign_experiments.config.settings import Settings
from campaign_experiments.experiments.service import ABTestingService
from campaign_experiments.monitoring.api import create_app


@pytest.fixture
def client(service):
    """Create test client over an in-memory service."""
    return TestClient(create_app(service=service, settings=Settings()))


@pytest.fixture
def running_test(client, test_definition):
    created = client.post("/tests", json=test_definition()).json()
    client.post(f"/tests/{created['id']}/start")
    return created["id"]


class TestOperationalEndpoints:
    """Tests for /health and /metrics."""

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"] == {"storage": "healthy"}
        assert "timestamp" in data
        assert data["uptime_seconds"] >= 0

    def test_health_degraded(self, client, service):
        with patch.object(service.repository, "health_check", return_value=False):
            data = client.get("/health").json()
        assert data["status"] == "degraded"
        assert data["components"]["storage"] == "unhealthy"

    def test_metrics_endpoint(self, client):
        client.get("/health")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert "experiments_requests_total" in response.text


class TestTestEndpoints:
    """Tests for test CRUD and lifecycle routes."""

    def test_create(self, client, test_definition):
        response = client.post("/tests", json=test_definition())
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "DRAFT"
        assert data["campaignId"] == "camp-spring"
        assert data["variants"][1]["trafficSplit"] == 50

    def test_create_invalid(self, client, test_definition):
        response = client.post(
            "/tests",
            json=test_definition(variants=[{"name": "A", "trafficSplit": 70}, {"name": "B", "trafficSplit": 20}]),
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "VALIDATION_ERROR"
        assert body["details"]["violations"] == ["trafficSplit must sum to 100, got 90"]

    def test_get_and_list(self, client, test_definition):
        created = client.post("/tests", json=test_definition()).json()
        assert client.get(f"/tests/{created['id']}").json()["id"] == created["id"]
        assert [t["id"] for t in client.get("/tests", params={"campaignId": "camp-spring"}).json()] == [created["id"]]
        assert client.get("/tests", params={"campaignId": "other"}).json() == []

    def test_get_unknown(self, client):
        response = client.get("/tests/missing")
        assert response.status_code == 404
        assert response.json()["details"] == {"resource_type": "test", "resource_id": "missing"}

    def test_lifecycle(self, client, running_test):
        assert client.get(f"/tests/{running_test}").json()["status"] == "RUNNING"
        assert client.post(f"/tests/{running_test}/pause").json()["status"] == "PAUSED"
        completed = client.post(f"/tests/{running_test}/complete").json()
        assert completed["status"] == "COMPLETED"
        assert completed["results"]["isFinal"] is True

    def test_invalid_transition(self, client, running_test):
        response = client.post(f"/tests/{running_test}/start")
        assert response.status_code == 409
        assert response.json()["details"]["current_status"] == "RUNNING"

    def test_refresh(self, client, running_test):
        response = client.post(f"/tests/{running_test}/refresh")
        assert response.status_code == 200
        assert response.json()["results"] is None

    def test_delete(self, client, test_definition):
        created = client.post("/tests", json=test_definition()).json()
        assert client.delete(f"/tests/{created['id']}").status_code == 204
        assert client.get(f"/tests/{created['id']}").status_code == 404

    def test_delete_running(self, client, running_test):
        assert client.delete(f"/tests/{running_test}").status_code == 409


class TestTrafficEndpoints:
    """Tests for allocation and event ingestion."""

    def test_allocation(self, client, running_test):
        response = client.get(f"/tests/{running_test}/allocation", params={"unitId": "user-9"})
        assert response.status_code == 200
        data = response.json()
        assert data["unitId"] == "user-9"
        assert data["variantId"] in {"A", "B"}
        again = client.get(f"/tests/{running_test}/allocation", params={"unitId": "user-9"}).json()
        assert again["variantId"] == data["variantId"]

    def test_allocation_requires_unit(self, client, running_test):
        assert client.get(f"/tests/{running_test}/allocation").status_code == 422

    def test_record_events(self, client, running_test):
        for event in ({"variantId": "B", "type": "impression"}, {"variantId": "B", "type": "conversion", "value": 12.5}):
            response = client.post(f"/tests/{running_test}/events", json=event)
            assert response.status_code == 202
            assert response.json()["status"] == "recorded"

        metrics = client.get(f"/tests/{running_test}").json()["variants"][1]["metrics"]
        assert metrics["impressions"] == 1
        assert metrics["conversions"] == 1
        assert metrics["revenue"] == 12.5
        assert metrics["sampleSize"] == 1

    def test_record_event_errors(self, client, running_test, test_definition):
        bad_type = client.post(f"/tests/{running_test}/events", json={"variantId": "A", "type": "hover"})
        assert bad_type.status_code == 400

        bad_variant = client.post(f"/tests/{running_test}/events", json={"variantId": "Z", "type": "click"})
        assert bad_variant.status_code == 404

        draft = client.post("/tests", json=test_definition()).json()
        on_draft = client.post(f"/tests/{draft['id']}/events", json={"variantId": "A", "type": "click"})
        assert on_draft.status_code == 409


class TestCreateApp:
    """Tests for the app factory."""

    def test_builds_service_from_settings(self):
        app = create_app(settings=Settings())
        assert isinstance(app.state.service, ABTestingService)
        assert app.title == "Campaign Experiments"
