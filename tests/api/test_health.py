"""
Tests for health and readiness endpoints.
"""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock, AsyncMock, patch

from src.api.main import app


@pytest.fixture
def client():
    """Create test client."""
    yield TestClient(app)
    app.state.orchestrator = None


@pytest.fixture
def mock_orchestrator():
    """Initialized pipeline with running workers."""
    orchestrator = MagicMock()
    orchestrator.is_initialized = True
    orchestrator.is_running = True
    return orchestrator


def mock_db_client(command: AsyncMock) -> MagicMock:
    mock_client = MagicMock()
    mock_client.admin = MagicMock()
    mock_client.admin.command = command
    return mock_client


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_200(self, client):
        """Health endpoint returns 200 OK."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "feedback-signal-pipeline"
        assert data["version"] == "0.1.0"


class TestReadinessEndpoint:
    """Tests for /ready endpoint."""

    def test_ready_when_initialized(self, client, mock_orchestrator):
        """Ready endpoint returns 200 when the pipeline is up and MongoDB answers."""
        app.state.orchestrator = mock_orchestrator

        with patch("src.api.routes.health.db_manager") as mock_db:
            mock_db.client = mock_db_client(AsyncMock(return_value={"ok": 1}))

            response = client.get("/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["mongodb"] == "connected"
        assert data["workers_running"] is True

    def test_not_ready_without_pipeline(self, client):
        """Ready endpoint returns 503 before the lifespan built the pipeline."""
        app.state.orchestrator = None

        response = client.get("/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "not_ready"
        assert data["reason"] == "Pipeline not initialized"

    def test_not_ready_when_uninitialized(self, client, mock_orchestrator):
        mock_orchestrator.is_initialized = False
        app.state.orchestrator = mock_orchestrator

        response = client.get("/ready")

        assert response.status_code == 503

    def test_ready_fails_when_mongodb_down(self, client, mock_orchestrator):
        """Ready endpoint returns 503 when MongoDB is not reachable."""
        app.state.orchestrator = mock_orchestrator

        with patch("src.api.routes.health.db_manager") as mock_db:
            mock_db.client = mock_db_client(AsyncMock(side_effect=Exception("Connection refused")))

            response = client.get("/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "not_ready"
        assert "Connection refused" in data["reason"]
