"""
Tests for the FastAPI application and the health router.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from metadata_service.app import create_app
from metadata_service.config import Settings
from metadata_service.domain.exceptions import ConfigurationError


@pytest.fixture
def sql_client(sql_settings):
    """Test client on the relational backend."""
    with TestClient(create_app(sql_settings)) as test_client:
        yield test_client


@pytest.fixture
def dynamodb_client(aws, dynamodb_settings):
    """Test client on the DynamoDB backend."""
    with TestClient(create_app(dynamodb_settings)) as test_client:
        yield test_client


class TestStartup:
    """Test application startup."""

    def test_invalid_provider_fails_startup(self):
        """Test that an unsupported provider aborts startup."""
        app = create_app(Settings(_env_file=None, DATABASE_PROVIDER="mongodb"))

        with pytest.raises(ConfigurationError) as exc_info:
            with TestClient(app):
                pass

        assert "'mongodb'" in str(exc_info.value)

    def test_storage_attached_to_app_state(self, sql_client):
        """Test that the storage context is built once at startup."""
        storage = sql_client.app.state.storage

        assert storage is not None
        assert storage.provider.value == "postgresql"

    def test_request_id_echoed(self, sql_client):
        """Test that the request id header is returned."""
        response = sql_client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"


class TestHealthEndpoints:
    """Test liveness, readiness and metrics endpoints."""

    def test_health(self, sql_client):
        """Test the liveness endpoint."""
        response = sql_client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "UP"
        assert data["service"] == "metadata-service"
        assert data["provider"] == "postgresql"
        assert "timestamp" in data

    def test_ready_postgresql(self, sql_client):
        """Test readiness on the relational backend."""
        response = sql_client.get("/api/v1/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "UP"
        (check,) = body["checks"]
        assert check["name"] == "database-postgresql"
        assert check["data"]["stackCount"] == 0
        assert check["data"]["connectionPool.max"] == 25

    def test_ready_dynamodb(self, dynamodb_client):
        """Test readiness on the DynamoDB backend."""
        response = dynamodb_client.get("/api/v1/ready")

        assert response.status_code == 200
        check = response.json()["checks"][0]
        assert check["name"] == "database-dynamodb"
        assert check["data"]["tableName"] == "test_stacks"
        assert check["data"]["tableStatus"] == "ACTIVE"
        assert "throughput.throttledRequests" in check["data"]

    def test_ready_down_returns_503(self, sql_client):
        """Test that a failing probe makes the service unready."""
        stacks = sql_client.app.state.storage.repositories.stacks

        with patch.object(stacks, "count", side_effect=RuntimeError("connection refused")):
            response = sql_client.get("/api/v1/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "DOWN"
        assert body["checks"][0]["data"]["error"] == "connection refused"

    def test_metrics(self, sql_client):
        """Test the Prometheus endpoint."""
        sql_client.get("/api/v1/ready")

        response = sql_client.get("/api/v1/metrics")

        assert response.status_code == 200
        assert "metadata_storage_operations_total" in response.text
        assert "metadata_db_pool_connections" in response.text
