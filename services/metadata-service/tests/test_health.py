"""
Tests for storage health reporting.
"""

import time
from unittest.mock import MagicMock

from metadata_service.health import (STATUS_DOWN, STATUS_UP,
                                     DynamoHealthReporter, SqlHealthReporter)


class TestSqlHealthReporter:
    """Test relational health checks."""

    def test_up(self, postgresql_storage, make_stack):
        """Test a healthy relational backend."""
        postgresql_storage.repositories.stacks.save(make_stack())

        body = postgresql_storage.health.check()

        assert body["status"] == STATUS_UP
        (check,) = body["checks"]
        assert check["name"] == "database-postgresql"
        assert check["status"] == STATUS_UP
        data = check["data"]
        assert data["provider"] == "postgresql"
        assert data["stackCount"] == 1
        assert set(data) >= {
            "connectionPool.active",
            "connectionPool.available",
            "connectionPool.awaiting",
            "connectionPool.max",
            "durationMs",
        }
        assert data["connectionPool.active"] == 0

    def test_down_on_probe_error(self):
        """Test that a probe error is reported, not raised."""
        database = MagicMock()
        database.pool_stats.return_value = {"active": 0, "available": 5, "awaiting": 0, "max": 5}
        stacks = MagicMock()
        stacks.count.side_effect = RuntimeError("could not connect to server")

        body = SqlHealthReporter(database, stacks, timeout=0.5).check()

        assert body["status"] == STATUS_DOWN
        data = body["checks"][0]["data"]
        assert data["error"] == "could not connect to server"
        assert data["errorType"] == "RuntimeError"
        assert data["connectionPool.available"] == 5

    def test_down_on_timeout(self):
        """Test that a slow probe is cut off at the deadline."""
        database = MagicMock()
        database.pool_stats.return_value = {"active": 5, "available": 0, "awaiting": 3, "max": 5}
        stacks = MagicMock()
        stacks.count.side_effect = lambda: time.sleep(0.5)

        start = time.perf_counter()
        body = SqlHealthReporter(database, stacks, timeout=0.05).check()
        elapsed = time.perf_counter() - start

        assert elapsed < 0.4
        assert body["status"] == STATUS_DOWN
        data = body["checks"][0]["data"]
        assert data["errorType"] == "TimeoutError"
        assert data["connectionPool.awaiting"] == 3


class TestDynamoHealthReporter:
    """Test DynamoDB health checks."""

    def test_up(self, dynamodb_storage, make_stack):
        """Test a healthy DynamoDB backend."""
        dynamodb_storage.repositories.stacks.save(make_stack())

        body = dynamodb_storage.health.check()

        assert body["status"] == STATUS_UP
        data = body["checks"][0]["data"]
        assert data["provider"] == "dynamodb"
        assert data["tableName"] == "test_stacks"
        assert data["tableStatus"] == "ACTIVE"
        assert data["throughput.requests"] > 0
        assert data["throughput.throttledRequests"] == 0

    def test_down_when_table_missing(self):
        """Test that a describe failure marks the backend down."""
        client = MagicMock()
        client.call.side_effect = RuntimeError("Requested resource not found")
        client.stats.snapshot.return_value = {"requests": 0}

        body = DynamoHealthReporter(client, "idp_stacks", timeout=0.5).check()

        assert body["status"] == STATUS_DOWN
        assert body["checks"][0]["name"] == "database-dynamodb"
        assert body["checks"][0]["data"]["throughput.requests"] == 0
