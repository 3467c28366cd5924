"""
Tests for the DynamoDB client wrapper.

Covers:
- Throttling retries and the retry budget
- Error translation
- Cancellation reason parsing
- Throughput counters
- The in-flight request ceiling
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from metadata_service.config import Settings
from metadata_service.domain.exceptions import CapacityError, ConnectivityError
from metadata_service.infrastructure.dynamodb_client import (
    DynamoDBClient, cancellation_codes, is_throttle)


def client_error(code, message="error", operation="PutItem", **extra):
    response = {"Error": {"Code": code, "Message": message}}
    response.update(extra)
    return ClientError(response, operation)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        DYNAMODB_MAX_ATTEMPTS=3,
        DYNAMODB_BACKOFF_BASE_SECONDS=0.001,
        DYNAMODB_BACKOFF_MAX_SECONDS=0.002,
    )


@pytest.fixture
def boto_client():
    return MagicMock()


@pytest.fixture
def dynamodb(settings, boto_client):
    return DynamoDBClient(settings, client=boto_client)


class TestRetries:
    """Test throttling retries."""

    def test_retry_then_succeed(self, dynamodb, boto_client):
        """Test that throttled requests are retried until they succeed."""
        boto_client.put_item.side_effect = [
            client_error("ProvisionedThroughputExceededException"),
            client_error("ThrottlingException"),
            {"ConsumedCapacity": {"TableName": "t", "CapacityUnits": 1.0}},
        ]

        response = dynamodb.call("put_item", TableName="t", Item={})

        assert response["ConsumedCapacity"]["CapacityUnits"] == 1.0
        assert boto_client.put_item.call_count == 3
        stats = dynamodb.stats.snapshot()
        assert stats["throttledRequests"] == 2
        assert stats["consumedWriteCapacity"] == 1.0
        assert stats["retriesExhausted"] == 0

    def test_retry_budget_exhausted(self, dynamodb, boto_client):
        """Test that throttling past the budget becomes CapacityError."""
        boto_client.query.side_effect = client_error("ThrottlingException", operation="Query")

        with pytest.raises(CapacityError) as exc_info:
            dynamodb.call("query", TableName="t")

        assert boto_client.query.call_count == 3
        assert exc_info.value.details["attempts"] == 3
        assert dynamodb.stats.snapshot()["retriesExhausted"] == 1

    def test_condition_failure_not_retried(self, dynamodb, boto_client):
        """Test that a failed condition propagates unchanged."""
        boto_client.put_item.side_effect = client_error("ConditionalCheckFailedException")

        with pytest.raises(ClientError):
            dynamodb.call("put_item", TableName="t", Item={})

        assert boto_client.put_item.call_count == 1

    def test_transaction_conflict_retried(self, dynamodb, boto_client):
        """Test that a transaction cancelled by a concurrent one is retried."""
        boto_client.transact_write_items.side_effect = [
            client_error(
                "TransactionCanceledException",
                "Transaction cancelled, please refer cancellation reasons "
                "for specific reasons [None, TransactionConflict]",
                operation="TransactWriteItems",
            ),
            {},
        ]

        dynamodb.call("transact_write_items", TransactItems=[])

        assert boto_client.transact_write_items.call_count == 2

    def test_cancelled_by_condition_not_retried(self, dynamodb, boto_client):
        """Test that a transaction cancelled by a condition is not retried."""
        boto_client.transact_write_items.side_effect = client_error(
            "TransactionCanceledException",
            operation="TransactWriteItems",
            CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
        )

        with pytest.raises(ClientError):
            dynamodb.call("transact_write_items", TransactItems=[])

        assert boto_client.transact_write_items.call_count == 1


class TestErrorTranslation:
    """Test translation of infrastructure failures."""

    def test_missing_table(self, dynamodb, boto_client):
        """Test that a missing table is a connectivity error."""
        boto_client.get_item.side_effect = client_error(
            "ResourceNotFoundException", "Requested resource not found", operation="GetItem"
        )

        with pytest.raises(ConnectivityError):
            dynamodb.call("get_item", TableName="t", Key={})

    def test_endpoint_unreachable(self, dynamodb, boto_client):
        """Test that connection failures are connectivity errors."""
        boto_client.describe_table.side_effect = EndpointConnectionError(
            endpoint_url="http://localhost:8000"
        )

        with pytest.raises(ConnectivityError) as exc_info:
            dynamodb.call("describe_table", TableName="t")

        assert exc_info.value.details["backend"] == "dynamodb"


class TestRequestParameters:
    """Test request decoration."""

    def test_consumed_capacity_requested(self, dynamodb, boto_client):
        """Test that data operations ask for consumed capacity."""
        boto_client.get_item.return_value = {
            "ConsumedCapacity": {"TableName": "t", "CapacityUnits": 0.5}
        }

        dynamodb.call("get_item", TableName="t", Key={})

        assert boto_client.get_item.call_args.kwargs["ReturnConsumedCapacity"] == "TOTAL"
        assert dynamodb.stats.snapshot()["consumedReadCapacity"] == 0.5

    def test_control_plane_untouched(self, dynamodb, boto_client):
        """Test that table operations are passed through as-is."""
        boto_client.describe_table.return_value = {"Table": {}}

        dynamodb.call("describe_table", TableName="t")

        assert "ReturnConsumedCapacity" not in boto_client.describe_table.call_args.kwargs

    def test_transaction_capacity_list(self, dynamodb, boto_client):
        """Test that per-table capacity lists are summed."""
        boto_client.transact_write_items.return_value = {
            "ConsumedCapacity": [
                {"TableName": "a", "CapacityUnits": 2.0},
                {"TableName": "b", "CapacityUnits": 2.0},
            ]
        }

        dynamodb.call("transact_write_items", TransactItems=[])

        assert dynamodb.stats.snapshot()["consumedWriteCapacity"] == 4.0


class TestConcurrencyCeiling:
    """Test the in-flight request ceiling."""

    def test_full_ceiling_is_capacity_error(self, boto_client):
        """Test that a request waiting too long for a slot fails."""
        settings = Settings(
            _env_file=None,
            DYNAMODB_MAX_CONCURRENT_REQUESTS=1,
            DYNAMODB_CONNECT_TIMEOUT=0.01,
            DYNAMODB_READ_TIMEOUT=0.01,
        )
        dynamodb = DynamoDBClient(settings, client=boto_client)
        dynamodb._semaphore.acquire()

        with pytest.raises(CapacityError):
            dynamodb.call("get_item", TableName="t", Key={})

        boto_client.get_item.assert_not_called()


class TestCancellationCodes:
    """Test cancellation reason parsing."""

    def test_structured_reasons(self):
        """Test reasons from the response body."""
        error = client_error(
            "TransactionCanceledException",
            CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
        )

        assert cancellation_codes(error) == ["None", "ConditionalCheckFailed"]

    def test_reasons_from_message(self):
        """Test reasons parsed from the error message."""
        error = client_error(
            "TransactionCanceledException",
            "Transaction cancelled, please refer cancellation reasons for specific "
            "reasons [ConditionalCheckFailed, None]",
        )

        assert cancellation_codes(error) == ["ConditionalCheckFailed", "None"]

    def test_is_throttle(self):
        """Test throttle classification."""
        assert is_throttle(client_error("RequestLimitExceeded"))
        assert not is_throttle(client_error("ValidationException"))
        assert not is_throttle(ValueError("boom"))
