"""
DynamoDB client wrapper.

Shares one thread-safe boto3 client between all key-value repositories,
caps in-flight requests with a semaphore, retries throttled requests
with exponential backoff (tenacity) and keeps consumed-throughput counters
for the health check. botocore's own retries are disabled so the retry
budget configured here is the only one.
"""

import re
import threading
from typing import Any, Dict, List, Optional

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import (ClientError, ConnectTimeoutError,
                                 EndpointConnectionError, ReadTimeoutError)
from tenacity import (retry, retry_if_exception, stop_after_attempt,
                      wait_exponential)

from ..config import Settings
from ..domain.exceptions import CapacityError, ConnectivityError
from ..metrics import (track_consumed_capacity, track_dynamodb_request,
                       track_dynamodb_throttle)

logger = structlog.get_logger(__name__)

BACKEND = "dynamodb"

THROTTLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
}

# Cancellation reasons that mean "try again", as opposed to a failed condition
RETRYABLE_CANCELLATION_CODES = {
    "ThrottlingError",
    "ProvisionedThroughputExceeded",
    "TransactionConflict",
}

READ_OPERATIONS = {"get_item", "batch_get_item", "query", "scan", "transact_get_items"}

CAPACITY_OPERATIONS = READ_OPERATIONS | {
    "put_item",
    "update_item",
    "delete_item",
    "batch_write_item",
    "transact_write_items",
}


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def cancellation_codes(exc: ClientError) -> List[str]:
    """
    Per-item cancellation reasons of a TransactionCanceledException.

    Falls back to the bracketed list in the error message when the
    structured reasons are missing from the response.
    """
    reasons = exc.response.get("CancellationReasons")
    if reasons:
        return [reason.get("Code", "None") for reason in reasons]
    message = exc.response.get("Error", {}).get("Message", "")
    match = re.search(r"\[(.*)\]", message)
    if not match:
        return []
    return [code.strip() for code in match.group(1).split(",")]


def is_throttle(exc: BaseException) -> bool:
    if not isinstance(exc, ClientError):
        return False
    code = error_code(exc)
    if code in THROTTLE_CODES:
        return True
    if code == "TransactionCanceledException":
        failed = [c for c in cancellation_codes(exc) if c != "None"]
        return bool(failed) and all(c in RETRYABLE_CANCELLATION_CODES for c in failed)
    return False


class ThroughputStats:
    """Consumed capacity and throttling counters since the client was created."""

    def __init__(self):
        self._lock = threading.Lock()
        self.requests = 0
        self.consumed_read = 0.0
        self.consumed_write = 0.0
        self.throttled = 0
        self.retries_exhausted = 0

    def record_request(self, read_units: float = 0.0, write_units: float = 0.0):
        with self._lock:
            self.requests += 1
            self.consumed_read += read_units
            self.consumed_write += write_units

    def record_throttle(self):
        with self._lock:
            self.throttled += 1

    def record_exhausted(self):
        with self._lock:
            self.retries_exhausted += 1

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return {
                "requests": self.requests,
                "consumedReadCapacity": round(self.consumed_read, 3),
                "consumedWriteCapacity": round(self.consumed_write, 3),
                "throttledRequests": self.throttled,
                "retriesExhausted": self.retries_exhausted,
            }


class DynamoDBClient:
    """Bounded, retrying front for the boto3 DynamoDB client."""

    def __init__(self, settings: Settings, client: Optional[Any] = None):
        """
        Initialize the client.

        Args:
            settings: Service settings (region, endpoint, limits)
            client: Pre-built boto3 client, used by tests
        """
        self.region = settings.DYNAMODB_REGION
        self.endpoint = settings.DYNAMODB_ENDPOINT
        self.max_attempts = settings.DYNAMODB_MAX_ATTEMPTS
        self.max_concurrent_requests = settings.DYNAMODB_MAX_CONCURRENT_REQUESTS
        self.acquire_timeout = settings.DYNAMODB_CONNECT_TIMEOUT + settings.DYNAMODB_READ_TIMEOUT

        if client is None:
            client = boto3.client(
                "dynamodb",
                region_name=self.region,
                endpoint_url=self.endpoint,
                config=Config(
                    region_name=self.region,
                    max_pool_connections=self.max_concurrent_requests,
                    connect_timeout=settings.DYNAMODB_CONNECT_TIMEOUT,
                    read_timeout=settings.DYNAMODB_READ_TIMEOUT,
                    retries={"max_attempts": 1, "mode": "standard"},
                ),
            )
        self.client = client
        self.stats = ThroughputStats()
        self._semaphore = threading.BoundedSemaphore(self.max_concurrent_requests)
        self._invoke_with_retry = retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=settings.DYNAMODB_BACKOFF_BASE_SECONDS,
                max=settings.DYNAMODB_BACKOFF_MAX_SECONDS,
            ),
            retry=retry_if_exception(is_throttle),
            reraise=True,
        )(self._invoke)

        logger.info(
            "dynamodb_client_created",
            region=self.region,
            endpoint=self.endpoint,
            max_concurrent_requests=self.max_concurrent_requests,
            max_attempts=self.max_attempts,
        )

    def call(self, operation: str, **kwargs) -> Dict[str, Any]:
        """
        Invoke one DynamoDB API operation.

        Args:
            operation: boto3 method name, e.g. ``put_item``
            **kwargs: Request parameters

        Returns:
            The raw response

        Raises:
            CapacityError: Throttled past the retry budget, or the
                concurrency ceiling stayed full
            ConnectivityError: Endpoint unreachable or table missing
            ClientError: Any other service error, unmodified
        """
        if operation in CAPACITY_OPERATIONS:
            kwargs.setdefault("ReturnConsumedCapacity", "TOTAL")
        try:
            return self._invoke_with_retry(operation, kwargs)
        except ClientError as e:
            if is_throttle(e):
                self.stats.record_exhausted()
                logger.error("dynamodb_retries_exhausted", operation=operation, code=error_code(e))
                raise CapacityError(
                    BACKEND, f"{operation} throttled ({error_code(e)})", attempts=self.max_attempts
                ) from e
            if error_code(e) == "ResourceNotFoundException":
                logger.error("dynamodb_table_missing", operation=operation, error=str(e))
                raise ConnectivityError(BACKEND, str(e)) from e
            raise
        except (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as e:
            logger.error("dynamodb_unreachable", operation=operation, error=str(e))
            raise ConnectivityError(BACKEND, str(e)) from e

    def _invoke(self, operation: str, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        if not self._semaphore.acquire(timeout=self.acquire_timeout):
            raise CapacityError(
                BACKEND, f"{self.max_concurrent_requests} requests already in flight"
            )
        try:
            response = getattr(self.client, operation)(**kwargs)
        except ClientError as e:
            track_dynamodb_request(operation, success=False)
            if is_throttle(e):
                self.stats.record_throttle()
                track_dynamodb_throttle(operation)
                logger.warning("dynamodb_throttled", operation=operation, code=error_code(e))
            raise
        finally:
            self._semaphore.release()

        track_dynamodb_request(operation, success=True)
        self._record_capacity(operation, response.get("ConsumedCapacity"))
        return response

    def _record_capacity(self, operation: str, consumed: Any):
        if isinstance(consumed, dict):
            consumed = [consumed]
        units = sum(float(entry.get("CapacityUnits", 0) or 0) for entry in consumed or [])
        if operation in READ_OPERATIONS:
            self.stats.record_request(read_units=units)
            track_consumed_capacity(units, 0)
        else:
            self.stats.record_request(write_units=units)
            track_consumed_capacity(0, units)
