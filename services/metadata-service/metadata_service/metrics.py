"""
Prometheus metrics for the metadata service storage layer.

Tracks repository operations per backend, uniqueness conflicts,
connection pool occupancy and DynamoDB throughput.
"""

import time
from contextlib import contextmanager

from fastapi import Response
from prometheus_client import (CONTENT_TYPE_LATEST, Counter, Gauge, Histogram,
                               generate_latest)

# Repository metrics
storage_operations_total = Counter(
    "metadata_storage_operations_total",
    "Total repository operations",
    ["backend", "entity", "operation", "status"],
)

storage_operation_duration_seconds = Histogram(
    "metadata_storage_operation_duration_seconds",
    "Repository operation duration in seconds",
    ["backend", "entity", "operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

storage_conflicts_total = Counter(
    "metadata_storage_conflicts_total",
    "Writes rejected by a uniqueness rule",
    ["backend", "entity", "constraint"],
)

transaction_units_total = Counter(
    "metadata_transaction_units_total",
    "Units of work executed by the transaction coordinator",
    ["backend", "status"],
)

transaction_unit_size = Histogram(
    "metadata_transaction_unit_size",
    "Number of writes per unit of work",
    ["backend"],
    buckets=(1, 2, 5, 10, 25, 50, 100),
)

# Relational pool metrics
db_pool_connections = Gauge(
    "metadata_db_pool_connections",
    "Connection pool occupancy",
    ["state"],
)

# DynamoDB throughput metrics
dynamodb_requests_total = Counter(
    "metadata_dynamodb_requests_total",
    "DynamoDB API requests",
    ["operation", "status"],
)

dynamodb_throttled_requests_total = Counter(
    "metadata_dynamodb_throttled_requests_total",
    "DynamoDB requests rejected by throttling",
    ["operation"],
)

dynamodb_consumed_capacity_total = Counter(
    "metadata_dynamodb_consumed_capacity_units_total",
    "DynamoDB consumed capacity units",
    ["kind"],
)


def track_storage_operation(
    backend: str, entity: str, operation: str, success: bool, duration: float
):
    """Track repository operation metrics."""
    status = "success" if success else "failure"
    storage_operations_total.labels(
        backend=backend, entity=entity, operation=operation, status=status
    ).inc()
    storage_operation_duration_seconds.labels(
        backend=backend, entity=entity, operation=operation
    ).observe(duration)


@contextmanager
def timed_operation(backend: str, entity: str, operation: str):
    """Time a repository call and record its outcome."""
    start = time.perf_counter()
    success = False
    try:
        yield
        success = True
    finally:
        track_storage_operation(
            backend, entity, operation, success, time.perf_counter() - start
        )


def track_conflict(backend: str, entity: str, constraint: str):
    storage_conflicts_total.labels(
        backend=backend, entity=entity, constraint=constraint
    ).inc()


def track_transaction(backend: str, size: int, success: bool):
    """Track a unit of work executed by the coordinator."""
    status = "success" if success else "failure"
    transaction_units_total.labels(backend=backend, status=status).inc()
    transaction_unit_size.labels(backend=backend).observe(size)


def update_pool_stats(stats: dict):
    for state in ("active", "available", "awaiting", "max"):
        db_pool_connections.labels(state=state).set(stats.get(state, 0))


def track_dynamodb_request(operation: str, success: bool):
    status = "success" if success else "failure"
    dynamodb_requests_total.labels(operation=operation, status=status).inc()


def track_dynamodb_throttle(operation: str):
    dynamodb_throttled_requests_total.labels(operation=operation).inc()


def track_consumed_capacity(read_units: float, write_units: float):
    if read_units:
        dynamodb_consumed_capacity_total.labels(kind="read").inc(read_units)
    if write_units:
        dynamodb_consumed_capacity_total.labels(kind="write").inc(write_units)


async def metrics_endpoint():
    """
    Prometheus metrics endpoint.

    Returns:
        Response with Prometheus metrics in text format
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
