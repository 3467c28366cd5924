"""
Health check and monitoring router.

Provides endpoints for liveness, storage readiness and Prometheus metrics.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from ..dependencies import get_storage
from ..metrics import metrics_endpoint
from ..providers import StorageContext

router = APIRouter(prefix="/api/v1", tags=["health"])


class HealthResponse(BaseModel):
    """Liveness response model."""

    status: str
    timestamp: str
    service: str = "metadata-service"
    provider: str


class CheckResponse(BaseModel):
    name: str
    status: str
    data: Dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness response model, one check per storage backend."""

    status: str
    checks: List[CheckResponse]


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Liveness probe - returns 200 while the process is serving",
)
async def health_check(storage: StorageContext = Depends(get_storage)):
    """
    Basic health check.

    Does not touch the database; used for liveness probes.
    """
    return HealthResponse(
        status="UP",
        timestamp=datetime.now(timezone.utc).isoformat(),
        provider=storage.provider.value,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Probe the active storage backend and report saturation counters",
    responses={503: {"model": ReadinessResponse}},
)
def readiness_check(response: Response, storage: StorageContext = Depends(get_storage)):
    """
    Readiness check.

    Runs one read-only probe against the active backend. Returns 503
    when the backend is down so orchestrators stop routing traffic.
    """
    body = storage.health.check()
    if body["status"] != "UP":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return body


router.add_api_route(
    "/metrics",
    metrics_endpoint,
    methods=["GET"],
    summary="Prometheus metrics",
    description="Prometheus metrics endpoint",
)
