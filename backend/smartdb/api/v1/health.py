"""Health check endpoints."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from smartdb.core.deps import get_connection_manager
from smartdb.core.metrics import metrics
from smartdb.db.manager import ConnectionManager
from smartdb.db.models import LOCAL_DB_ID

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str = "0.1.0"


class ReadinessResponse(BaseModel):
    """Readiness check response."""
    status: str
    timestamp: str
    database: Dict[str, Any]
    connections: int
    version: str = "0.1.0"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(
    manager: ConnectionManager = Depends(get_connection_manager),
) -> ReadinessResponse:
    """
    Readiness check endpoint.

    Reports whether the local database is registered and its pool occupancy.
    Pools connect lazily, so this does not open a connection.
    """
    stats = manager.pool_stats()
    local = stats.get(LOCAL_DB_ID)
    if local is None:
        db_status: Dict[str, Any] = {"registered": False, "status": "not_registered"}
    else:
        db_status = {"registered": True, "status": "registered", "pool": local}

    return ReadinessResponse(
        status="ready" if local is not None else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        database=db_status,
        connections=len(stats),
    )


@router.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    metrics_data = metrics.get_metrics()
    return Response(
        content=metrics_data,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
