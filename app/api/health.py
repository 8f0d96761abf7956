"""
Health check and readiness endpoints.

- /health: liveness, always 200 while the process serves requests
- /ready: readiness, 503 until the router and poller are running
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.api.dependencies import get_container
from app.container import Container

logger = logging.getLogger(__name__)

# Track service start time for uptime calculation
SERVICE_START_TIME = time.time()

router = APIRouter(tags=["health"])


class HealthStatus(BaseModel):
    """Health status response model."""

    status: str
    timestamp: datetime
    uptime_seconds: float
    version: str = "1.0.0"


class ReadinessStatus(BaseModel):
    """Readiness status response model."""

    status: str
    timestamp: datetime
    checks: Dict[str, Any]
    ready: bool


@router.get(
    "/health",
    response_model=HealthStatus,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns basic API health status. Used for liveness probes.",
)
async def health() -> HealthStatus:
    """
    Basic health check endpoint (liveness probe).

    Returns:
        HealthStatus with basic service information
    """
    return HealthStatus(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=round(time.time() - SERVICE_START_TIME, 2),
    )


@router.get(
    "/ready",
    response_model=ReadinessStatus,
    summary="Readiness check",
    description="Returns readiness status with dependency checks. Used for readiness probes.",
)
async def readiness(container: Container = Depends(get_container)):
    """
    Readiness check endpoint (readiness probe).

    Checks:
    - Record store answers within its lock timeout
    - Event router is accepting events
    - Stream poller is running

    Returns 200 OK if all checks pass, 503 Service Unavailable otherwise.
    """
    checks: Dict[str, Any] = {}

    try:
        stats = container.repository.get_statistics()
        checks["record_store"] = {
            "status": "ready",
            "healthy": True,
            "records": stats["record_count"],
        }
    except Exception as e:
        logger.warning(f"Record store check failed: {e}")
        checks["record_store"] = {"status": "error", "healthy": False, "error": str(e)}

    router_running = container.router.running
    checks["event_router"] = {
        "status": "ready" if router_running else "not_running",
        "healthy": router_running,
    }

    poller_running = container.poller.running
    checks["stream_poller"] = {
        "status": "ready" if poller_running else "not_running",
        "healthy": poller_running,
    }

    all_ready = all(check["healthy"] for check in checks.values())
    response = ReadinessStatus(
        status="ready" if all_ready else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
        ready=all_ready,
    )

    if not all_ready:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response
