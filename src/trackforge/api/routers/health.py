"""Health check endpoints for Docker/Kubernetes probes."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text

from trackforge import __version__

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthStatus(BaseModel):
    """Overall health status response."""

    status: str = Field(description="healthy or unhealthy")
    timestamp: str = Field(description="ISO timestamp of health check")
    version: str = Field(default=__version__, description="Application version")
    checks: dict[str, Any] = Field(default_factory=dict, description="Component checks")


class LivenessStatus(BaseModel):
    """Simple liveness probe response."""

    status: str = Field(description="alive")
    timestamp: str = Field(description="ISO timestamp")


@router.get("/live", response_model=LivenessStatus)
async def liveness_probe() -> LivenessStatus:
    """Returns 200 while the process is running. No dependency checks."""
    return LivenessStatus(status="alive", timestamp=datetime.now(UTC).isoformat())


@router.get("", response_model=HealthStatus)
async def health_check(request: Request) -> JSONResponse:
    """Database, job queue and sweeper status. 503 if the database is unreachable."""
    checks: dict[str, Any] = {}
    healthy = True

    db = getattr(request.app.state, "db", None)
    if db is None:
        checks["database"] = {"ok": False, "error": "not initialized"}
        healthy = False
    else:
        try:
            async with db.session_scope() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = {"ok": True, "dialect": db.dialect_name}
        except Exception as e:
            logger.warning("Health check database probe failed: %s", e)
            checks["database"] = {"ok": False, "error": str(e)[:200]}
            healthy = False

    job_queue = getattr(request.app.state, "job_queue", None)
    if job_queue is not None:
        checks["job_queue"] = job_queue.stats()
    sweeper = getattr(request.app.state, "stale_job_sweeper", None)
    if sweeper is not None:
        stats = sweeper.get_stats()
        checks["sweeper"] = {
            "running": stats["running"],
            "cycles": stats["cycles"],
            "total_resolved": stats["total_resolved"],
        }

    body = HealthStatus(
        status="healthy" if healthy else "unhealthy",
        timestamp=datetime.now(UTC).isoformat(),
        checks=checks,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(),
    )
