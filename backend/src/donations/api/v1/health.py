"""Health check endpoints for liveness and readiness probes."""
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from donations import __version__
from donations.adapters.cybersource_adapter import CybersourceAdapter
from donations.api.deps import get_gateway_client
from donations.database import engine

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check(client: CybersourceAdapter = Depends(get_gateway_client)) -> dict[str, str]:
    """
    Liveness probe.

    Reports whether the gateway client found its credentials, without
    calling the gateway.

    Returns:
        dict: Health status with timestamp
    """
    return {
        "status": "healthy",
        "gateway": "ready" if client.is_ready() else "not_configured",
        "environment": client.get_environment(),
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__,
    }


@router.get("/health/ready", tags=["Health"])
async def readiness_check(client: CybersourceAdapter = Depends(get_gateway_client)) -> JSONResponse:
    """
    Readiness probe.

    Returns 200 only if the database answers and the gateway client is ready.
    """
    checks = {
        "database": "unknown",
        "gateway": "ready" if client.is_ready() else "not_configured",
    }
    ready = client.is_ready()

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except (SQLAlchemyError, OSError) as exc:
        logger.error("database_health_check_failed", error=str(exc))
        checks["database"] = "disconnected"
        ready = False

    status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "ready": ready,
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
