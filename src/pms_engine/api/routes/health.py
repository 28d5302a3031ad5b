"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from pms_engine import __version__
from pms_engine.api.dependencies import DbSession
from pms_engine.models import PumpConfiguration

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: datetime
    database: str


async def _database_reachable(db: DbSession) -> bool:
    """Query the pump table; fails when the database is down or the schema is missing."""
    try:
        await db.execute(select(PumpConfiguration.pump_id).limit(1))
    except SQLAlchemyError:
        logger.warning("Database check failed", exc_info=True)
        return False
    return True


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DbSession) -> HealthResponse:
    """API and database health. Always 200; a failed check reports degraded."""
    healthy = await _database_reachable(db)
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        database="healthy" if healthy else "unhealthy",
    )


@router.get("/ready")
async def readiness_check(db: DbSession) -> JSONResponse:
    """Ready once the PMS schema answers queries."""
    if await _database_reachable(db):
        return JSONResponse({"status": "ready"})
    return JSONResponse(
        {"status": "not_ready"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE
    )


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
