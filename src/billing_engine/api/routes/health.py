"""Health check endpoints."""

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfoNotFoundError

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from billing_engine.api.dependencies import AppSettings, DbSession, SessionFactory
from billing_engine.calculators.clock import get_zone

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    version: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession, settings: AppSettings) -> HealthResponse:
    """Check API and database health."""
    db_status = "unhealthy"
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        version=settings.engine_version,
    )


@router.get(
    "/ready",
    status_code=status.HTTP_200_OK,
    responses={503: {"description": "Database or civil timezone unavailable"}},
)
async def readiness_check(
    session_factory: SessionFactory, settings: AppSettings
) -> JSONResponse:
    """Ready once a session can reach the database and the civil timezone loads."""
    problems = []
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Readiness check could not reach the database", exc_info=True)
        problems.append("database")
    try:
        get_zone(settings.civil_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown civil timezone %s", settings.civil_timezone)
        problems.append("civil_timezone")

    if problems:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready", "problems": problems},
        )
    return JSONResponse(content={"status": "ready", "civil_timezone": settings.civil_timezone})


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
