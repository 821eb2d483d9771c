"""Liveness and dependency probes.

``/health/`` answers as long as the process serves requests.
``/health/health`` also pings the database and confirms every node
type has an executor.
"""

import time
from typing import Any

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import text

from app.config import get_settings
from app.dependencies import get_app_services
from services.container import Services

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_STARTED = time.monotonic()


async def _database_status(services: Services) -> str:
    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database probe failed", error=str(e))
        return "unavailable"
    return "ok"


@router.get("/", response_model=dict[str, Any])
async def liveness() -> dict[str, Any]:
    settings = get_settings()
    return {"app": settings.APP_NAME, "version": settings.APP_VERSION, "status": "ok"}


@router.get("/health", response_model=dict[str, Any])
async def readiness(services: Services = Depends(get_app_services)) -> dict[str, Any]:
    missing = services.task_registry.missing_types()
    checks = {
        "database": await _database_status(services),
        "actions": f"missing: {', '.join(missing)}" if missing else "ok",
    }
    return {
        "status": "ok" if set(checks.values()) == {"ok"} else "degraded",
        "checks": checks,
        "uptime_seconds": round(time.monotonic() - _STARTED, 1),
        "running_executions": len(services.engine.get_running_executions()),
    }
