"""Liveness and readiness probes."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from fintrack.core.config import get_settings
from fintrack.db.session import engine
from fintrack.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "fintrack-import-api"


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates the API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


def _check_database() -> dict[str, str]:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Database connection failed: {e}"}
    return {"status": "healthy", "message": "Database connection successful"}


def _check_redis(url: str, label: str) -> dict[str, str]:
    client = create_redis_client(url, decode_responses=True, socket_connect_timeout=2)
    try:
        client.ping()
    except RedisError as e:
        logger.error(f"{label} health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"{label} connection failed: {e}"}
    finally:
        client.close()
    return {"status": "healthy", "message": f"{label} connection successful"}


@router.get("/ready", summary="Readiness probe")
async def ready() -> dict[str, Any]:
    """Check the database, the progress store and the import queue broker.

    A broker outage is reported but does not fail readiness, since the
    worker may run on separate infrastructure.
    """
    settings = get_settings()
    checks: dict[str, Any] = {
        "database": _check_database(),
        "redis": _check_redis(settings.redis_url, "Redis"),
    }
    if settings.broker_url != settings.redis_url:
        checks["celery_broker"] = _check_redis(settings.broker_url, "Celery broker")

    healthy = all(
        check["status"] == "healthy"
        for name, check in checks.items()
        if name != "celery_broker"
    )
    payload = {
        "status": "ok" if healthy else "unhealthy",
        "service": SERVICE_NAME,
        "checks": checks,
    }
    if not healthy:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=payload)
    return payload
