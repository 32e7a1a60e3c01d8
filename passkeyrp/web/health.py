"""Health check endpoint logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


async def check_health(engine: AsyncEngine, rp_id: str) -> dict[str, object]:
    """Return service health status with a database check."""
    result: dict[str, object] = {
        "status": "healthy",
        "version": "0.1.0",
        "rp_id": rp_id,
        "database": "connected",
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("health_check_db_failed", error=str(exc))
        result["database"] = "unavailable"
        result["status"] = "degraded"

    return result
