"""Health check endpoint logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from tenantauth.config.settings import Settings

logger = structlog.get_logger(__name__)

VERSION = "0.1.0"


async def _ping_database() -> str:
    from sqlalchemy import text

    from tenantauth.storage.database import get_engine

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health_check_db_failed", error=str(exc))
        return "unavailable"
    return "connected"


async def check_health(settings: Settings) -> dict[str, object]:
    """Report which backends are wired and whether the directory database answers.

    Mail falling back to the log notifier does not degrade health; codes are
    still issued and verified.
    """
    result: dict[str, object] = {
        "status": "healthy",
        "version": VERSION,
        "storage": "database" if settings.use_database else "memory",
        "email": "smtp" if settings.smtp_host else "log",
    }
    if settings.use_database:
        result["database"] = await _ping_database()
        if result["database"] != "connected":
            result["status"] = "degraded"
    return result
