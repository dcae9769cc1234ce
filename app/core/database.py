"""Async engine used by the readiness probe."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.config import settings

logger = logging.getLogger(__name__)

engine: AsyncEngine | None = None

_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgresql+psycopg2": "postgresql+asyncpg",
    "postgresql+psycopg": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def async_database_url(url: str) -> str:
    """Map a sync DATABASE_URL onto the matching asyncio driver."""
    parsed = make_url(url)
    drivername = _ASYNC_DRIVERS.get(parsed.drivername, parsed.drivername)
    query = dict(parsed.query) if parsed.query else {}
    if drivername == "postgresql+asyncpg" and "sslmode" in query:
        # asyncpg spells it "ssl".
        query["ssl"] = query.pop("sslmode")
    return parsed.set(drivername=drivername, query=query).render_as_string(
        hide_password=False
    )


async def init_database() -> None:
    """Initialize the async engine if DATABASE_URL is provided."""
    global engine

    if not settings.database_url:
        logger.info("database.init.skipped", extra={"backlink_store": "memory"})
        return

    try:
        engine = create_async_engine(
            async_database_url(settings.database_url),
            echo=settings.debug,
            pool_pre_ping=True,
            pool_recycle=300,
        )
        logger.info("database.init.completed")
    except Exception:
        logger.exception("database.init.failed")
        raise


async def dispose_database() -> None:
    global engine

    if engine is not None:
        await engine.dispose()
        engine = None


async def check_database_health() -> bool:
    """Check if database is accessible."""
    if not engine:
        return True  # No database configured, consider healthy

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.error("database.health.failed", extra={"error": type(exc).__name__})
        return False
