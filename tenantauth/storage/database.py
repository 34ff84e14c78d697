"""Async database engine for the directory and the audit trail."""

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from tenantauth.config.settings import get_settings


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """Build an engine suited to ``database_url``.

    In-memory SQLite keeps one shared connection so every session sees the
    same database; other SQLite files get the default pool; servers get a
    bounded, pre-pinged pool.
    """
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


@lru_cache
def get_engine() -> AsyncEngine:
    """Process-wide engine for the configured ``DATABASE_URL``."""
    settings = get_settings()
    return create_engine_for(settings.database_url, echo=settings.debug)


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create every table. Deployments that manage schema run Alembic instead."""
    import tenantauth.models.database  # noqa: F401  registers tables on the metadata

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
