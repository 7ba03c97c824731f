"""
Vitali Backend — Database Engine Management
=============================================

What:  Declarative Base for ORM models and the async engine factory.
How:   The engine is created on demand from Settings, only when the durable
       store is enabled. Pure-memory deployments never import a DB driver.
Who:   Used by the SQL snapshot backend and by Alembic.

Connection Pooling Strategy:
    pool_size / max_overflow: small; the store has at most one in-flight
                              write per bucket plus the startup read
    pool_pre_ping:            validates connections before use (catches a
                              restarted database between flushes)
    pool_recycle=3600:        recycles connections every hour
"""

from typing import Any, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from vitali.config import Settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Registers tables on one shared metadata object, which Alembic reads for
    --autogenerate and tests use for create_all().
    """
    pass


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Build the async engine for `settings.database_url`.

    SQLite URLs (used by the test suite) get no pool sizing arguments, since
    SQLAlchemy picks a non-queue pool for them.

    Raises:
        ValueError: the durable store is not enabled in `settings`.
    """
    if not settings.database_url:
        raise ValueError("DATABASE_URL is not configured")

    kwargs: Dict[str, Any] = {
        "pool_pre_ping": settings.db_pool_pre_ping,
        "echo": settings.log_level == "DEBUG",
    }
    if make_url(settings.database_url).get_backend_name() != "sqlite":
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=3600,
        )
    return create_async_engine(settings.database_url, **kwargs)
