"""
Vitali Backend — Durable Snapshot Backends
============================================

What:  The only code that performs I/O against persistent storage.
How:   `SnapshotBackend` defines the contract (upsert one bucket, load many);
       `SqlSnapshotBackend` implements it on async SQLAlchemy with a
       dialect-native INSERT ... ON CONFLICT (bucket) DO UPDATE.
Who:   Called by the debounce scheduler (upsert) and by hydration (load_all).

Contract:
    upsert(bucket, data)   Atomically replace the stored snapshot for `bucket`
                           (insert if absent), stamping updated_at. Repeating
                           it with the same data changes only the timestamp.
    load_all(buckets)      {name: data or None} for every requested name.

Whether a backend exists at all is decided once, by build_backend(settings).
Pure-memory mode means "no backend object", never a backend that no-ops.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from vitali.config import Settings
from vitali.database import Base, create_engine_from_settings
from vitali.exceptions import SnapshotWriteError, StoreUnavailableError
from vitali.models.app_state import AppStateSnapshot

logger = logging.getLogger(__name__)

# Dialects whose insert() supports on_conflict_do_update
_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SnapshotBackend(ABC):
    """
    Abstract durable store for whole-bucket snapshots.

    Implementations:
        - SqlSnapshotBackend: PostgreSQL (asyncpg) in production, SQLite in tests
    """

    @abstractmethod
    async def upsert(self, bucket: str, data: Any) -> None:
        """
        Replace the stored snapshot of `bucket` with `data`.

        Raises:
            SnapshotWriteError: the write did not happen.
        """
        ...

    @abstractmethod
    async def load_all(self, buckets: Iterable[str]) -> Dict[str, Optional[Any]]:
        """
        Read the latest snapshot of each bucket; None where nothing is stored.

        Raises:
            StoreUnavailableError: the store could not be read.
        """
        ...

    async def health_check(self) -> bool:
        """True if the store is reachable."""
        return True

    async def dispose(self) -> None:
        """Release connections. Called once at shutdown."""
        return None


class SqlSnapshotBackend(SnapshotBackend):
    """
    Snapshot backend over the `app_state` table.

    Each upsert runs in its own short transaction (engine.begin()), so a
    failed write never leaves a half-open transaction in the pool.
    """

    def __init__(self, engine: AsyncEngine):
        dialect = engine.dialect.name
        if dialect not in _UPSERT_DIALECTS:
            raise ValueError(
                f"Unsupported database dialect '{dialect}'. "
                f"Supported: {', '.join(sorted(_UPSERT_DIALECTS))}"
            )
        self._engine = engine
        self._insert = _UPSERT_DIALECTS[dialect]

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_schema(self) -> None:
        """
        Create the app_state table if missing.

        Production uses the Alembic migration; this is for tests and local
        SQLite runs.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def upsert(self, bucket: str, data: Any) -> None:
        stmt = self._insert(AppStateSnapshot).values(
            bucket=bucket,
            data=data,
            updated_at=datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[AppStateSnapshot.bucket],
            set_={
                "data": stmt.excluded.data,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise SnapshotWriteError(
                bucket,
                context={"error_type": type(e).__name__, "error": str(e)},
            ) from e

    async def load_all(self, buckets: Iterable[str]) -> Dict[str, Optional[Any]]:
        names = list(buckets)
        snapshots: Dict[str, Optional[Any]] = {name: None for name in names}
        if not names:
            return snapshots

        query = select(AppStateSnapshot.bucket, AppStateSnapshot.data).where(
            AppStateSnapshot.bucket.in_(names)
        )
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(query)
                rows = result.all()
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(
                message="Could not read bucket snapshots from the database",
                context={"error_type": type(e).__name__, "error": str(e)},
            ) from e

        for bucket, data in rows:
            snapshots[bucket] = data
        return snapshots

    async def health_check(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Snapshot store health check failed: %s", str(e))
            return False

    async def dispose(self) -> None:
        await self._engine.dispose()


def build_backend(settings: Settings) -> Optional[SnapshotBackend]:
    """
    Select the durable backend once, at startup.

    Returns None (pure-memory mode) unless DATA_STORE_MODE=postgres and
    DATABASE_URL are both set.
    """
    if not settings.durable_store_enabled:
        logger.warning(
            "State store running in pure-memory mode (DATA_STORE_MODE=%s, DATABASE_URL %s); "
            "all state is lost on restart",
            settings.data_store_mode,
            "set" if settings.database_url else "unset",
        )
        return None
    return SqlSnapshotBackend(create_engine_from_settings(settings))
