"""
Vitali Backend — Application State Store
==========================================

What:  The object route handlers get their buckets from.
How:   Composes BucketRegistry (in-memory values + tracking), DebounceScheduler
       (deferred write-back) and an optional SnapshotBackend (durability).
Who:   Built once by the FastAPI lifespan and injected with Depends(get_store).
When:  hydrate() once before serving requests; shutdown() once on exit.

Lifecycle:
    store = AppStore.from_settings(settings)    # buckets hold defaults
    await store.hydrate()                       # defaults replaced by snapshots
    profiles = store.get_bucket("patient_profiles")
    profiles["7"] = {...}                        # flushed ~150ms later
    await store.shutdown()                      # drain pending flushes

Failure Modes:
    Backend unreachable during hydrate()    → StoreConfigurationError (fatal)
    Upsert fails after startup              → logged; memory stays authoritative
    Unknown / duplicate bucket name         → raised immediately
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from vitali.config import Settings
from vitali.exceptions import StoreConfigurationError, StoreUnavailableError
from vitali.store.backends import SnapshotBackend, build_backend
from vitali.store.buckets import DEFAULT_BUCKETS, BucketSpec
from vitali.store.registry import BucketKind, BucketRegistry
from vitali.store.scheduler import DebounceScheduler, DrainResult
from vitali.store.tracking import TrackedView

logger = logging.getLogger(__name__)


class AppStore:
    """
    Mutation-tracked, debounced write-back store of named buckets.

    Args:
        backend:       Durable backend; None selects pure-memory mode.
        quiet_period:  Seconds of inactivity before a changed bucket is flushed.
    """

    def __init__(self, backend: Optional[SnapshotBackend] = None, quiet_period: float = 0.15):
        self._backend = backend
        self._registry = BucketRegistry(on_change=self._on_change)
        self._scheduler = DebounceScheduler(self._registry.snapshot, backend, quiet_period)
        self._hydrated = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backend: Optional[SnapshotBackend] = None,
        buckets: Iterable[BucketSpec] = DEFAULT_BUCKETS,
    ) -> "AppStore":
        """
        Build a store with the given bucket catalog registered.

        `backend` overrides the one selected by the settings (tests pass a fake).
        """
        if backend is None:
            backend = build_backend(settings)
        store = cls(backend=backend, quiet_period=settings.store_flush_debounce_ms / 1000)
        for spec in buckets:
            store.register(spec.name, spec.kind, spec.default)
        return store

    # ── Introspection ─────────────────────────────────────────────────────
    @property
    def backend(self) -> Optional[SnapshotBackend]:
        return self._backend

    @property
    def pure_memory(self) -> bool:
        return self._backend is None

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    @property
    def registry(self) -> BucketRegistry:
        return self._registry

    @property
    def scheduler(self) -> DebounceScheduler:
        return self._scheduler

    def bucket_names(self) -> List[str]:
        return self._registry.names()

    def pending_flushes(self) -> List[str]:
        return self._scheduler.pending()

    # ── Buckets ───────────────────────────────────────────────────────────
    def register(self, name: str, kind: BucketKind, default: Optional[Any] = None) -> TrackedView:
        return self._registry.register(name, kind, default)

    def get_bucket(self, name: str) -> TrackedView:
        """
        Return the singleton tracked handle for `name`.

        Raises:
            UnknownBucketError: `name` was never registered.
        """
        return self._registry.get(name)

    def reload(self, name: str, value: Any) -> None:
        """
        Replace a bucket's whole value with already-durable data.

        No change notification is emitted; any pending flush is cancelled and
        the dirty marker cleared.
        """
        self._registry.replace(name, value)
        self._scheduler.cancel(name)

    def _on_change(self, name: str) -> None:
        self._scheduler.notify(name)

    # ── Lifecycle ─────────────────────────────────────────────────────────
    async def hydrate(self, max_attempts: int = 1, retry_wait: float = 0.0) -> List[str]:
        """
        Load every bucket's latest snapshot, replacing the defaults.

        Args:
            max_attempts: Reads attempted before giving up.
            retry_wait:   Base of the exponential wait between attempts (seconds).

        Returns:
            Names of the buckets that were replaced from storage.

        Raises:
            StoreConfigurationError: the backend could not be read, or a stored
                snapshot does not fit its bucket.
            RuntimeError: called twice.
        """
        if self._hydrated:
            raise RuntimeError("AppStore.hydrate() may only be called once")
        self._scheduler.bind()

        if self._backend is None:
            self._hydrated = True
            logger.info("Pure-memory mode: %d bucket(s) start from defaults", len(self._registry))
            return []

        names = self._registry.names()
        try:
            snapshots = await self._load_snapshots(names, max_attempts, retry_wait)
        except StoreUnavailableError as e:
            raise StoreConfigurationError(
                message=(
                    f"Durable state store unreachable after {max_attempts} attempt(s); "
                    "refusing to start with default state"
                ),
                context=e.context,
            ) from e

        loaded: List[str] = []
        for name in names:
            data = snapshots.get(name)
            if data is None:
                continue
            try:
                self.reload(name, data)
            except TypeError as e:
                raise StoreConfigurationError(
                    message=str(e),
                    context={"bucket": name},
                ) from e
            loaded.append(name)

        self._hydrated = True
        logger.info(
            "Hydrated %d of %d bucket(s) from durable storage: %s",
            len(loaded),
            len(names),
            ", ".join(loaded) or "none",
        )
        return loaded

    async def _load_snapshots(
        self, names: List[str], max_attempts: int, retry_wait: float
    ) -> Dict[str, Optional[Any]]:
        # Rides out a database that is still starting next to the app
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(StoreUnavailableError),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=retry_wait, max=30),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._backend.load_all(names)
        raise AssertionError("unreachable")  # pragma: no cover

    async def drain_all(self) -> DrainResult:
        """Flush every pending bucket now. Never raises for write failures."""
        return await self._scheduler.drain_all()

    async def shutdown(self) -> DrainResult:
        """Drain pending writes, stop timers and release the backend."""
        result = await self.drain_all()
        self._scheduler.close()
        if self._backend is not None:
            await self._backend.dispose()
        if result.failed:
            logger.error("Buckets not persisted at shutdown: %s", ", ".join(result.failed))
        return result

    async def health(self) -> str:
        """`degraded` in pure-memory mode, else `ok` / `unreachable`."""
        if self._backend is None:
            return "degraded"
        return "ok" if await self._backend.health_check() else "unreachable"
