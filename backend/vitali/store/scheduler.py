"""
Vitali Backend — Debounced Write-Back Scheduler
=================================================

What:  Turns "bucket changed" notifications into one durable write per burst.
How:   Per bucket, an asyncio TimerHandle (loop.call_later) is started on the
       first mutation and restarted on every further one. When the quiet
       period elapses the bucket's full value is snapshotted and upserted by
       a per-bucket task.
Who:   Notified by the mutation tracker; calls the SnapshotBackend.

State Machine (per bucket):
    CLEAN ──mutation──▶ PENDING ──quiet period──▶ FLUSHING ──done──▶ CLEAN
                         ▲   │                       │
                         └───┘ mutation:             │ mutation during flush:
                               restart timer         ▼ follow-up recorded,
                                                      re-armed when the flush ends

    At most one flush per bucket is in flight, so snapshots reach the backend
    in the order the in-memory states occurred.

Failure Policy:
    A failed upsert is logged and the bucket goes back to CLEAN without having
    been persisted. Nothing retries it; the next mutation to the bucket starts
    a fresh attempt. A bucket that goes idle right after a failed flush stays
    unpersisted until it is written again.

Pure-memory mode (no backend): notify() is a no-op and nothing is flushed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from vitali.store.backends import SnapshotBackend

logger = logging.getLogger(__name__)


class FlushState(str, Enum):
    CLEAN = "clean"
    PENDING = "pending"
    FLUSHING = "flushing"


@dataclass
class _FlushEntry:
    state: FlushState = FlushState.CLEAN
    dirty: bool = False
    follow_up: bool = False
    timer: Optional[asyncio.TimerHandle] = None
    task: Optional["asyncio.Task[bool]"] = None


@dataclass
class DrainResult:
    """Outcome of drain_all(): which buckets were written and which failed."""

    flushed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class DebounceScheduler:
    """
    Coalesces bucket mutations into deferred full-snapshot upserts.

    Args:
        snapshot:      Returns a deep copy of a bucket's current value.
        backend:       Durable backend, or None for pure-memory mode.
        quiet_period:  Seconds without mutations before a bucket is flushed.
    """

    def __init__(
        self,
        snapshot: Callable[[str], Any],
        backend: Optional[SnapshotBackend],
        quiet_period: float = 0.15,
    ):
        self._snapshot = snapshot
        self._backend = backend
        self.quiet_period = quiet_period
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._entries: Dict[str, _FlushEntry] = {}

    @property
    def pure_memory(self) -> bool:
        return self._backend is None

    def bind(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Attach to the event loop that runs timers and flushes (default: the running one)."""
        self._loop = loop or asyncio.get_running_loop()

    def state(self, name: str) -> FlushState:
        return self._entry(name).state

    def is_dirty(self, name: str) -> bool:
        return self._entry(name).dirty

    def pending(self) -> List[str]:
        """Buckets with a scheduled, running or owed flush."""
        return [
            name for name, entry in self._entries.items()
            if entry.dirty or entry.state is not FlushState.CLEAN
        ]

    # ── Notifications ─────────────────────────────────────────────────────
    def notify(self, name: str) -> None:
        """
        Record that `name` changed and (re)start its quiet-period timer.

        Safe to call from threadpool threads: the work is marshalled onto the
        bound loop. Without any loop the bucket is only marked dirty and the
        next drain_all() persists it.
        """
        if self._backend is None:
            return

        loop = self._loop
        running = _running_loop()
        if loop is None and running is not None:
            self._loop = loop = running
        if loop is None or loop.is_closed():
            self._entry(name).dirty = True
            logger.debug("No event loop bound; bucket '%s' left dirty for drain", name)
            return

        if running is loop:
            self._arm(name)
        else:
            loop.call_soon_threadsafe(self._arm, name)

    def cancel(self, name: str) -> None:
        """
        Forget pending work for `name` (hydration reload path).

        The pending timer is cancelled and the dirty marker cleared. An
        already running flush is left to finish but will not be followed up.
        """
        entry = self._entry(name)
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        if entry.state is FlushState.PENDING:
            entry.state = FlushState.CLEAN
        entry.dirty = False
        entry.follow_up = False

    def _arm(self, name: str) -> None:
        entry = self._entry(name)
        entry.dirty = True
        if entry.state is FlushState.FLUSHING:
            entry.follow_up = True
            return
        if entry.timer is not None:
            entry.timer.cancel()
        entry.timer = self._loop.call_later(self.quiet_period, self._on_quiet, name)
        entry.state = FlushState.PENDING

    def _on_quiet(self, name: str) -> None:
        entry = self._entry(name)
        entry.timer = None
        # FLUSHING before the task starts, so a mutation in between cannot arm a second timer
        entry.state = FlushState.FLUSHING
        entry.task = self._loop.create_task(self._flush(name), name=f"flush:{name}")

    # ── Flushing ──────────────────────────────────────────────────────────
    async def _flush(self, name: str) -> bool:
        entry = self._entry(name)
        entry.follow_up = False
        ok = False
        try:
            # Copied before the first await: the write reflects this exact state
            data = self._snapshot(name)
            await self._backend.upsert(name, data)
            ok = True
            logger.debug("Flushed bucket '%s'", name)
        except Exception as e:
            logger.error(
                "Failed to persist bucket '%s': %s (next mutation will retry)",
                name,
                str(e),
                exc_info=True,
            )
        finally:
            entry.state = FlushState.CLEAN
            if entry.task is asyncio.current_task():
                entry.task = None

        if entry.follow_up:
            entry.follow_up = False
            self._arm(name)
        else:
            entry.dirty = False
        return ok

    async def drain_all(self) -> DrainResult:
        """
        Persist every pending, flushing or dirty bucket now.

        Pending timers are cancelled and flushed immediately; in-flight flushes
        are awaited first so ordering is preserved. Failures are logged and
        reported in the result, never raised.
        """
        result = DrainResult()
        if self._backend is None:
            return result

        names = self.pending()
        if not names:
            return result

        outcomes = await asyncio.gather(*(self._drain_one(name) for name in names))
        for name, ok in zip(names, outcomes):
            (result.flushed if ok else result.failed).append(name)
        logger.info(
            "Drained %d bucket(s): %d flushed, %d failed",
            len(names),
            len(result.flushed),
            len(result.failed),
        )
        return result

    async def _drain_one(self, name: str) -> bool:
        entry = self._entry(name)
        ok = True
        if entry.task is not None:
            try:
                ok = await entry.task
            except Exception as e:
                logger.error("Flush task for bucket '%s' failed: %s", name, str(e), exc_info=True)
                ok = False
                entry.state = FlushState.CLEAN
                entry.task = None
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        if entry.dirty or entry.state is FlushState.PENDING:
            entry.state = FlushState.FLUSHING
            return await self._flush(name)
        return ok

    def close(self) -> None:
        """Cancel every outstanding timer. Call after drain_all() at shutdown."""
        for entry in self._entries.values():
            if entry.timer is not None:
                entry.timer.cancel()
                entry.timer = None

    def _entry(self, name: str) -> _FlushEntry:
        entry = self._entries.get(name)
        if entry is None:
            entry = self._entries[name] = _FlushEntry()
        return entry


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
