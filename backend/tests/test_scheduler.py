"""
Vitali Backend — Debounced Write-Back Tests
=============================================

What:  Tests for DebounceScheduler driven through AppStore buckets.
How:   RecordingBackend captures every upsert; short quiet periods keep the
       timer-driven tests fast, long ones make drain tests deterministic.

What we test:
    ✅ A burst of mutations produces one upsert with the final state
    ✅ Mutations during a flush produce exactly one follow-up flush
    ✅ Failed flushes are logged, not retried, and do not block later writes
    ✅ A snapshot that raises counts as a failed flush and never wedges a bucket
    ✅ Pure-memory mode never schedules anything
    ✅ drain_all() persists everything pending and reports failures
    ✅ Mutations from worker threads and before the loop starts are not lost
"""

import asyncio
import logging

import pytest

from vitali.store import AppStore, BucketKind, DebounceScheduler, FlushState


def make_store(backend, quiet_period):
    store = AppStore(backend=backend, quiet_period=quiet_period)
    store.register("foo", BucketKind.MAPPING)
    store.register("bar", BucketKind.SEQUENCE)
    return store


class TestDebounce:

    @pytest.mark.asyncio
    async def test_burst_is_coalesced_into_one_write(self, recording_backend):
        store = make_store(recording_backend, quiet_period=0.15)
        await store.hydrate()
        foo = store.get_bucket("foo")

        foo["a"] = 1
        foo["b"] = 2
        foo["c"] = 3
        await asyncio.sleep(0.5)

        assert recording_backend.upserts == [("foo", {"a": 1, "b": 2, "c": 3})]
        assert store.pending_flushes() == []

    @pytest.mark.asyncio
    async def test_each_mutation_restarts_the_timer(self, recording_backend):
        store = make_store(recording_backend, quiet_period=0.25)
        await store.hydrate()
        foo = store.get_bucket("foo")

        for i in range(4):
            foo[str(i)] = i
            await asyncio.sleep(0.05)
        assert recording_backend.upserts == []
        assert store.scheduler.state("foo") is FlushState.PENDING

        await asyncio.sleep(0.6)
        assert recording_backend.upserts == [("foo", {"0": 0, "1": 1, "2": 2, "3": 3})]

    @pytest.mark.asyncio
    async def test_buckets_flush_independently(self, recording_backend, wait_until):
        store = make_store(recording_backend, quiet_period=0.05)
        await store.hydrate()

        store.get_bucket("foo")["a"] = 1
        store.get_bucket("bar").append("x")

        await wait_until(lambda: len(recording_backend.rows) == 2)
        assert recording_backend.rows == {"foo": {"a": 1}, "bar": ["x"]}
        assert len(recording_backend.upserts) == 2

    @pytest.mark.asyncio
    async def test_mutation_during_flush_triggers_one_follow_up(self, recording_backend, wait_until):
        store = make_store(recording_backend, quiet_period=0.05)
        await store.hydrate()
        foo = store.get_bucket("foo")
        recording_backend.gate = asyncio.Event()

        foo["a"] = 1
        await wait_until(lambda: len(recording_backend.upserts) == 1)
        assert store.scheduler.state("foo") is FlushState.FLUSHING

        foo["b"] = 2
        foo["c"] = 3
        await asyncio.sleep(0.15)
        # No second flush while the first is in flight
        assert len(recording_backend.upserts) == 1

        recording_backend.gate.set()
        await wait_until(lambda: len(recording_backend.upserts) == 2)
        await asyncio.sleep(0.15)

        assert recording_backend.upserts == [
            ("foo", {"a": 1}),
            ("foo", {"a": 1, "b": 2, "c": 3}),
        ]
        assert recording_backend.rows["foo"] == {"a": 1, "b": 2, "c": 3}
        assert store.scheduler.state("foo") is FlushState.CLEAN

    @pytest.mark.asyncio
    async def test_snapshot_reflects_state_when_flush_started(self, recording_backend, wait_until):
        store = make_store(recording_backend, quiet_period=0.05)
        await store.hydrate()
        foo = store.get_bucket("foo")
        recording_backend.gate = asyncio.Event()

        foo["a"] = 1
        await wait_until(lambda: len(recording_backend.upserts) == 1)
        foo["a"] = 99
        recording_backend.gate.set()
        await wait_until(lambda: len(recording_backend.upserts) == 2)

        assert recording_backend.upserts[0] == ("foo", {"a": 1})
        assert recording_backend.upserts[1] == ("foo", {"a": 99})


class TestFlushFailures:

    @pytest.mark.asyncio
    async def test_failed_flush_is_logged_and_not_retried(self, recording_backend, wait_until, caplog):
        store = make_store(recording_backend, quiet_period=0.05)
        await store.hydrate()
        recording_backend.fail_writes = True

        with caplog.at_level(logging.ERROR, logger="vitali.store.scheduler"):
            store.get_bucket("foo")["a"] = 1
            await wait_until(lambda: len(recording_backend.upserts) == 1)
            await asyncio.sleep(0.3)

        assert len(recording_backend.upserts) == 1
        assert "foo" not in recording_backend.rows
        assert "Failed to persist bucket 'foo'" in caplog.text
        assert store.scheduler.state("foo") is FlushState.CLEAN
        assert not store.scheduler.is_dirty("foo")
        assert store.pending_flushes() == []

    @pytest.mark.asyncio
    async def test_next_mutation_after_failure_writes_full_state(self, recording_backend, wait_until):
        store = make_store(recording_backend, quiet_period=0.05)
        await store.hydrate()
        foo = store.get_bucket("foo")
        recording_backend.fail_writes = True

        foo["a"] = 1
        await wait_until(lambda: len(recording_backend.upserts) == 1)
        await wait_until(lambda: store.scheduler.state("foo") is FlushState.CLEAN)

        recording_backend.fail_writes = False
        foo["b"] = 2
        await wait_until(lambda: "foo" in recording_backend.rows)

        assert recording_backend.rows["foo"] == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_other_buckets(self, recording_backend, wait_until):
        store = make_store(recording_backend, quiet_period=0.05)
        await store.hydrate()
        recording_backend.fail_writes = True
        store.get_bucket("foo")["a"] = 1
        await wait_until(lambda: len(recording_backend.upserts) == 1)
        await wait_until(lambda: store.scheduler.state("foo") is FlushState.CLEAN)

        recording_backend.fail_writes = False
        store.get_bucket("bar").append(1)
        await wait_until(lambda: "bar" in recording_backend.rows)

        assert store.get_bucket("foo") == {"a": 1}
        assert recording_backend.rows == {"bar": [1]}


class TestPureMemory:

    @pytest.mark.asyncio
    async def test_nothing_is_scheduled_without_backend(self):
        store = make_store(None, quiet_period=0.01)
        await store.hydrate()

        store.get_bucket("foo")["a"] = 1
        store.get_bucket("bar").append(1)
        await asyncio.sleep(0.05)

        assert store.pure_memory
        assert store.pending_flushes() == []
        assert store.scheduler.state("foo") is FlushState.CLEAN
        result = await store.drain_all()
        assert result.flushed == [] and result.failed == []
        assert store.get_bucket("foo") == {"a": 1}


class TestDrain:

    @pytest.mark.asyncio
    async def test_drain_flushes_pending_buckets_immediately(self, recording_backend):
        store = make_store(recording_backend, quiet_period=10)
        await store.hydrate()
        store.get_bucket("foo")["a"] = 1
        store.get_bucket("bar").append("x")
        assert sorted(store.pending_flushes()) == ["bar", "foo"]

        result = await store.drain_all()

        assert result.ok
        assert sorted(result.flushed) == ["bar", "foo"]
        assert recording_backend.rows == {"foo": {"a": 1}, "bar": ["x"]}
        assert store.pending_flushes() == []

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending_is_a_no_op(self, recording_backend):
        store = make_store(recording_backend, quiet_period=10)
        await store.hydrate()

        result = await store.drain_all()

        assert result.ok
        assert result.flushed == []
        assert recording_backend.upserts == []

    @pytest.mark.asyncio
    async def test_drain_waits_for_in_flight_flush_then_writes_latest(self, recording_backend, wait_until):
        store = make_store(recording_backend, quiet_period=0.05)
        await store.hydrate()
        foo = store.get_bucket("foo")
        recording_backend.gate = asyncio.Event()

        foo["a"] = 1
        await wait_until(lambda: len(recording_backend.upserts) == 1)
        foo["b"] = 2

        drain = asyncio.create_task(store.drain_all())
        await asyncio.sleep(0.01)
        assert not drain.done()
        recording_backend.gate.set()
        result = await drain

        assert result.flushed == ["foo"]
        assert recording_backend.rows["foo"] == {"a": 1, "b": 2}
        assert recording_backend.upserts[-1] == ("foo", {"a": 1, "b": 2})

    @pytest.mark.asyncio
    async def test_drain_reports_failures_without_raising(self, recording_backend):
        store = make_store(recording_backend, quiet_period=10)
        await store.hydrate()
        recording_backend.fail_writes = True
        store.get_bucket("foo")["a"] = 1

        result = await store.drain_all()

        assert not result.ok
        assert result.failed == ["foo"]

    @pytest.mark.asyncio
    async def test_shutdown_drains_and_disposes(self, recording_backend):
        store = make_store(recording_backend, quiet_period=10)
        await store.hydrate()
        store.get_bucket("bar").append({"id": "7"})

        result = await store.shutdown()

        assert result.flushed == ["bar"]
        assert recording_backend.rows["bar"] == [{"id": "7"}]
        assert recording_backend.disposed

    @pytest.mark.asyncio
    async def test_reload_cancels_pending_flush(self, recording_backend):
        store = make_store(recording_backend, quiet_period=10)
        await store.hydrate()
        foo = store.get_bucket("foo")
        foo["a"] = 1

        store.reload("foo", {"z": 1})

        assert store.pending_flushes() == []
        await store.drain_all()
        assert recording_backend.upserts == []
        assert foo == {"z": 1}


class TestThreadsAndLoops:

    @pytest.mark.asyncio
    async def test_mutation_from_worker_thread_is_flushed(self, recording_backend, wait_until):
        store = make_store(recording_backend, quiet_period=0.05)
        await store.hydrate()
        foo = store.get_bucket("foo")

        await asyncio.to_thread(foo.__setitem__, "from_thread", True)

        await wait_until(lambda: "foo" in recording_backend.rows)
        assert recording_backend.rows["foo"] == {"from_thread": True}

    def test_mutation_before_loop_is_kept_for_drain(self, recording_backend):
        store = make_store(recording_backend, quiet_period=0.05)

        store.get_bucket("foo")["early"] = 1
        assert store.scheduler.is_dirty("foo")

        result = asyncio.run(store.drain_all())

        assert result.flushed == ["foo"]
        assert recording_backend.rows["foo"] == {"early": 1}


class FlakySnapshot:
    """Snapshot callable that raises on its first call, as a dict resized mid-copy would."""

    def __init__(self, value):
        self.value = value
        self.calls = 0

    def __call__(self, name):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("dictionary changed size during iteration")
        return dict(self.value)


class TestSnapshotFailures:

    @pytest.mark.asyncio
    async def test_failed_snapshot_leaves_bucket_clean(self, recording_backend, wait_until):
        snapshot = FlakySnapshot({"a": 1})
        scheduler = DebounceScheduler(snapshot, recording_backend, quiet_period=0.05)
        scheduler.bind()

        scheduler.notify("foo")
        await wait_until(lambda: snapshot.calls == 1)
        await wait_until(lambda: scheduler.state("foo") is FlushState.CLEAN)
        assert recording_backend.upserts == []
        assert scheduler.pending() == []

        scheduler.notify("foo")
        await wait_until(lambda: "foo" in recording_backend.rows)

        assert recording_backend.rows["foo"] == {"a": 1}
        assert scheduler.state("foo") is FlushState.CLEAN

    @pytest.mark.asyncio
    async def test_mutation_during_failed_snapshot_is_flushed(self, recording_backend, wait_until):
        scheduler = None
        calls = []

        def snapshot(name):
            calls.append(name)
            if len(calls) == 1:
                # Stands in for a worker-thread write during the copy
                scheduler.notify(name)
                raise RuntimeError("dictionary changed size during iteration")
            return {"a": 2}

        scheduler = DebounceScheduler(snapshot, recording_backend, quiet_period=0.05)
        scheduler.bind()
        scheduler.notify("foo")

        await wait_until(lambda: "foo" in recording_backend.rows)

        assert recording_backend.rows["foo"] == {"a": 2}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_drain_reports_failed_snapshot_without_raising(self, recording_backend):
        snapshot = FlakySnapshot({"a": 1})
        scheduler = DebounceScheduler(snapshot, recording_backend, quiet_period=10)
        scheduler.bind()
        scheduler.notify("foo")

        result = await scheduler.drain_all()

        assert result.failed == ["foo"]
        assert scheduler.state("foo") is FlushState.CLEAN

        scheduler.notify("foo")
        result = await scheduler.drain_all()

        assert result.flushed == ["foo"]
        assert recording_backend.rows["foo"] == {"a": 1}

    @pytest.mark.asyncio
    async def test_drain_survives_crashed_flush_task(self, recording_backend):
        scheduler = DebounceScheduler(lambda name: {"a": 1}, recording_backend, quiet_period=10)
        scheduler.bind()
        scheduler.notify("foo")

        async def crashed():
            raise RuntimeError("flush task crashed")

        entry = scheduler._entry("foo")
        entry.timer.cancel()
        entry.timer = None
        entry.state = FlushState.FLUSHING
        entry.task = asyncio.ensure_future(crashed())

        result = await scheduler.drain_all()

        assert result.flushed == ["foo"]
        assert recording_backend.rows["foo"] == {"a": 1}
        assert scheduler.state("foo") is FlushState.CLEAN
