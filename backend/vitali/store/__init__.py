"""
Vitali Backend — Application State Store
==========================================

What:  Shared in-process buckets with debounced write-back to a durable store.

Module Inventory:
    - tracking.py:   TrackedDict / TrackedList views that report every write
    - registry.py:   BucketRegistry, one singleton handle per bucket name
    - scheduler.py:  DebounceScheduler, one coalesced flush per burst of writes
    - backends.py:   SnapshotBackend contract and the SQLAlchemy implementation
    - buckets.py:    the application's bucket catalog and defaults
    - app_store.py:  AppStore, hydration, drain and shutdown

This package has no web-framework imports; routes reach the store through
vitali.dependencies.get_store.
"""

from vitali.store.app_store import AppStore
from vitali.store.backends import SnapshotBackend, SqlSnapshotBackend, build_backend
from vitali.store.registry import BucketKind, BucketRegistry
from vitali.store.scheduler import DebounceScheduler, DrainResult, FlushState
from vitali.store.tracking import TrackedDict, TrackedList, to_plain, unwrap

__all__ = [
    "AppStore",
    "BucketKind",
    "BucketRegistry",
    "DebounceScheduler",
    "DrainResult",
    "FlushState",
    "SnapshotBackend",
    "SqlSnapshotBackend",
    "TrackedDict",
    "TrackedList",
    "build_backend",
    "to_plain",
    "unwrap",
]
