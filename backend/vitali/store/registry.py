"""
Vitali Backend — Bucket Registry
==================================

What:  The catalog of named buckets and their singleton tracked handles.
How:   `register()` deep-copies the default value, wraps it in a root view
       bound to a per-bucket BucketTracker, and keeps that one handle for the
       registry's lifetime. `replace()` swaps the data behind an existing
       handle, so references already held by route handlers stay valid.
Who:   Owned by AppStore; the debounce scheduler reads snapshots from it.

The registry performs no I/O. Registering a name twice or asking for an
unknown name is a programming error and raises immediately.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from vitali.exceptions import BucketRegistrationError, UnknownBucketError
from vitali.store.tracking import BucketTracker, TrackedView, to_plain

logger = logging.getLogger(__name__)


class BucketKind(str, Enum):
    """Shape of a bucket's root value."""

    MAPPING = "mapping"
    SEQUENCE = "sequence"

    def empty(self) -> Any:
        return {} if self is BucketKind.MAPPING else []

    def accepts(self, value: Any) -> bool:
        if self is BucketKind.MAPPING:
            return isinstance(value, dict)
        return isinstance(value, list)


class _Bucket(NamedTuple):
    kind: BucketKind
    tracker: BucketTracker
    handle: TrackedView


class BucketRegistry:
    """
    Holds exactly one tracked handle per bucket name.

    Args:
        on_change: Called with the bucket name after every observed write.
    """

    def __init__(self, on_change: Callable[[str], None]):
        self._on_change = on_change
        self._buckets: Dict[str, _Bucket] = {}

    def register(self, name: str, kind: BucketKind, default: Optional[Any] = None) -> TrackedView:
        """
        Create the bucket and return its handle.

        Raises:
            BucketRegistrationError: name already registered, or `default`
                does not match `kind`.
        """
        if name in self._buckets:
            raise BucketRegistrationError(name)
        kind = BucketKind(kind)
        value = kind.empty() if default is None else to_plain(default)
        if not kind.accepts(value):
            raise BucketRegistrationError(
                name,
                f"Default for {kind.value} bucket '{name}' must be a "
                f"{'dict' if kind is BucketKind.MAPPING else 'list'}, got {type(default).__name__}",
            )
        tracker = BucketTracker(name, self._on_change)
        handle = tracker.root(value)
        self._buckets[name] = _Bucket(kind, tracker, handle)
        logger.debug("Registered %s bucket '%s'", kind.value, name)
        return handle

    def get(self, name: str) -> TrackedView:
        return self._lookup(name).handle

    def kind(self, name: str) -> BucketKind:
        return self._lookup(name).kind

    def names(self) -> List[str]:
        return list(self._buckets)

    def __contains__(self, name: object) -> bool:
        return name in self._buckets

    def __len__(self) -> int:
        return len(self._buckets)

    def snapshot(self, name: str) -> Any:
        """Deep copy of the bucket's entire current value."""
        return to_plain(self._lookup(name).handle)

    def replace(self, name: str, value: Any) -> None:
        """
        Swap the whole value behind the bucket's handle without notifying.

        Cached nested views are dropped; views obtained before the swap keep
        pointing at the old data.

        Raises:
            TypeError: `value` does not match the bucket kind.
        """
        bucket = self._lookup(name)
        if not bucket.kind.accepts(value):
            raise TypeError(
                f"Cannot load {type(value).__name__} into {bucket.kind.value} bucket '{name}'"
            )
        bucket.tracker.forget_views()
        bucket.handle._data = to_plain(value)

    def _lookup(self, name: str) -> _Bucket:
        try:
            return self._buckets[name]
        except KeyError:
            raise UnknownBucketError(name) from None
