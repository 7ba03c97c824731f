"""
Vitali Backend — Mutation Tracking Views
==========================================

What:  dict/list look-alikes that report every write to their owning bucket.
How:   `TrackedDict` and `TrackedList` implement the `collections.abc` mutable
       protocols over a plain underlying dict/list. Reads of nested containers
       return further views bound to the same `BucketTracker`; every write
       calls `BucketTracker.changed()` after the underlying value is updated.
Who:   Created by the BucketRegistry (one root view per bucket); everything
       else reaches views only by reading through a root.

Call sites keep ordinary syntax:

    profiles = store.get_bucket("patient_profiles")
    profiles["42"] = {"name": "Ada", "vitals": {}}
    profiles["42"]["vitals"]["bpm"] = 71          # observed, two levels deep
    store.get_bucket("users").append({"id": "7"})  # observed

Ownership:
    Values written into a bucket are deep-copied to plain dicts/lists first
    (`to_plain`), so a bucket never shares structure with caller-held objects
    and never contains view objects. Values read out are views; pass them
    through `to_plain()` before handing them to a JSON encoder.

View identity:
    Each tracker caches live nested views in a WeakValueDictionary keyed by
    id() of the wrapped container. While a view is referenced, reading the same
    container again returns the same view object. Once nothing references it
    the entry disappears, so wrappers never accumulate.
"""

import weakref
from collections.abc import MutableMapping, MutableSequence
from typing import Any, Callable, Iterator, Optional, Union


class BucketTracker:
    """
    Change scope for one bucket: owns its view cache and its change callback.

    The callback receives the bucket name; the registry wires it to the
    debounce scheduler.
    """

    def __init__(self, name: str, on_change: Callable[[str], None]):
        self.name = name
        self._on_change = on_change
        self._views: "weakref.WeakValueDictionary[int, TrackedView]" = weakref.WeakValueDictionary()

    def root(self, data: Union[dict, list]) -> "TrackedView":
        """Create the bucket's root view. Roots are not cached; the registry holds them."""
        return _view_class(data)(data, self)

    def wrap(self, value: Any) -> Any:
        """Return a cached view for dicts/lists, the value itself otherwise."""
        cls = _view_class(value)
        if cls is None:
            return value
        key = id(value)
        view = self._views.get(key)
        if view is not None and view._data is value:
            return view
        view = cls(value, self)
        self._views[key] = view
        return view

    def changed(self) -> None:
        self._on_change(self.name)

    def forget_views(self) -> None:
        """Drop cached nested views (used when the root value is replaced)."""
        self._views.clear()


def _view_class(value: Any) -> Optional[type]:
    if isinstance(value, dict):
        return TrackedDict
    if isinstance(value, list):
        return TrackedList
    return None


def unwrap(value: Any) -> Any:
    """Return the plain container behind a view (not a copy); other values unchanged."""
    if isinstance(value, (TrackedDict, TrackedList)):
        return value._data
    return value


# Scalars json.dumps encodes without a custom encoder
_JSON_SCALARS = (str, int, float, bool, type(None))


def _json_key(key: Any) -> Any:
    if not isinstance(key, _JSON_SCALARS):
        raise TypeError(f"Bucket keys must be JSON scalars, got {type(key).__name__}")
    return key


def to_plain(value: Any) -> Any:
    """
    Deep-copy a JSON-like value into plain dicts and lists.

    Views are replaced by copies of their data and tuples become lists.
    JSON scalars are returned as-is.

    Raises:
        TypeError: the value contains something JSON cannot encode (a
            datetime, a set, an arbitrary object) as a value or a key. Raised
            before any bucket is touched, so a rejected write changes nothing.
    """
    value = unwrap(value)
    if isinstance(value, dict):
        plain = {}
        for key, item in value.items():
            plain[_json_key(key)] = to_plain(item)
        return plain
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    if not isinstance(value, _JSON_SCALARS):
        raise TypeError(
            f"Object of type {type(value).__name__} cannot be stored in a bucket; "
            "convert it to a JSON value first"
        )
    return value


class TrackedDict(MutableMapping):
    """Mapping view over a plain dict inside a bucket."""

    __slots__ = ("_data", "_tracker", "__weakref__")

    def __init__(self, data: dict, tracker: BucketTracker):
        self._data = data
        self._tracker = tracker

    @property
    def bucket(self) -> str:
        """Name of the bucket this view belongs to."""
        return self._tracker.name

    # ── Reads ─────────────────────────────────────────────────────────────
    def __getitem__(self, key: Any) -> Any:
        return self._tracker.wrap(self._data[key])

    def __iter__(self) -> Iterator[Any]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __eq__(self, other: object) -> bool:
        return self._data == unwrap(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"TrackedDict({self._data!r})"

    # ── Writes ────────────────────────────────────────────────────────────
    def __setitem__(self, key: Any, value: Any) -> None:
        self._data[_json_key(key)] = to_plain(value)
        self._tracker.changed()

    def __delitem__(self, key: Any) -> None:
        del self._data[key]
        self._tracker.changed()

    def pop(self, key: Any, *default: Any) -> Any:
        # Returns the detached plain value, not a view of data that left the bucket
        if key not in self._data:
            if default:
                return default[0]
            raise KeyError(key)
        value = self._data.pop(key)
        self._tracker.changed()
        return value

    def popitem(self) -> tuple:
        item = self._data.popitem()
        self._tracker.changed()
        return item

    def setdefault(self, key: Any, default: Any = None) -> Any:
        # The mixin version would return the caller's object, not the stored copy
        if key not in self._data:
            self._data[_json_key(key)] = to_plain(default)
            self._tracker.changed()
        return self[key]

    def update(self, other: Any = (), /, **kwargs: Any) -> None:
        incoming = dict(other, **kwargs)
        if not incoming:
            return
        self._data.update(to_plain(incoming))
        self._tracker.changed()

    def clear(self) -> None:
        if self._data:
            self._data.clear()
            self._tracker.changed()


class TrackedList(MutableSequence):
    """Sequence view over a plain list inside a bucket."""

    __slots__ = ("_data", "_tracker", "__weakref__")

    def __init__(self, data: list, tracker: BucketTracker):
        self._data = data
        self._tracker = tracker

    @property
    def bucket(self) -> str:
        """Name of the bucket this view belongs to."""
        return self._tracker.name

    # ── Reads ─────────────────────────────────────────────────────────────
    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, slice):
            return [self._tracker.wrap(item) for item in self._data[index]]
        return self._tracker.wrap(self._data[index])

    def __iter__(self) -> Iterator[Any]:
        for item in self._data:
            yield self._tracker.wrap(item)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, value: object) -> bool:
        return unwrap(value) in self._data

    def __eq__(self, other: object) -> bool:
        return self._data == unwrap(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"TrackedList({self._data!r})"

    # ── Writes ────────────────────────────────────────────────────────────
    def __setitem__(self, index: Any, value: Any) -> None:
        if isinstance(index, slice):
            self._data[index] = [to_plain(item) for item in value]
        else:
            self._data[index] = to_plain(value)
        self._tracker.changed()

    def __delitem__(self, index: Any) -> None:
        del self._data[index]
        self._tracker.changed()

    def insert(self, index: int, value: Any) -> None:
        self._data.insert(index, to_plain(value))
        self._tracker.changed()

    def append(self, value: Any) -> None:
        self._data.append(to_plain(value))
        self._tracker.changed()

    def extend(self, values: Any) -> None:
        items = [to_plain(item) for item in values]
        if items:
            self._data.extend(items)
            self._tracker.changed()

    def __iadd__(self, values: Any) -> "TrackedList":
        self.extend(values)
        return self

    def pop(self, index: int = -1) -> Any:
        value = self._data.pop(index)
        self._tracker.changed()
        return value

    def remove(self, value: Any) -> None:
        self._data.remove(unwrap(value))
        self._tracker.changed()

    def clear(self) -> None:
        if self._data:
            self._data.clear()
            self._tracker.changed()

    def sort(self, *, key: Optional[Callable[[Any], Any]] = None, reverse: bool = False) -> None:
        self._data.sort(key=key, reverse=reverse)
        self._tracker.changed()

    def reverse(self) -> None:
        self._data.reverse()
        self._tracker.changed()


TrackedView = Union[TrackedDict, TrackedList]
