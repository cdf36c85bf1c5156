from __future__ import annotations
import copy
from typing import Any, Dict, Iterable, List, Optional, Set

from .errors import JsonCrudError
from .storage import ABSENT


class CacheState:
    """
    In-memory mirror owned by exactly one database instance.

    `keys` is kept when key caching is on, `data` when value caching is on
    (data implies keys). Both are None when the dimension is off. The owner
    applies a change only after the backend accepted it, so the mirror never
    runs ahead of storage; `pending` lists ids changed in memory but not yet
    flushed (deferred-flush mode only).
    """
    def __init__(self, *, keys: bool = False, values: bool = False) -> None:
        self.track_keys = keys or values
        self.track_values = values
        self.keys: Optional[Set[str]] = None
        self.data: Optional[Dict[str, Any]] = None
        self.pending: Dict[str, Any] = {}

    def load(self, keys: Iterable[str], data: Optional[Dict[str, Any]] = None) -> None:
        if self.track_keys:
            self.keys = set(keys)
        if self.track_values:
            self.data = dict(data or {})

    def known_keys(self) -> Optional[List[str]]:
        if self.data is not None:
            return list(self.data.keys())
        if self.keys is not None:
            return sorted(self.keys)
        return None

    def has(self, key: str) -> Optional[bool]:
        """Cached existence answer, or None when keys are not cached."""
        if self.data is not None:
            return key in self.data
        if self.keys is not None:
            return key in self.keys
        return None

    def _values(self) -> Dict[str, Any]:
        if self.data is None:
            raise JsonCrudError("record values are not cached")
        return self.data

    def get(self, key: str) -> Any:
        return copy.deepcopy(self._values().get(key))

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._values())

    def apply(self, key: str, value: Any) -> None:
        """Mirror a successful write of `value` (ABSENT: delete) under `key`."""
        if value is ABSENT:
            if self.keys is not None:
                self.keys.discard(key)
            if self.data is not None:
                self.data.pop(key, None)
            return
        if self.keys is not None:
            self.keys.add(key)
        if self.data is not None:
            self.data[key] = copy.deepcopy(value)

    def apply_many(self, changes: Dict[str, Any]) -> None:
        for key, value in changes.items():
            self.apply(key, value)

    def mark_pending(self, changes: Dict[str, Any]) -> None:
        self.pending.update(changes)

    def settle(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.pending.pop(key, None)

    def clear(self) -> None:
        self.keys = None
        self.data = None
        self.pending = {}
