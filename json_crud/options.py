"""Configuration for a json_crud database instance.

Options are fixed once the database is opened.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidArgumentError

# Keys of the published (camelCase) option contract
_ALIASES = {
    "idField": "id_field",
    "id": "id_field",
    "cacheKeys": "cache_keys",
    "cacheValues": "cache_values",
    "cacheData": "cache_data",
    "noSync": "no_sync",
    "pollInterval": "poll_interval",
}


@dataclass(frozen=True)
class Options:
    """Options for a json_crud database.

    Attributes:
        id_field: Field read from object-shaped create/update arguments to
            resolve the id. Without it only id/value pairs are accepted.
        cache_keys: Keep an in-memory set of the known ids
        cache_values: Keep an in-memory mirror of the whole data set
        cache_data: Alias of cache_values
        listen: Poll the database path for external changes and reload caches
        no_sync: Apply mutations in memory only until flush() is awaited
        poll_interval: Seconds between two change polls when listening
        indent: Indent used when pretty-printing JSON files
        extension: Extension of record files in a folder database
    """

    id_field: Optional[str] = None
    cache_keys: bool = False
    cache_values: bool = False
    cache_data: bool = False
    listen: bool = False
    no_sync: bool = False
    poll_interval: float = 0.5
    indent: Optional[int] = 2
    extension: str = ".json"

    def __post_init__(self) -> None:
        if self.id_field is not None and (not isinstance(self.id_field, str) or not self.id_field):
            raise InvalidArgumentError("id_field must be a non-empty string")
        for name in ("cache_keys", "cache_values", "cache_data", "listen", "no_sync"):
            if not isinstance(getattr(self, name), bool):
                raise InvalidArgumentError(f"option {name} must be a bool")
        if not isinstance(self.poll_interval, (int, float)) or self.poll_interval <= 0:
            raise InvalidArgumentError("poll_interval must be a positive number")
        if not self.extension.startswith(".") or len(self.extension) < 2:
            raise InvalidArgumentError(f"extension must look like '.json' ({self.extension!r} given)")

    @property
    def caches_values(self) -> bool:
        # no_sync keeps the whole data set in memory
        return self.cache_values or self.cache_data or self.no_sync

    @property
    def caches_keys(self) -> bool:
        return self.cache_keys or self.caches_values

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "Options":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in {**(data or {}), **overrides}.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise InvalidArgumentError(f"Unknown option {key!r}")
            kwargs[name] = value
        return cls(**kwargs)
