from __future__ import annotations
from typing import Any, List, Optional


class JsonCrudError(Exception):
    """Base class for every error raised by json_crud."""


class InvalidArgumentError(JsonCrudError, ValueError):
    """No data given, uneven id/value pairs, mixed argument shapes or a bad id."""


class InvalidFilterError(JsonCrudError, ValueError):
    """Filter is neither an id, a list of ids nor a filter mapping."""


class UnknownOperatorError(InvalidFilterError):
    def __init__(self, operator: str) -> None:
        super().__init__(f"Unknown operator {operator}")
        self.operator = operator


class DuplicateKeyError(JsonCrudError):
    def __init__(self, key: Any) -> None:
        super().__init__(f"Value for {key!r} already exists")
        self.key = key


class AmbiguousSingleReadError(JsonCrudError):
    def __init__(self, keys: List[Any]) -> None:
        super().__init__(f"More than one value going to be returned: {keys!r}")
        self.keys = list(keys)


class DatabaseClosedError(JsonCrudError):
    pass


class StorageError(JsonCrudError, OSError):
    """
    I/O failure in a storage backend. The originating exception is kept in
    `cause` (and chained as __cause__); errno/filename are copied from it.
    """
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        if isinstance(cause, OSError) and cause.errno is not None:
            super().__init__(cause.errno, message, cause.filename)
        else:
            super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class CorruptDataError(StorageError):
    """Stored file is not valid JSON, or the database file is not a JSON object."""
