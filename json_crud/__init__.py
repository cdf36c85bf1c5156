"""json_crud - CRUD over JSON files, as one JSON object per file or one file per record."""

from .database import Database, FileDatabase, FolderDatabase, open_db
from .errors import (
    JsonCrudError,
    InvalidArgumentError,
    InvalidFilterError,
    UnknownOperatorError,
    DuplicateKeyError,
    AmbiguousSingleReadError,
    DatabaseClosedError,
    StorageError,
    CorruptDataError,
)
from .options import Options
from .query import And, Field, Not, Or, compile_filter, matches

__all__ = [
    "open_db",
    "Database",
    "FileDatabase",
    "FolderDatabase",
    "Options",
    "JsonCrudError",
    "InvalidArgumentError",
    "InvalidFilterError",
    "UnknownOperatorError",
    "DuplicateKeyError",
    "AmbiguousSingleReadError",
    "DatabaseClosedError",
    "StorageError",
    "CorruptDataError",
    "Field",
    "And",
    "Or",
    "Not",
    "compile_filter",
    "matches",
]
