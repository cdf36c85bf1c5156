from __future__ import annotations
import asyncio
import copy
import dataclasses
import errno
import logging
import os
import stat
from typing import Any, Dict, List, Mapping, Optional, Union

from .arguments import SaveRequest, parse_save_args
from .cache import CacheState
from .errors import (
    AmbiguousSingleReadError,
    DatabaseClosedError,
    DuplicateKeyError,
    InvalidFilterError,
    StorageError,
)
from .options import Options
from .progress import Progress, ProgressCallback
from .query import NODE_TYPES, Node, compile_filter, select
from .storage import ABSENT, FolderStorage, SingleFileStorage, StorageBackend
from .utils import deep_merge, is_id, key_of
from .watch import ChangeWatcher
from .writer import WriteQueue

logger = logging.getLogger(__name__)

Filter = Union[str, int, float, List[Any], Mapping[str, Any], Node]


class Database:
    """
    CRUD handle over one JSON database (a table). Obtain one with open_db().

    Mutations (create/update/delete/flush) run one at a time through the
    instance's write queue, so the existence check or merge read of one call
    always sees the result of the previous call. Reads are not queued.
    Writes made by other processes or other instances on the same path are
    not coordinated; with caching on, they only become visible through
    `listen` or a reopen.
    """
    kind = "abstract"

    def __init__(self, path: str, options: Options, backend: StorageBackend,
                 progress: Optional[Progress] = None) -> None:
        self.path = path
        self.options = options
        self._backend = backend
        self._progress = progress or Progress()
        self._cache = CacheState(keys=options.caches_keys, values=options.caches_values)
        self._writer = WriteQueue(name=os.path.basename(path) or path)
        self._watcher: Optional[ChangeWatcher] = None
        self._writing = False
        self._closed = False

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<{type(self).__name__} {self.path!r} ({state})>"

    async def __aenter__(self) -> "Database":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    # ----- lifecycle -----

    async def _open(self) -> None:
        self._progress.emit("open.start", 0, self.path)
        await self._load_cache()
        if self.options.listen:
            if self._cache.track_keys:
                self._watcher = ChangeWatcher(self._backend.stamps, self._on_external_change,
                                              interval=self.options.poll_interval,
                                              busy=lambda: self._writing)
                await self._watcher.start()
            else:
                logger.debug(f"listen has no effect on {self.path}: nothing is cached")
        self._progress.emit("open.done", 100, self.path)
        logger.info(f"Opened {self.kind} database at {self.path}")

    async def _load_cache(self) -> None:
        if self._cache.track_values:
            data = await self._backend.read_all()
            self._cache.load(data.keys(), data)
        elif self._cache.track_keys:
            self._cache.load(await self._backend.list_keys())

    async def _on_external_change(self, changed: List[str]) -> None:
        async def reload() -> None:
            pending = dict(self._cache.pending)
            await self._load_cache()
            # Unflushed changes stay on top of what was reloaded
            self._cache.apply_many(pending)
            self._cache.mark_pending(pending)
            logger.info(f"Reloaded cache of {self.path} after change of {', '.join(changed)}")
        await self._writer.submit("reload", reload)

    def close(self) -> None:
        """Release the change subscription and cache. Idempotent; storage is left as is."""
        if self._closed:
            return
        self._closed = True
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self._writer.close()
        if self._cache.pending:
            logger.warning(
                f"Closing {self.path} with {len(self._cache.pending)} unflushed change(s); "
                "they are discarded"
            )
        self._cache.clear()
        logger.info(f"Closed database at {self.path}")

    def _check_open(self) -> None:
        if self._closed:
            raise DatabaseClosedError(f"database at {self.path} is closed")

    # ----- working data set -----

    async def _key_list(self) -> List[str]:
        keys = self._cache.known_keys()
        if keys is not None:
            return keys
        return await self._backend.list_keys()

    async def _all_values(self) -> Dict[str, Any]:
        if self._cache.data is not None:
            return self._cache.snapshot()
        return await self._backend.read_all()

    async def _values_for(self, keys: List[str]) -> Dict[str, Any]:
        if self._cache.data is not None:
            return {k: self._cache.get(k) for k in keys if k in self._cache.data}
        if self._cache.keys is not None:
            keys = [k for k in keys if k in self._cache.keys]
            if not keys:
                return {}
        return await self._backend.read_many(keys)

    # ----- persistence -----

    async def _commit(self, changes: Dict[str, Any]) -> None:
        """Write `changes` (key -> value, ABSENT deletes) and mirror them in the cache."""
        if not changes:
            return
        if self.options.no_sync:
            self._cache.apply_many(changes)
            self._cache.mark_pending(changes)
            return
        await self._write_through(self._persist, changes)

    async def _write_through(self, write, changes: Dict[str, Any]) -> None:
        # Stamps taken after our own write are the new baseline of the watcher
        self._writing = True
        try:
            await write(changes)
        finally:
            try:
                if self._watcher is not None:
                    await self._watcher.rebase()
            finally:
                self._writing = False

    async def _persist(self, changes: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def flush(self) -> List[str]:
        """Write every change made in deferred-flush (no_sync) mode. Returns the keys written."""
        self._check_open()
        if not self.options.no_sync:
            return []

        async def run() -> List[str]:
            pending = dict(self._cache.pending)
            if not pending:
                return []
            self._progress.emit("flush.start", 0, f"{len(pending)} change(s)")
            await self._write_through(self._flush_pending, pending)
            self._progress.emit("flush.done", 100)
            logger.info(f"Flushed {len(pending)} change(s) to {self.path}")
            return list(pending)

        return await self._writer.submit("flush", run)

    async def _flush_pending(self, pending: Dict[str, Any]) -> None:
        raise NotImplementedError

    # ----- public API -----

    async def keys(self) -> List[str]:
        self._check_open()
        return await self._key_list()

    async def has(self, rec_id: Any) -> bool:
        self._check_open()
        if not is_id(rec_id):
            return False
        key = key_of(rec_id)
        cached = self._cache.has(key)
        if cached is not None:
            return cached
        return key in await self._backend.list_keys()

    async def create(self, *data: Any, replace: Optional[bool] = None) -> List[Any]:
        """
        Insert records given as id/value pairs, as objects holding their id
        under `options.id_field`, or as one list of either. A leading bool (or
        `replace=`) allows overwriting existing ids; otherwise the first id
        already present fails the whole call with DuplicateKeyError and
        nothing is written. Returns the ids in call order.
        """
        self._check_open()
        request = parse_save_args(data, id_field=self.options.id_field,
                                  allow_replace=True, replace=replace)
        return await self._writer.submit("create", lambda: self._do_create(request))

    async def _do_create(self, request: SaveRequest) -> List[Any]:
        if not request.replace:
            existing = set(await self._key_list())
            for rec_id, _ in request.entries:
                key = key_of(rec_id)
                if key in existing:
                    raise DuplicateKeyError(rec_id)
                existing.add(key)
        changes = {key_of(rec_id): copy.deepcopy(value) for rec_id, value in request.entries}
        await self._commit(changes)
        return request.ids

    async def update(self, *data: Any) -> List[Any]:
        """
        Deep-merge each given value into the record stored under its id
        (objects merge key-wise, anything else replaces). Ids without a
        record are stored as given. Returns the ids in call order.
        """
        self._check_open()
        request = parse_save_args(data, id_field=self.options.id_field)
        return await self._writer.submit("update", lambda: self._do_update(request))

    async def _do_update(self, request: SaveRequest) -> List[Any]:
        keys = list(dict.fromkeys(key_of(rec_id) for rec_id in request.ids))
        current = await self._values_for(keys)
        changes: Dict[str, Any] = {}
        for rec_id, value in request.entries:
            key = key_of(rec_id)
            if key in changes:
                changes[key] = deep_merge(changes[key], value)
            elif key in current:
                changes[key] = deep_merge(current[key], value)
            else:
                changes[key] = copy.deepcopy(value)
        await self._commit(changes)
        return request.ids

    async def read(self, filter: Optional[Filter] = None, expect_single: bool = False) -> Any:
        """
        Without a filter, every record as {key: record}. With an id or list of
        ids, the records stored under them (missing ids are left out). With a
        filter mapping or node, the records it matches.

        With `expect_single`, the bare record (or None) is returned instead
        of a mapping; asking for several ids, or a filter matching several
        records, raises AmbiguousSingleReadError.
        """
        self._check_open()
        if filter is None:
            return self._single_or_all(await self._all_values(), expect_single)

        ids = _as_ids(filter)
        if ids is not None:
            if expect_single:
                if len(ids) > 1:
                    raise AmbiguousSingleReadError(ids)
                if not ids:
                    return None
                key = key_of(ids[0])
                return (await self._values_for([key])).get(key)
            keys = [key_of(rec_id) for rec_id in ids]
            found = await self._values_for(keys)
            return {k: found[k] for k in keys if k in found}

        node = compile_filter(filter)
        matched = select(await self._all_values(), node)
        return self._single_or_all(matched, expect_single)

    @staticmethod
    def _single_or_all(data: Dict[str, Any], expect_single: bool) -> Any:
        if not expect_single:
            return data
        if len(data) > 1:
            raise AmbiguousSingleReadError(list(data))
        return next(iter(data.values()), None)

    async def delete(self, filter: Union[Filter, bool]) -> Union[List[Any], bool]:
        """
        Delete every record (`True`), the records under an id or list of ids,
        or the records a filter matches. Returns the ids that existed and were
        removed; ids that did not exist are left out, never an error.
        """
        self._check_open()
        if filter is True:
            return await self._writer.submit("delete", self._do_delete_all)
        ids = _as_ids(filter)
        if ids is not None:
            return await self._writer.submit("delete", lambda: self._do_delete_ids(ids))
        if isinstance(filter, (Mapping,) + NODE_TYPES):
            node = compile_filter(filter)
            return await self._writer.submit("delete", lambda: self._do_delete_matching(node))
        raise InvalidFilterError(
            "filter needs to be true, a key, an array of keys or a filter object "
            f"({type(filter).__name__} given)"
        )

    async def _do_delete_all(self) -> List[str]:
        keys = await self._key_list()
        await self._commit({k: ABSENT for k in keys})
        return keys

    async def _do_delete_ids(self, ids: List[Any]) -> List[Any]:
        existing = set(await self._key_list())
        removed: List[Any] = []
        changes: Dict[str, Any] = {}
        for rec_id in ids:
            key = key_of(rec_id)
            if key in existing and key not in changes:
                changes[key] = ABSENT
                removed.append(rec_id)
        await self._commit(changes)
        return removed

    async def _do_delete_matching(self, node: Node) -> List[str]:
        keys = list(select(await self._all_values(), node))
        await self._commit({k: ABSENT for k in keys})
        return keys


class FileDatabase(Database):
    """Database held as one JSON object in a single file."""
    kind = "file"

    async def _persist(self, changes: Dict[str, Any]) -> None:
        if self._cache.data is not None:
            data = dict(self._cache.data)
        else:
            data = await self._backend.read_all()
        for key, value in changes.items():
            if value is ABSENT:
                data.pop(key, None)
            else:
                data[key] = value
        await self._backend.write_all(data)
        self._cache.apply_many(changes)

    async def _flush_pending(self, pending: Dict[str, Any]) -> None:
        await self._backend.write_all(self._cache.snapshot())
        self._cache.settle(pending)

    async def delete(self, filter: Union[Filter, bool]) -> Union[List[Any], bool]:
        """As Database.delete; a single id (not in a list) returns whether it was deleted."""
        if is_id(filter):
            return bool(await super().delete(filter))
        return await super().delete(filter)


class FolderDatabase(Database):
    """
    Database held as one JSON file per record in a folder. Batches are written
    record by record; when one write fails the records before it stay written
    (and cached), the rest are not attempted.
    """
    kind = "folder"

    async def _write_records(self, changes: Dict[str, Any]) -> None:
        phase = "delete.records" if all(v is ABSENT for v in changes.values()) else "write.records"
        total = len(changes)
        for i, (key, value) in enumerate(changes.items(), 1):
            await self._backend.write_one(key, value)
            self._cache.apply(key, value)
            self._progress.step(phase, i, total)

    async def _persist(self, changes: Dict[str, Any]) -> None:
        await self._write_records(changes)

    async def _flush_pending(self, pending: Dict[str, Any]) -> None:
        total = len(pending)
        for i, (key, value) in enumerate(pending.items(), 1):
            await self._backend.write_one(key, value)
            self._cache.settle([key])
            self._progress.step("write.records", i, total)


def _as_ids(filter: Any) -> Optional[List[Any]]:
    """The filter as a list of ids, or None when it is not an id form."""
    if is_id(filter):
        return [filter]
    if isinstance(filter, (list, tuple)):
        for i, rec_id in enumerate(filter):
            if not is_id(rec_id):
                raise InvalidFilterError(f"Invalid key given at position {i}: {rec_id!r}")
        return list(filter)
    return None


def _prepare_path(path: str, want_folder: bool) -> str:
    """Create the database file/folder when missing; return "file" or "folder"."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        if want_folder:
            os.mkdir(path)
            return "folder"
        with open(path, "x", encoding="utf-8") as f:
            f.write("{}")
        return "file"
    if not os.access(path, os.R_OK | os.W_OK):
        raise PermissionError(errno.EACCES, "permission denied", path)
    if stat.S_ISDIR(st.st_mode):
        return "folder"
    if stat.S_ISREG(st.st_mode):
        return "file"
    raise OSError(errno.EINVAL, "not a regular file or directory", path)


async def open_db(
    path: Union[str, "os.PathLike[str]"],
    options: Union[Options, Mapping[str, Any], None] = None,
    *,
    on_progress: Optional[ProgressCallback] = None,
    **option_kwargs: Any,
) -> Database:
    """
    Open (creating when absent) the database at `path`. A path ending with a
    separator is created as a folder database, any other missing path as a
    single-file database; existing paths keep what they are.

    Options come as an Options instance, a mapping (camelCase keys of the
    published contract accepted) and/or keyword arguments.
    """
    if isinstance(options, Options):
        opts = Options.from_mapping(dataclasses.asdict(options), **option_kwargs)
    else:
        opts = Options.from_mapping(options, **option_kwargs)

    raw = os.fspath(path)
    want_folder = raw.endswith(os.sep) or bool(os.altsep and raw.endswith(os.altsep))
    abs_path = os.path.abspath(raw)
    try:
        kind = await asyncio.to_thread(_prepare_path, abs_path, want_folder)
    except OSError as e:
        raise StorageError(f"Error trying to open database {abs_path}", e) from e

    progress = Progress(on_progress)
    db: Database
    if kind == "folder":
        backend = FolderStorage(abs_path, extension=opts.extension, indent=opts.indent, progress=progress)
        db = FolderDatabase(abs_path, opts, backend, progress)
    else:
        db = FileDatabase(abs_path, opts, SingleFileStorage(abs_path, indent=opts.indent, progress=progress), progress)
    await db._open()
    return db
