"""Storage backends: one JSON object per database, or one JSON file per record.

Backends only move JSON values between memory and disk. They hold no state
about the data; caching and business rules live in the database layer.
"""

from __future__ import annotations
import asyncio
import logging
import os
import tempfile
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from .errors import CorruptDataError, StorageError
from .progress import Progress
from .utils import dumps, filename_to_id, id_to_filename, loads

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Absent:
    def __repr__(self) -> str:
        return "ABSENT"


# Value passed to write_one() to delete a record
ABSENT: Any = _Absent()


def _atomic_write(path: str, text: str) -> None:
    fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path) or ".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class StorageBackend:
    """
    Common surface of both backends. Every method is a coroutine; blocking
    file calls run in a worker thread. Missing records come back as absent
    values, every OSError is raised as StorageError.
    """
    kind = "abstract"

    def __init__(self, path: str, *, indent: Optional[int] = 2, progress: Optional[Progress] = None) -> None:
        self.path = path
        self.indent = indent
        self._progress = progress or Progress()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except StorageError:
            raise
        except OSError as e:
            raise StorageError(f"{self.kind} storage I/O failed on {self.path}", e) from e

    async def read_all(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def read_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Stored records for `keys`; keys without a record are left out."""
        raise NotImplementedError

    async def read_one(self, key: str) -> Any:
        """Stored record for `key`, or None when there is none."""
        raise NotImplementedError

    async def write_all(self, data: Dict[str, Any]) -> None:
        """Make the stored data set equal to `data`."""
        raise NotImplementedError

    async def write_one(self, key: str, value: Any) -> bool:
        """Store `value` under `key`; ABSENT deletes. Returns whether `key` existed before."""
        raise NotImplementedError

    async def list_keys(self) -> List[str]:
        raise NotImplementedError

    def stamps(self) -> Dict[str, Tuple[int, int]]:
        """Stamps of the files holding records (name -> (mtime_ns, size))."""
        raise NotImplementedError


class SingleFileStorage(StorageBackend):
    """The whole database as one pretty-printed JSON object; every write rewrites the file."""
    kind = "file"

    def _read_sync(self) -> Dict[str, Any]:
        with open(self.path, "r", encoding="utf-8") as f:
            text = f.read()
        if not text.strip():
            return {}
        data = loads(text, self.path)
        if not isinstance(data, dict):
            raise CorruptDataError(f"{self.path} does not hold a JSON object")
        return data

    def _write_sync(self, data: Dict[str, Any]) -> None:
        _atomic_write(self.path, dumps(data, self.indent))
        logger.debug(f"Wrote {len(data)} records to {self.path}")

    async def read_all(self) -> Dict[str, Any]:
        return await self._run(self._read_sync)

    async def read_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        data = await self.read_all()
        return {k: data[k] for k in keys if k in data}

    async def read_one(self, key: str) -> Any:
        return (await self.read_all()).get(key)

    async def write_all(self, data: Dict[str, Any]) -> None:
        await self._run(self._write_sync, data)

    async def write_one(self, key: str, value: Any) -> bool:
        data = await self.read_all()
        existed = key in data
        if value is ABSENT:
            if not existed:
                return False
            del data[key]
        else:
            data[key] = value
        await self.write_all(data)
        return existed

    async def list_keys(self) -> List[str]:
        return list((await self.read_all()).keys())

    def stamps(self) -> Dict[str, Tuple[int, int]]:
        try:
            st = os.stat(self.path)
            return {os.path.basename(self.path): (st.st_mtime_ns, st.st_size)}
        except FileNotFoundError:
            return {}


class FolderStorage(StorageBackend):
    """
    One file per record, `<dir>/<quoted id><extension>`, holding the bare JSON
    value. Bulk reads and writes fan out per record with no atomicity across
    records: a failure part way leaves the records written so far in place.
    """
    kind = "folder"

    def __init__(self, path: str, *, extension: str = ".json", indent: Optional[int] = 2,
                 progress: Optional[Progress] = None) -> None:
        super().__init__(path, indent=indent, progress=progress)
        self.extension = extension

    def _file(self, key: str) -> str:
        return os.path.join(self.path, id_to_filename(key, self.extension))

    def _list_sync(self) -> List[str]:
        keys = []
        for name in sorted(os.listdir(self.path)):
            key = filename_to_id(name, self.extension)
            if key is not None:
                keys.append(key)
        return keys

    def _read_one_sync(self, key: str) -> Any:
        filename = self._file(key)
        try:
            with open(filename, "r", encoding="utf-8") as f:
                text = f.read()
        except FileNotFoundError:
            return ABSENT
        return loads(text, filename)

    def _write_one_sync(self, key: str, value: Any) -> bool:
        filename = self._file(key)
        if value is ABSENT:
            try:
                os.remove(filename)
            except FileNotFoundError:
                return False
            logger.debug(f"Removed {filename}")
            return True
        existed = os.path.exists(filename)
        _atomic_write(filename, dumps(value, self.indent))
        logger.debug(f"Wrote {filename}")
        return existed

    async def _read_keys(self, keys: List[str], phase: str) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        total = len(keys)
        for i, key in enumerate(keys, 1):
            value = await self._run(self._read_one_sync, key)
            # Removed between listing and reading
            if value is not ABSENT:
                out[key] = value
            self._progress.step(phase, i, total)
        return out

    async def read_all(self) -> Dict[str, Any]:
        return await self._read_keys(await self.list_keys(), "load.records")

    async def read_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        return await self._read_keys(list(keys), "load.records")

    async def read_one(self, key: str) -> Any:
        value = await self._run(self._read_one_sync, key)
        return None if value is ABSENT else value

    async def write_one(self, key: str, value: Any) -> bool:
        return await self._run(self._write_one_sync, key, value)

    async def write_all(self, data: Dict[str, Any]) -> None:
        stale = [k for k in await self.list_keys() if k not in data]
        total = len(data) + len(stale)
        done = 0
        for key, value in data.items():
            await self.write_one(key, value)
            done += 1
            self._progress.step("write.records", done, total)
        for key in stale:
            await self.write_one(key, ABSENT)
            done += 1
            self._progress.step("write.records", done, total)

    async def list_keys(self) -> List[str]:
        return await self._run(self._list_sync)

    def stamps(self) -> Dict[str, Tuple[int, int]]:
        out: Dict[str, Tuple[int, int]] = {}
        try:
            entries = list(os.scandir(self.path))
        except FileNotFoundError:
            return out
        for entry in entries:
            if entry.name.endswith(self.extension):
                try:
                    st = entry.stat()
                    out[entry.name] = (st.st_mtime_ns, st.st_size)
                except FileNotFoundError:
                    continue
        return out
