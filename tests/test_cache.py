import asyncio
import errno
import json
import os
import pytest
from json_crud import JsonCrudError, StorageError, open_db
from json_crud.cache import CacheState

def db_location(tmp_path, kind):
    if kind == "folder":
        return str(tmp_path / "db") + os.sep
    return str(tmp_path / "db.json")

def failing_writes(db, monkeypatch):
    async def boom(*args, **kwargs):
        raise StorageError("disk full", OSError(errno.ENOSPC, "No space left on device"))
    monkeypatch.setattr(db._backend, "write_all", boom)
    monkeypatch.setattr(db._backend, "write_one", boom)

@pytest.mark.parametrize("kind", ["file", "folder"])
@pytest.mark.parametrize("options", [
    {"cache_keys": True},
    {"cache_values": True},
    {"cache_keys": True, "cache_data": True},
])
def test_cache_follows_own_writes(tmp_path, kind, options):
    async def run():
        async with await open_db(db_location(tmp_path, kind), **options) as db:
            await db.create("a", {"v": 1}, "b", {"v": 2})
            await db.update("a", {"w": 3})
            await db.delete("b")
            await db.create(True, "c", [1])
            assert sorted(await db.keys()) == ["a", "c"]
            assert await db.read() == {"a": {"v": 1, "w": 3}, "c": [1]}
            assert await db.has("a") and not await db.has("b")

        # A fresh uncached instance sees the same data
        async with await open_db(db_location(tmp_path, kind)) as db:
            assert await db.read() == {"a": {"v": 1, "w": 3}, "c": [1]}

    asyncio.run(run())

@pytest.mark.parametrize("kind", ["file", "folder"])
def test_cached_keys_drive_uniqueness(tmp_path, kind):
    async def run():
        db = await open_db(db_location(tmp_path, kind), cache_keys=True)
        await db.create("a", 1)
        # Written behind the instance's back: not seen without listen
        other = await open_db(db_location(tmp_path, kind))
        await other.create("b", 2)
        other.close()
        assert not await db.has("b")
        assert await db.read("b", True) is None
        db.close()

        db = await open_db(db_location(tmp_path, kind), cache_keys=True)
        assert await db.has("b")
        db.close()

    asyncio.run(run())

@pytest.mark.parametrize("kind", ["file", "folder"])
def test_failed_write_leaves_cache_untouched(tmp_path, kind, monkeypatch):
    async def run():
        db = await open_db(db_location(tmp_path, kind), cache_values=True)
        await db.create("a", {"v": 1})
        failing_writes(db, monkeypatch)

        with pytest.raises(StorageError) as exc:
            await db.create("b", {"v": 2})
        assert exc.value.errno == errno.ENOSPC
        with pytest.raises(StorageError):
            await db.update("a", {"v": 9})
        with pytest.raises(StorageError):
            await db.delete(True)

        assert await db.read() == {"a": {"v": 1}}
        assert await db.keys() == ["a"]
        db.close()

    asyncio.run(run())

def test_folder_batch_failure_keeps_written_records(tmp_path, monkeypatch):
    async def run():
        db = await open_db(db_location(tmp_path, "folder"), cache_values=True)
        backend = db._backend
        real_write_one = backend.write_one

        async def fail_on_c(key, value):
            if key == "c":
                raise StorageError("cannot write c", OSError(errno.EIO, "I/O error"))
            return await real_write_one(key, value)

        monkeypatch.setattr(backend, "write_one", fail_on_c)
        with pytest.raises(StorageError):
            await db.create("a", 1, "b", 2, "c", 3, "d", 4)
        # Records before the failure landed, and the cache mirrors exactly those
        assert await db.read() == {"a": 1, "b": 2}
        assert sorted(os.listdir(tmp_path / "db")) == ["a.json", "b.json"]
        db.close()

    asyncio.run(run())

def test_mixed_cache_configurations_share_storage(tmp_path):
    path = db_location(tmp_path, "file")

    async def run():
        plain = await open_db(path)
        keyed = await open_db(path, cache_keys=True)
        await keyed.create("k", 1)
        await plain.create("p", 2)
        assert await plain.read() == {"k": 1, "p": 2}
        # keyed only knows its own writes, values are still read from disk
        assert await keyed.keys() == ["k"]
        assert await keyed.read("k", True) == 1
        plain.close()
        keyed.close()

    asyncio.run(run())
    with open(path, encoding="utf-8") as f:
        assert json.load(f) == {"k": 1, "p": 2}

def test_value_reads_need_value_caching():
    keys_only = CacheState(keys=True)
    keys_only.load(["a"])
    assert keys_only.has("a") is True
    with pytest.raises(JsonCrudError):
        keys_only.snapshot()
    with pytest.raises(JsonCrudError):
        keys_only.get("a")

    full = CacheState(values=True)
    full.load(["a"], {"a": {"v": [1]}})
    got = full.get("a")
    got["v"].append(2)
    assert full.snapshot() == {"a": {"v": [1]}}
