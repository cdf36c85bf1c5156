import asyncio
import json
import os
import pytest
from json_crud import (
    AmbiguousSingleReadError,
    DuplicateKeyError,
    InvalidArgumentError,
    InvalidFilterError,
    UnknownOperatorError,
    open_db,
)

BACKENDS = ["file", "folder"]

def db_location(tmp_path, kind):
    if kind == "folder":
        return str(tmp_path / "db") + os.sep
    return str(tmp_path / "db.json")

def run_with_db(tmp_path, kind, body, **options):
    async def run():
        async with await open_db(db_location(tmp_path, kind), **options) as db:
            return await body(db)
    return asyncio.run(run())

@pytest.mark.parametrize("kind", BACKENDS)
def test_round_trip(tmp_path, kind):
    values = {"s": "text", "n": 12.5, "nested": {"a": [1, {"b": None}]}, "flag": False}

    async def body(db):
        assert await db.create("obj", values, "num", 7, "list", [1, 2]) == ["obj", "num", "list"]
        assert await db.read("obj", True) == values
        assert await db.read("num", True) == 7
        assert await db.read("list", True) == [1, 2]
        assert await db.read("missing", True) is None
        assert await db.read(["num", "missing", "list"]) == {"num": 7, "list": [1, 2]}
        assert await db.has("obj") and not await db.has("missing")

    run_with_db(tmp_path, kind, body)

@pytest.mark.parametrize("kind", BACKENDS)
def test_uniqueness_and_replace(tmp_path, kind):
    async def body(db):
        await db.create("a", 1)
        with pytest.raises(DuplicateKeyError) as exc:
            await db.create("b", 2, "a", 3)
        assert exc.value.key == "a"
        # The failing call wrote nothing
        assert await db.read() == {"a": 1}

        assert await db.create(True, "a", 3) == ["a"]
        assert await db.read("a", True) == 3
        await db.create("a", 4, replace=True)
        assert await db.read("a", True) == 4

        with pytest.raises(DuplicateKeyError):
            await db.create("c", 1, "c", 2)
        with pytest.raises(InvalidArgumentError):
            await db.create(True, "a", 5, replace=True)

    run_with_db(tmp_path, kind, body)

@pytest.mark.parametrize("kind", BACKENDS)
def test_update_merges(tmp_path, kind):
    async def body(db):
        await db.create("u", {"name": "Ann", "tags": ["a", "b"], "profile": {"age": 30, "city": "Oslo"}})
        patch = {"tags": ["c"], "profile": {"age": 31}}
        assert await db.update("u", patch) == ["u"]
        once = await db.read("u", True)
        assert once == {"name": "Ann", "tags": ["c"], "profile": {"age": 31, "city": "Oslo"}}
        await db.update("u", patch)
        assert await db.read("u", True) == once

        # No prior value: stored as given
        await db.update("new", {"x": 1})
        assert await db.read("new", True) == {"x": 1}
        # Non-object values replace
        await db.update("u", 5)
        assert await db.read("u", True) == 5
        # Repeated ids merge in call order
        await db.update("m", {"a": 1}, "m", {"b": 2})
        assert await db.read("m", True) == {"a": 1, "b": 2}

    run_with_db(tmp_path, kind, body)

@pytest.mark.parametrize("kind", BACKENDS)
def test_delete_reporting(tmp_path, kind):
    async def body(db):
        await db.create("a", 1, "b", 2, "c", {"v": 3}, "d", {"v": 4})
        assert await db.delete(["a", "zz", "a"]) == ["a"]
        assert await db.delete(["zz"]) == []
        assert await db.delete({"v": {"$gt": 3}}) == ["d"]
        assert await db.delete({"v": 100}) == []
        assert sorted(await db.delete(True)) == ["b", "c"]
        assert await db.read() == {}
        assert await db.delete(True) == []

    run_with_db(tmp_path, kind, body)

def test_single_key_delete_returns_bool_on_file(tmp_path):
    async def body(db):
        await db.create("a", 1)
        assert await db.delete("a") is True
        assert await db.delete("a") is False

    run_with_db(tmp_path, "file", body)

def test_single_key_delete_returns_list_on_folder(tmp_path):
    async def body(db):
        await db.create("a", 1)
        assert await db.delete("a") == ["a"]
        assert await db.delete("a") == []

    run_with_db(tmp_path, "folder", body)

@pytest.mark.parametrize("kind", BACKENDS)
def test_invalid_filters(tmp_path, kind):
    async def body(db):
        await db.create("a", 1)
        for bad in (None, False, 3.5j, object()):
            with pytest.raises(InvalidFilterError):
                await db.delete(bad)
        with pytest.raises(InvalidFilterError):
            await db.read(["a", None])
        with pytest.raises(InvalidFilterError):
            await db.read(True)
        with pytest.raises(UnknownOperatorError):
            await db.read({"a": {"$regex": "x"}})
        with pytest.raises(UnknownOperatorError):
            await db.delete({"a": {"$regex": "x"}})
        assert await db.read() == {"a": 1}

    run_with_db(tmp_path, kind, body)

@pytest.mark.parametrize("kind", BACKENDS)
def test_argument_shapes(tmp_path, kind):
    async def body(db):
        with pytest.raises(InvalidArgumentError):
            await db.create()
        with pytest.raises(InvalidArgumentError):
            await db.create([])
        with pytest.raises(InvalidArgumentError):
            await db.create("only-a-key")
        with pytest.raises(InvalidArgumentError):
            await db.create("a", 1, "b")
        with pytest.raises(InvalidArgumentError):
            await db.create(None, 1)
        with pytest.raises(InvalidArgumentError):
            await db.create(["a", 1, None, 3])
        # Objects need id_field
        with pytest.raises(InvalidArgumentError):
            await db.create({"id": "a"})
        with pytest.raises(InvalidArgumentError):
            await db.update(True, "a", 1)
        assert await db.read() == {}

        assert await db.create(["a", 1, "b", 2]) == ["a", "b"]
        assert await db.read() == {"a": 1, "b": 2}

    run_with_db(tmp_path, kind, body)

@pytest.mark.parametrize("kind", BACKENDS)
def test_id_field_mode(tmp_path, kind):
    async def body(db):
        ids = await db.create({"id": "u1", "name": "A"}, {"id": "u2", "name": "B"})
        assert ids == ["u1", "u2"]
        assert await db.read("u1", True) == {"id": "u1", "name": "A"}
        await db.create([{"id": "u3", "name": "C"}])
        await db.update({"id": "u2", "age": 40})
        assert await db.read("u2", True) == {"id": "u2", "name": "B", "age": 40}
        with pytest.raises(InvalidArgumentError):
            await db.create({"id": "u4"}, "u5", {"id": "u5"})
        with pytest.raises(InvalidArgumentError):
            await db.create({"name": "no id"})
        # Pairs still work with id_field set
        await db.create("u6", {"name": "F"})
        assert sorted(await db.keys()) == ["u1", "u2", "u3", "u6"]

    run_with_db(tmp_path, kind, body, id_field="id")

@pytest.mark.parametrize("kind", BACKENDS)
def test_numeric_ids(tmp_path, kind):
    async def body(db):
        assert await db.create(1, "one", 2.0, "two", 2.5, "two and a half") == [1, 2.0, 2.5]
        # Keys are stored (and returned) in their string form
        assert await db.read() == {"1": "one", "2": "two", "2.5": "two and a half"}
        assert await db.read(1, True) == "one"
        assert await db.read("2", True) == "two"
        with pytest.raises(DuplicateKeyError):
            await db.create("1", "uno")
        assert await db.has(2)

    run_with_db(tmp_path, kind, body)

@pytest.mark.parametrize("kind", BACKENDS)
def test_expect_single(tmp_path, kind):
    async def body(db):
        await db.create("a", {"g": 1}, "b", {"g": 1}, "c", {"g": 2})
        with pytest.raises(AmbiguousSingleReadError):
            await db.read(["a", "b"], True)
        with pytest.raises(AmbiguousSingleReadError) as exc:
            await db.read({"g": 1}, expect_single=True)
        assert sorted(exc.value.keys) == ["a", "b"]
        with pytest.raises(AmbiguousSingleReadError):
            await db.read(None, True)
        assert await db.read({"g": 2}, True) == {"g": 2}
        assert await db.read({"g": 3}, True) is None
        assert await db.read(["c"], True) == {"g": 2}
        # No ids: nothing to return, not ambiguous
        assert await db.read([], True) is None
        assert await db.read([]) == {}

    run_with_db(tmp_path, kind, body)

@pytest.mark.parametrize("kind", BACKENDS)
def test_reads_return_copies(tmp_path, kind):
    async def body(db):
        await db.create("a", {"list": [1]})
        got = await db.read("a", True)
        got["list"].append(2)
        assert await db.read("a", True) == {"list": [1]}

    run_with_db(tmp_path, kind, body)
    cached = tmp_path / "cached"
    cached.mkdir()
    run_with_db(cached, kind, body, cache_values=True)

def test_backend_equivalence(tmp_path):
    async def scenario(db):
        await db.create("a", {"v": 1, "t": ["x"]}, "b", {"v": 2}, "c", 3)
        await db.update("a", {"w": {"deep": True}}, "c", {"now": "object"})
        await db.create(True, "b", {"v": 20})
        await db.delete({"v": {"$gte": 20}})
        await db.create("d", {"t": ["y", "x"]})
        await db.delete(["zz"])
        return await db.read(), await db.read({"t": "x"})

    file_result = run_with_db(tmp_path, "file", scenario)
    folder_result = run_with_db(tmp_path, "folder", scenario)
    assert file_result == folder_result
    assert file_result[1] == {"a": {"v": 1, "t": ["x"], "w": {"deep": True}}, "d": {"t": ["y", "x"]}}

def test_on_disk_layout(tmp_path):
    async def body(db):
        await db.create("a/b", {"v": 1}, "plain", [1])
        return db.path

    file_path = run_with_db(tmp_path, "file", body)
    with open(file_path, encoding="utf-8") as f:
        text = f.read()
    assert json.loads(text) == {"a/b": {"v": 1}, "plain": [1]}
    # Pretty-printed
    assert "\n  " in text

    folder_path = run_with_db(tmp_path, "folder", body)
    assert sorted(os.listdir(folder_path)) == ["a%2Fb.json", "plain.json"]
    with open(os.path.join(folder_path, "plain.json"), encoding="utf-8") as f:
        assert json.load(f) == [1]
