#!/usr/bin/env python3
# Example usage of json_crud: one JSON file holding every record

import asyncio
import logging

from json_crud import DuplicateKeyError, open_db


async def main() -> None:
    # Created as an empty JSON object when missing; options may use the camelCase names too
    db = await open_db("demo.json", {"idField": "id", "cacheValues": True})

    # Objects carry their id under the configured id field
    ids = await db.create(
        {"id": "alice", "name": "Alice", "age": 33, "flags": {"active": True}},
        {"id": "bob", "name": "Bob", "age": 17, "flags": {"active": True}},
    )
    print("Created:", ids)

    # Same id again fails unless replace is asked for
    try:
        await db.create({"id": "alice", "name": "Someone else"})
    except DuplicateKeyError as e:
        print("Refused:", e)

    # Fetch it back by id
    print("Loaded:", await db.read("alice", expect_single=True))

    # Filter on plain fields with comparison operators
    adults = await db.read({"age": {"$gte": 18}})
    print("Adults:", sorted(adults))

    # Nested objects are merged, other values replaced
    await db.update("bob", {"age": 18, "flags": {"verified": True}})
    print("Bob now:", await db.read("bob", True))

    deleted = await db.delete(["bob", "nobody"])
    print("Deleted:", deleted)

    db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
