#!/usr/bin/env python3
# Example: a folder database (one JSON file per record) queried with filters
# - Opens (creates) examples/data/posts/ as a folder database
# - Inserts posts with tags and categories
# - Runs implicit AND, $or, $not and $in filters, then a filtered delete
# - Prints progress events and results with rich

import asyncio
import os

from rich.console import Console
from rich.table import Table

from json_crud import Field, Not, Or, open_db

console = Console()

def progress_printer(evt):
    if evt["pct"] in (0, 100):
        console.print(f"[dim][progress] {evt['phase']} {evt['pct']}% {evt.get('msg', '')}[/dim]")

def show(title, records):
    table = Table(title=title)
    table.add_column("id")
    table.add_column("category")
    table.add_column("tags")
    for key, rec in sorted(records.items()):
        table.add_row(key, rec.get("category", ""), ", ".join(rec.get("tags", [])))
    console.print(table)

async def main() -> None:
    path = os.path.join(os.path.dirname(__file__), "data", "posts") + os.sep
    os.makedirs(os.path.dirname(os.path.dirname(path)), exist_ok=True)

    async with await open_db(path, on_progress=progress_printer, cache_keys=True) as db:
        await db.delete(True)
        await db.create(
            "post-a", {"category": "news", "tags": ["red", "blue"], "views": 120},
            "post-b", {"category": "tech", "tags": ["navy"], "views": 15},
            "post-c", {"category": "life", "tags": ["old"], "views": 0},
            "post-d", {"category": "news", "tags": ["blue"], "views": 47},
        )

        show("news with tag blue", await db.read({"category": "news", "tags": "blue"}))
        show("tech or more than 100 views", await db.read({"$or": [{"category": "tech"}, {"views": {"$gt": 100}}]}))
        show("not news", await db.read({"$not": {"category": "news"}}))
        show("life or tech", await db.read({"category": {"$in": ["life", "tech"]}}))

        # Filters can also be built as node trees
        quiet = Or((Field("views", "$lt", 50), Not(Field("tags", "$eq", "red"))))
        show("fewer than 50 views or not red", await db.read(quiet))

        removed = await db.delete({"tags": "old"})
        console.print(f"Removed: {removed}")
        console.print(f"Remaining ids: {await db.keys()}")

if __name__ == "__main__":
    asyncio.run(main())
