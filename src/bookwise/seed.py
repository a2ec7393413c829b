"""Load a JSON list of books into the catalog.

    python -m bookwise.seed books.json
"""
import asyncio
import json
import logging
import sys

from bookwise.catalog import seed_books
from bookwise.db import SessionLocal, init_db
from bookwise.deps import get_cache

logger = logging.getLogger(__name__)

async def main(path: str) -> int:
    with open(path, "r", encoding="utf-8") as f:
        items = json.load(f)
    if not isinstance(items, list):
        logger.error("%s must contain a JSON list of books", path)
        return 1
    await init_db()
    async with SessionLocal() as session:
        r = await seed_books(session, items, cache=get_cache())
    logger.info("%s created=%s skipped=%s", r["message"], r["data"]["created"], r["data"]["skipped"])
    return 0

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    if len(sys.argv) != 2:
        print("usage: python -m bookwise.seed BOOKS.json")
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1])))
