"""Inventory ledger: the copy counters on ``books``.

Both mutations are single conditional UPDATE statements, so two requests
racing for the last copy cannot both win. They run inside the caller's
transaction and never commit on their own.
"""
from __future__ import annotations
import logging
from typing import NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from bookwise.models import Book

logger = logging.getLogger(__name__)

class InventoryError(Exception):
    code = "INVENTORY_ERROR"

    def __init__(self, book_id: str, message: str | None = None):
        self.book_id = book_id
        super().__init__(message or f"{self.code}: {book_id}")

class BookNotFound(InventoryError):
    code = "BOOK_NOT_FOUND"

class OutOfStock(InventoryError):
    code = "OUT_OF_STOCK"

class Availability(NamedTuple):
    available: bool
    copies_left: int

async def _copies(session: AsyncSession, book_id: str) -> tuple[int, int] | None:
    row = (await session.execute(
        select(Book.available_copies, Book.total_copies).where(Book.id == book_id)
    )).first()
    return (row.available_copies, row.total_copies) if row else None

async def check_availability(session: AsyncSession, book_id: str) -> Availability:
    counts = await _copies(session, book_id)
    if counts is None:
        raise BookNotFound(book_id)
    left = counts[0]
    return Availability(available=left > 0, copies_left=left)

async def decrement_available(session: AsyncSession, book_id: str) -> int:
    stmt = (
        update(Book)
        .where(Book.id == book_id, Book.available_copies > 0)
        .values(available_copies=Book.available_copies - 1)
        .returning(Book.available_copies)
        .execution_options(synchronize_session=False)
    )
    new_count = (await session.execute(stmt)).scalar_one_or_none()
    if new_count is None:
        if await _copies(session, book_id) is None:
            raise BookNotFound(book_id)
        raise OutOfStock(book_id)
    return new_count

async def increment_available(session: AsyncSession, book_id: str) -> int:
    stmt = (
        update(Book)
        .where(Book.id == book_id, Book.available_copies < Book.total_copies)
        .values(available_copies=Book.available_copies + 1)
        .returning(Book.available_copies)
        .execution_options(synchronize_session=False)
    )
    new_count = (await session.execute(stmt)).scalar_one_or_none()
    if new_count is not None:
        return new_count
    counts = await _copies(session, book_id)
    if counts is None:
        raise BookNotFound(book_id)
    logger.warning("available_copies already at total_copies for book %s (%s/%s); not incremented",
                   book_id, counts[0], counts[1])
    return counts[0]
