import asyncio
import pytest
from datetime import date
from sqlalchemy import select, func
from bookwise import models
from bookwise.actions import borrow_book, return_book

pytestmark = pytest.mark.asyncio

TODAY = date(2024, 3, 1)

async def _borrow_in_own_session(session_factory, user_id, book_id):
    async with session_factory() as s:
        return await borrow_book(s, user_id=user_id, book_id=book_id, today=TODAY)

async def _return_in_own_session(session_factory, record_id):
    async with session_factory() as s:
        return await return_book(s, record_id=record_id, today=TODAY)

async def _state(session_factory, book_id):
    async with session_factory() as s:
        available = (await s.execute(
            select(models.Book.available_copies).where(models.Book.id == book_id))).scalar_one()
        open_loans = (await s.execute(
            select(func.count(models.BorrowRecord.id)).where(
                models.BorrowRecord.book_id == book_id,
                models.BorrowRecord.status == models.BorrowStatus.BORROWED,
            ))).scalar_one()
    return available, open_loans

async def test_same_user_same_book_borrowed_once(session_factory, make_book, make_user):
    b = await make_book(total_copies=10)
    u = await make_user()
    results = await asyncio.gather(*[_borrow_in_own_session(session_factory, u.id, b.id) for _ in range(5)])
    assert sum(r["ok"] for r in results) == 1
    assert {r["code"] for r in results if not r["ok"]} == {"ALREADY_BORROWED"}
    assert await _state(session_factory, b.id) == (9, 1)

async def test_last_copy_goes_to_one_borrower(session_factory, make_book, make_user):
    b = await make_book(total_copies=1)
    users = [await make_user(full_name=f"Reader {i}") for i in range(4)]
    results = await asyncio.gather(*[_borrow_in_own_session(session_factory, u.id, b.id) for u in users])
    assert sum(r["ok"] for r in results) == 1
    assert {r["code"] for r in results if not r["ok"]} == {"OUT_OF_STOCK"}
    assert await _state(session_factory, b.id) == (0, 1)

async def test_concurrent_returns_restock_once(session_factory, session, make_book, make_user):
    b = await make_book(total_copies=2)
    u = await make_user()
    r = await borrow_book(session, user_id=u.id, book_id=b.id, today=TODAY)
    record_id = r["data"]["record"]["id"]
    results = await asyncio.gather(*[_return_in_own_session(session_factory, record_id) for _ in range(3)])
    assert sum(r["ok"] for r in results) == 1
    assert {r["code"] for r in results if not r["ok"]} == {"ALREADY_RETURNED"}
    assert await _state(session_factory, b.id) == (2, 0)
