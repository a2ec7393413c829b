import pytest
from sqlalchemy import select
from bookwise import models
from bookwise.inventory import (
    check_availability,
    decrement_available,
    increment_available,
    BookNotFound,
    OutOfStock,
)

pytestmark = pytest.mark.asyncio

async def _copies(session, book_id):
    r = await session.execute(select(models.Book.available_copies).where(models.Book.id == book_id))
    return r.scalar_one()

async def test_check_availability(session, make_book):
    b = await make_book(total_copies=2)
    a = await check_availability(session, b.id)
    assert a.available is True
    assert a.copies_left == 2
    empty = await make_book(title="Refactoring", author="Martin Fowler", total_copies=0)
    a2 = await check_availability(session, empty.id)
    assert a2.available is False
    assert a2.copies_left == 0

async def test_check_availability_unknown_book(session):
    with pytest.raises(BookNotFound):
        await check_availability(session, "missing")

async def test_decrement_until_out_of_stock(session, make_book):
    b = await make_book(total_copies=2)
    assert await decrement_available(session, b.id) == 1
    assert await decrement_available(session, b.id) == 0
    with pytest.raises(OutOfStock) as exc:
        await decrement_available(session, b.id)
    assert exc.value.code == "OUT_OF_STOCK"
    await session.commit()
    assert await _copies(session, b.id) == 0

async def test_decrement_unknown_book(session):
    with pytest.raises(BookNotFound):
        await decrement_available(session, "missing")

async def test_increment_is_clamped_at_total(session, make_book):
    b = await make_book(total_copies=2, available_copies=1)
    assert await increment_available(session, b.id) == 2
    # already full: no change, no error
    assert await increment_available(session, b.id) == 2
    await session.commit()
    assert await _copies(session, b.id) == 2

async def test_increment_unknown_book(session):
    with pytest.raises(BookNotFound):
        await increment_available(session, "missing")

async def test_decrement_rolls_back_with_caller_transaction(session, make_book):
    b = await make_book(total_copies=1)
    book_id = b.id
    await decrement_available(session, book_id)
    await session.rollback()
    assert await _copies(session, book_id) == 1
