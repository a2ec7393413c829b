from __future__ import annotations
import logging
from typing import Optional, Dict, Any, Tuple
from datetime import date, timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, or_, update
from sqlalchemy.exc import IntegrityError

from bookwise import inventory
from bookwise.cache import Cache, CACHE_KEYS, CACHE_TTL, NULL_CACHE
from bookwise.config import settings
from bookwise.models import (
    Book, User, BorrowRecord, BorrowStatus, DisplayStatus, UserStatus,
)
from bookwise.worker.reminders import schedule_due_reminders, skip_pending_reminders

logger = logging.getLogger(__name__)

DEFAULT_LOAN_DAYS = settings.LOAN_PERIOD_DAYS
MAX_PAGE_SIZE = 100

def _ok(msg: str, **data):    return {"ok": True,  "message": msg, **({"data": data} if data else {})}
def _err(msg: str, code="", **data): return {"ok": False, "message": msg, "code": code, **({"data": data} if data else {})}

def late_by(due_date: date, returned_on: date) -> Tuple[bool, int]:
    days = (returned_on - due_date).days
    return (True, days) if days > 0 else (False, 0)

def compute_display_status(record: BorrowRecord, today: date | None = None) -> DisplayStatus:
    if record.return_date is not None or record.status == BorrowStatus.RETURNED:
        return DisplayStatus.RETURNED
    if record.due_date < (today or date.today()):
        return DisplayStatus.LATE_RETURN
    return DisplayStatus.BORROWED

def record_payload(record: BorrowRecord, today: date | None = None) -> Dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "book_id": record.book_id,
        "receipt_code": record.receipt_code,
        "borrow_date": record.borrow_date.isoformat(),
        "due_date": record.due_date.isoformat(),
        "return_date": record.return_date.isoformat() if record.return_date else None,
        "status": record.status.value,
        "display_status": compute_display_status(record, today).value,
    }

def user_payload(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "university_id": user.university_id,
    }

def book_payload(book: Book) -> Dict[str, Any]:
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "genre": book.genre,
        "available_copies": book.available_copies,
        "total_copies": book.total_copies,
    }

async def _open_record(session: AsyncSession, user_id: str, book_id: str) -> Optional[BorrowRecord]:
    r = await session.execute(
        select(BorrowRecord).where(and_(
            BorrowRecord.user_id == user_id,
            BorrowRecord.book_id == book_id,
            BorrowRecord.status == BorrowStatus.BORROWED,
        ))
    )
    return r.scalars().first()

async def _load_record(session: AsyncSession, record_id: str):
    r = await session.execute(
        select(BorrowRecord, Book, User)
        .join(Book, BorrowRecord.book_id == Book.id)
        .join(User, BorrowRecord.user_id == User.id)
        .where(BorrowRecord.id == record_id)
    )
    return r.first()

async def borrow_book(session: AsyncSession, *, user_id: Optional[str], book_id: Optional[str],
                      today: date | None = None, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    if not (user_id and book_id):
        return _err("Missing userId or bookId.", code="MISSING_FIELDS")
    today = today or date.today()
    book = await session.get(Book, book_id)
    if not book:
        return _err("Book not found.", code="BOOK_NOT_FOUND")
    user = await session.get(User, user_id)
    if not user:
        return _err("User not found.", code="USER_NOT_FOUND")
    if user.status != UserStatus.APPROVED:
        return _err("Your account has not been approved yet.", code="ACCOUNT_NOT_APPROVED")
    availability = await inventory.check_availability(session, book_id)
    if not availability.available:
        return _err("No copies available for this book.", code="OUT_OF_STOCK")
    if await _open_record(session, user_id, book_id):
        return _err("You have already borrowed this book.", code="ALREADY_BORROWED")

    record = BorrowRecord(
        user_id=user_id, book_id=book_id, borrow_date=today,
        due_date=today + timedelta(days=DEFAULT_LOAN_DAYS), status=BorrowStatus.BORROWED,
    )
    session.add(record)
    try:
        await session.flush()
        copies_left = await inventory.decrement_available(session, book_id)
        schedule_due_reminders(session, record)
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return _err("You have already borrowed this book.", code="ALREADY_BORROWED")
    except inventory.InventoryError as e:
        await session.rollback()
        msg = "No copies available for this book." if e.code == "OUT_OF_STOCK" else "Book not found."
        return _err(msg, code=e.code)
    except Exception:
        await session.rollback()
        raise
    await session.refresh(book)
    logger.info("borrow %s: user=%s book=%s copies_left=%s", record.id, user_id, book_id, copies_left)
    await cache.invalidate_borrows(book_id=book_id, user_id=user_id)
    return _ok(
        "Book borrowed successfully.",
        record=record_payload(record, today), user=user_payload(user), book=book_payload(book),
    )

async def return_book(session: AsyncSession, *, record_id: Optional[str],
                      today: date | None = None, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    if not record_id:
        return _err("Missing borrow record id.", code="MISSING_FIELDS")
    today = today or date.today()
    row = await _load_record(session, record_id)
    if not row:
        return _err("Borrow record not found.", code="RECORD_NOT_FOUND")
    record, book, user = row
    if record.status == BorrowStatus.RETURNED:
        return _err("Book already returned.", code="ALREADY_RETURNED")
    try:
        # the status guard makes a concurrent second return a no-op
        updated = (await session.execute(
            update(BorrowRecord)
            .where(BorrowRecord.id == record_id, BorrowRecord.status == BorrowStatus.BORROWED)
            .values(status=BorrowStatus.RETURNED, return_date=today)
            .returning(BorrowRecord.id)
            .execution_options(synchronize_session=False)
        )).scalar_one_or_none()
        if updated is None:
            await session.rollback()
            return _err("Book already returned.", code="ALREADY_RETURNED")
        await inventory.increment_available(session, book.id)
        await skip_pending_reminders(session, [record_id])
        await session.commit()
    except inventory.InventoryError as e:
        await session.rollback()
        return _err("Book not found.", code=e.code)
    except Exception:
        await session.rollback()
        raise
    await session.refresh(record)
    await session.refresh(book)
    is_late, days_late = late_by(record.due_date, record.return_date)
    logger.info("return %s: book=%s late=%s days_late=%s", record_id, book.id, is_late, days_late)
    await cache.invalidate_borrows(book_id=book.id, user_id=user.id)
    return _ok(
        "Book returned successfully.",
        record=record_payload(record, today), user=user_payload(user), book=book_payload(book),
        is_late=is_late, days_late=days_late,
    )

async def set_borrow_status(session: AsyncSession, *, record_id: str, status: BorrowStatus | str,
                            today: date | None = None, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    """Admin override. Goes through ``return_book``/``borrow_book`` so the
    inventory counters move exactly as for a user-initiated transition."""
    try:
        status = BorrowStatus(status)
    except ValueError:
        return _err(f"Invalid status: {status}.", code="INVALID_STATUS")
    if status == BorrowStatus.RETURNED:
        return await return_book(session, record_id=record_id, today=today, cache=cache)
    row = await _load_record(session, record_id)
    if not row:
        return _err("Borrow record not found.", code="RECORD_NOT_FOUND")
    record = row[0]
    if record.status == BorrowStatus.BORROWED:
        return _err("Book is already borrowed.", code="ALREADY_BORROWED")
    # a returned loan is never reopened; the book is lent again as a new loan
    return await borrow_book(session, user_id=record.user_id, book_id=record.book_id, today=today, cache=cache)

async def get_borrow_record(session: AsyncSession, *, record_id: str, today: date | None = None) -> Dict[str, Any]:
    row = await _load_record(session, record_id)
    if not row:
        return _err("Borrow record not found.", code="RECORD_NOT_FOUND")
    record, book, user = row
    return _ok("Borrow record.", record=record_payload(record, today), user=user_payload(user), book=book_payload(book))

async def list_borrow_records(session: AsyncSession, *, user_id: Optional[str] = None, status: Optional[str] = None,
                              search: Optional[str] = None, page: int = 1, limit: int = 20,
                              today: date | None = None, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    if status:
        try:
            status = BorrowStatus(status.upper()).value
        except ValueError:
            return _err(f"Invalid status: {status}.", code="INVALID_STATUS")
    today = today or date.today()
    conditions = []
    if user_id:
        conditions.append(BorrowRecord.user_id == user_id)
    if status:
        conditions.append(BorrowRecord.status == BorrowStatus(status))
    if search:
        term = f"%{search.strip()}%"
        conditions.append(or_(Book.title.ilike(term), Book.author.ilike(term),
                              User.full_name.ilike(term), User.email.ilike(term)))

    async def fetch():
        def joined(stmt):
            return (stmt.join(Book, BorrowRecord.book_id == Book.id)
                        .join(User, BorrowRecord.user_id == User.id)
                        .where(*conditions))
        total = (await session.execute(joined(select(func.count(BorrowRecord.id)).select_from(BorrowRecord)))).scalar_one()
        rows = (await session.execute(
            joined(select(BorrowRecord, Book, User).select_from(BorrowRecord)).order_by(BorrowRecord.borrow_date.desc(), BorrowRecord.created_at.desc())
            .limit(limit).offset((page - 1) * limit)
        )).all()
        return {
            "items": [
                {**record_payload(r, today), "user": user_payload(u), "book": book_payload(b)}
                for r, b, u in rows
            ],
            "pagination": {"page": page, "limit": limit, "total": total,
                           "total_pages": (total + limit - 1) // limit},
        }

    key = f"{CACHE_KEYS.BORROW.RECORDS}:page:{page}:limit:{limit}:user:{user_id}:status:{status}:q:{search}:d:{today}"
    data = await cache.cache_or_fetch(key, fetch, CACHE_TTL.MEDIUM)
    return _ok("Borrow records.", **data)
