from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from bookwise.accounts import user_out
from bookwise.actions import _ok, book_payload, record_payload, user_payload
from bookwise.catalog import book_out
from bookwise.cache import Cache, CACHE_KEYS, CACHE_TTL, NULL_CACHE
from bookwise.models import Book, BorrowRecord, BorrowStatus, User, UserStatus

async def _count(session: AsyncSession, stmt) -> int:
    return int((await session.execute(stmt)).scalar_one() or 0)

async def dashboard_stats(session: AsyncSession, *, today: date | None = None, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    today = today or date.today()
    month_start = today.replace(day=1)
    month_start_dt = datetime(month_start.year, month_start.month, 1)

    async def fetch():
        return {
            "total_users": await _count(session, select(func.count(User.id))),
            "total_books": await _count(session, select(func.count(Book.id))),
            "total_borrowed_books": await _count(
                session, select(func.count(BorrowRecord.id)).where(BorrowRecord.status == BorrowStatus.BORROWED)),
            "pending_requests": await _count(
                session, select(func.count(User.id)).where(User.status == UserStatus.PENDING)),
            "new_users_this_month": await _count(
                session, select(func.count(User.id)).where(User.created_at >= month_start_dt)),
            "new_books_this_month": await _count(
                session, select(func.count(Book.id)).where(Book.created_at >= month_start_dt)),
            "borrows_this_month": await _count(
                session, select(func.count(BorrowRecord.id)).where(BorrowRecord.borrow_date >= month_start)),
            "available_books": await _count(session, select(func.coalesce(func.sum(Book.available_copies), 0))),
        }

    data = await cache.cache_or_fetch(f"{CACHE_KEYS.ANALYTICS.DASHBOARD}:{today}", fetch, CACHE_TTL.SHORT)
    return _ok("Dashboard stats.", **data)

async def trend_data(session: AsyncSession, *, days: int = 30, today: date | None = None,
                     cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    today = today or date.today()
    days = min(max(days, 1), 365)
    start = today - timedelta(days=days - 1)

    async def fetch():
        borrowed = dict((await session.execute(
            select(BorrowRecord.borrow_date, func.count(BorrowRecord.id))
            .where(BorrowRecord.borrow_date >= start)
            .group_by(BorrowRecord.borrow_date)
        )).all())
        returned = dict((await session.execute(
            select(BorrowRecord.return_date, func.count(BorrowRecord.id))
            .where(BorrowRecord.status == BorrowStatus.RETURNED, BorrowRecord.return_date >= start)
            .group_by(BorrowRecord.return_date)
        )).all())
        points: List[Dict[str, Any]] = []
        for i in range(days):
            d = start + timedelta(days=i)
            points.append({"date": d.isoformat(), "borrowed": borrowed.get(d, 0), "returned": returned.get(d, 0)})
        return points

    points = await cache.cache_or_fetch(f"{CACHE_KEYS.ANALYTICS.TRENDS}:{days}:{today}", fetch, CACHE_TTL.SHORT)
    return _ok("Trend data.", items=points)

async def top_borrowed_books(session: AsyncSession, *, limit: int = 5, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    limit = min(max(limit, 1), 50)

    async def fetch():
        n = func.count(BorrowRecord.id).label("borrow_count")
        rows = (await session.execute(
            select(Book.id, Book.title, Book.author, n)
            .join(BorrowRecord, BorrowRecord.book_id == Book.id)
            .group_by(Book.id, Book.title, Book.author)
            .order_by(n.desc(), Book.title)
            .limit(limit)
        )).all()
        return [{"book_id": r.id, "title": r.title, "author": r.author, "borrow_count": int(r.borrow_count)} for r in rows]

    items = await cache.cache_or_fetch(f"{CACHE_KEYS.ANALYTICS.TOP_BOOKS}:{limit}", fetch, CACHE_TTL.MEDIUM)
    return _ok("Top borrowed books.", items=items)

async def recent_activity(session: AsyncSession, *, borrows: int = 3, books: int = 6, accounts: int = 6,
                          cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    """Admin dashboard feed: open loans, newest books and pending account
    requests, each newest first."""
    borrows, books, accounts = (min(max(n, 1), 50) for n in (borrows, books, accounts))

    async def fetch():
        loans = (await session.execute(
            select(BorrowRecord, Book, User)
            .join(Book, BorrowRecord.book_id == Book.id)
            .join(User, BorrowRecord.user_id == User.id)
            .where(BorrowRecord.status == BorrowStatus.BORROWED)
            .order_by(BorrowRecord.borrow_date.desc(), BorrowRecord.created_at.desc())
            .limit(borrows)
        )).all()
        new_books = (await session.execute(
            select(Book).order_by(Book.created_at.desc(), Book.title).limit(books)
        )).scalars().all()
        pending = (await session.execute(
            select(User).where(User.status == UserStatus.PENDING)
            .order_by(User.created_at.desc(), User.full_name).limit(accounts)
        )).scalars().all()
        return {
            "borrow_requests": [
                {**record_payload(r), "user": user_payload(u), "book": book_payload(b)} for r, b, u in loans
            ],
            "recent_books": [book_out(b) for b in new_books],
            "account_requests": [user_out(u) for u in pending],
        }

    key = f"{CACHE_KEYS.ANALYTICS.RECENT}:{borrows}:{books}:{accounts}"
    data = await cache.cache_or_fetch(key, fetch, CACHE_TTL.SHORT)
    return _ok("Recent activity.", **data)
