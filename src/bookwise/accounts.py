from __future__ import annotations
import logging
from typing import Optional, Dict, Any

import bcrypt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, or_, cast, String

from bookwise import inventory
from bookwise.actions import _ok, _err, record_payload, book_payload
from bookwise.cache import Cache, CACHE_KEYS, CACHE_TTL, NULL_CACHE
from bookwise.models import (
    Book, User, UserRole, UserStatus, BorrowRecord, BorrowStatus, ScheduledReminder,
)

logger = logging.getLogger(__name__)

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False

def user_out(u: User, books_borrowed: int | None = None) -> Dict[str, Any]:
    d = {
        "id": u.id,
        "full_name": u.full_name,
        "email": u.email,
        "university_id": u.university_id,
        "university_card": u.university_card,
        "role": u.role.value,
        "status": u.status.value,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }
    if books_borrowed is not None:
        d["books_borrowed"] = books_borrowed
    return d

async def register_user(session: AsyncSession, *, full_name: str, email: str, university_id: int, password: str,
                        university_card: Optional[str] = None, admin_created: bool = False,
                        cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    if not (full_name and email and university_id and password):
        return _err("Missing account data (full_name, email, university_id, password).", code="MISSING_FIELDS")
    email_norm = email.strip().lower()
    if (await session.execute(select(User.id).where(User.email == email_norm))).first():
        return _err("An account with this email already exists.", code="EMAIL_EXISTS")
    if (await session.execute(select(User.id).where(User.university_id == university_id))).first():
        return _err("An account with this university id already exists.", code="UNIVERSITY_ID_EXISTS")
    u = User(
        full_name=full_name.strip(), email=email_norm, university_id=university_id,
        password=hash_password(password), university_card=university_card,
        status=UserStatus.APPROVED if admin_created else UserStatus.PENDING,
    )
    session.add(u)
    await session.commit()
    await session.refresh(u)
    await cache.invalidate_user(u.id)
    return _ok("Account created." if admin_created else "Account request submitted.", user=user_out(u))

async def _review(session: AsyncSession, user_id: str, status: UserStatus, cache: Cache) -> Dict[str, Any]:
    u = await session.get(User, user_id)
    if not u:
        return _err("User not found.", code="USER_NOT_FOUND")
    if u.status != UserStatus.PENDING:
        return _err(f"Account request already {u.status.value.lower()}.", code="ALREADY_REVIEWED")
    u.status = status
    await session.commit()
    await cache.invalidate_user(u.id)
    logger.info("account %s %s", user_id, status.value)
    return _ok(f"Account {status.value.lower()}.", user_id=u.id, email=u.email, full_name=u.full_name, status=status.value)

async def approve_account(session: AsyncSession, *, user_id: str, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    return await _review(session, user_id, UserStatus.APPROVED, cache)

async def reject_account(session: AsyncSession, *, user_id: str, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    return await _review(session, user_id, UserStatus.REJECTED, cache)

async def change_role(session: AsyncSession, *, user_id: str, role: UserRole | str, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    try:
        role = UserRole(role)
    except ValueError:
        return _err(f"Invalid role: {role}.", code="INVALID_ROLE")
    u = await session.get(User, user_id)
    if not u:
        return _err("User not found.", code="USER_NOT_FOUND")
    u.role = role
    await session.commit()
    await cache.invalidate_user(u.id)
    return _ok("Role updated.", user_id=u.id, email=u.email, full_name=u.full_name, role=role.value)

async def delete_user(session: AsyncSession, *, user_id: str, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    u = await session.get(User, user_id)
    if not u:
        return _err("User not found.", code="USER_NOT_FOUND")
    records = (await session.execute(
        select(BorrowRecord.id, BorrowRecord.book_id, BorrowRecord.status).where(BorrowRecord.user_id == user_id)
    )).all()
    record_ids = [r.id for r in records]
    open_books = [r.book_id for r in records if r.status == BorrowStatus.BORROWED]
    try:
        # copies still out with this user go back on the shelf
        for book_id in open_books:
            await inventory.increment_available(session, book_id)
        if record_ids:
            await session.execute(delete(ScheduledReminder).where(ScheduledReminder.borrow_record_id.in_(record_ids)))
            await session.execute(delete(BorrowRecord).where(BorrowRecord.id.in_(record_ids)))
        await session.execute(delete(User).where(User.id == user_id))
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    for book_id in set(open_books):
        await cache.invalidate_borrows(book_id=book_id)
    await cache.invalidate_user(user_id)
    return _ok("User deleted.", user_id=user_id, removed_records=len(record_ids), restocked=len(open_books))

async def list_account_requests(session: AsyncSession, *, search: Optional[str] = None, newest_first: bool = False,
                                cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    async def fetch():
        q = select(User).where(User.status == UserStatus.PENDING)
        if search:
            term = f"%{search.strip()}%"
            q = q.where(or_(User.full_name.ilike(term), User.email.ilike(term),
                            cast(User.university_id, String).like(term)))
        order = User.created_at.desc() if newest_first else User.created_at.asc()
        users = (await session.execute(q.order_by(order, User.full_name))).scalars().all()
        return [user_out(u) for u in users]

    key = f"{CACHE_KEYS.USERS.REQUESTS}:q:{search}:newest:{int(newest_first)}"
    items = await cache.cache_or_fetch(key, fetch, CACHE_TTL.SHORT)
    return _ok("Pending account requests.", items=items)

async def list_users(session: AsyncSession, *, search: Optional[str] = None, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    async def fetch():
        borrowed = (
            select(func.count(BorrowRecord.id))
            .where(BorrowRecord.user_id == User.id)
            .correlate(User)
            .scalar_subquery()
        )
        q = select(User, borrowed.label("books_borrowed"))
        if search:
            term = f"%{search.strip()}%"
            q = q.where(or_(User.full_name.ilike(term), User.email.ilike(term),
                            cast(User.university_id, String).like(term)))
        rows = (await session.execute(q.order_by(User.full_name))).all()
        return [user_out(u, int(n or 0)) for u, n in rows]

    key = f"{CACHE_KEYS.USERS.ALL}:q:{search}"
    items = await cache.cache_or_fetch(key, fetch, CACHE_TTL.MEDIUM)
    return _ok("Users.", items=items)

async def get_user(session: AsyncSession, *, user_id: str, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    key = CACHE_KEYS.USERS.DETAIL(user_id)
    item = await cache.get(key)
    if item is None:
        u = await session.get(User, user_id)
        if not u:
            return _err("User not found.", code="USER_NOT_FOUND")
        item = user_out(u)
        await cache.set(key, item, CACHE_TTL.LONG)
    return _ok("User.", user=item)

async def user_borrow_history(session: AsyncSession, *, user_id: str, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    """Every loan of one user, newest first, with the book attached."""
    if not (await session.execute(select(User.id).where(User.id == user_id))).first():
        return _err("User not found.", code="USER_NOT_FOUND")

    async def fetch():
        rows = (await session.execute(
            select(BorrowRecord, Book)
            .join(Book, BorrowRecord.book_id == Book.id)
            .where(BorrowRecord.user_id == user_id)
            .order_by(BorrowRecord.borrow_date.desc(), BorrowRecord.created_at.desc())
        )).all()
        return [{**record_payload(r), "book": book_payload(b)} for r, b in rows]

    items = await cache.cache_or_fetch(CACHE_KEYS.BORROW.USER_HISTORY(user_id), fetch, CACHE_TTL.SHORT)
    return _ok("Borrow history.", items=items)
