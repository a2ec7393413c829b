from __future__ import annotations
import logging
from typing import Optional, Dict, Any, List, Iterable

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, or_, and_

from bookwise.actions import _ok, _err
from bookwise.cache import Cache, CACHE_KEYS, CACHE_TTL, NULL_CACHE
from bookwise.models import Book, BorrowRecord, BorrowStatus, ScheduledReminder

logger = logging.getLogger(__name__)

BOOK_FIELDS = (
    "title", "author", "genre", "rating", "total_copies", "description",
    "cover_url", "cover_color", "video_url", "summary",
)
NULLABLE_FIELDS = ("cover_url", "cover_color", "video_url")
FEATURED_MIN_RATING = 4

def book_out(b: Book) -> Dict[str, Any]:
    return {
        "id": b.id,
        "title": b.title,
        "author": b.author,
        "genre": b.genre,
        "rating": b.rating,
        "total_copies": b.total_copies,
        "available_copies": b.available_copies,
        "description": b.description,
        "cover_url": b.cover_url,
        "cover_color": b.cover_color,
        "video_url": b.video_url,
        "summary": b.summary,
        "created_at": b.created_at.isoformat() if b.created_at else None,
    }

async def list_books(session: AsyncSession, *, search: Optional[str] = None, genre: Optional[str] = None,
                     available_only: bool = False, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    async def fetch():
        q = select(Book)
        if search:
            term = f"%{search.strip()}%"
            q = q.where(or_(Book.title.ilike(term), Book.author.ilike(term), Book.genre.ilike(term)))
        if genre:
            q = q.where(Book.genre == genre)
        if available_only:
            q = q.where(Book.available_copies >= 1)
        books = (await session.execute(q.order_by(Book.title))).scalars().all()
        return [book_out(b) for b in books]

    key = CACHE_KEYS.BOOKS.ALL
    if search or genre or available_only:
        key = f"{key}:q:{search}:genre:{genre}:available:{int(available_only)}"
    items = await cache.cache_or_fetch(key, fetch, CACHE_TTL.MEDIUM)
    if not items:
        return _ok("No books registered yet.", items=[])
    return _ok("Book list.", items=items)

async def get_book(session: AsyncSession, *, book_id: str, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    async def fetch():
        b = await session.get(Book, book_id)
        return book_out(b) if b else None

    key = CACHE_KEYS.BOOKS.DETAIL(book_id)
    item = await cache.get(key)
    if item is None:
        item = await fetch()
        if item is None:
            return _err("Book not found.", code="BOOK_NOT_FOUND")
        await cache.set(key, item, CACHE_TTL.LONG)
    return _ok("Book.", book=item)

async def featured_books(session: AsyncSession, *, limit: int = 10, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    limit = min(max(limit, 1), 50)

    async def fetch():
        books = (await session.execute(
            select(Book).where(Book.rating >= FEATURED_MIN_RATING)
            .order_by(Book.rating.desc(), Book.title).limit(limit)
        )).scalars().all()
        return [book_out(b) for b in books]

    items = await cache.cache_or_fetch(f"{CACHE_KEYS.BOOKS.FEATURED}:{limit}", fetch, CACHE_TTL.VERY_LONG)
    return _ok("Featured books.", items=items)

async def new_books(session: AsyncSession, *, limit: int = 10, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    limit = min(max(limit, 1), 50)

    async def fetch():
        books = (await session.execute(
            select(Book).order_by(Book.created_at.desc(), Book.title).limit(limit)
        )).scalars().all()
        return [book_out(b) for b in books]

    items = await cache.cache_or_fetch(f"{CACHE_KEYS.BOOKS.NEW}:{limit}", fetch, CACHE_TTL.LONG)
    return _ok("New books.", items=items)

async def create_book(session: AsyncSession, *, title: str, author: str, genre: str, total_copies: int = 1,
                      rating: int = 0, description: str = "", cover_url: Optional[str] = None,
                      cover_color: Optional[str] = None, video_url: Optional[str] = None, summary: str = "",
                      cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    if not (title and author and genre):
        return _err("Missing book data (title, author, genre).", code="MISSING_FIELDS")
    if total_copies < 0:
        return _err("total_copies must be >= 0.", code="INVALID_COPIES")
    b = Book(
        title=title.strip(), author=author.strip(), genre=genre.strip(), rating=rating,
        total_copies=total_copies, available_copies=total_copies,
        description=description or "", cover_url=cover_url, cover_color=cover_color,
        video_url=video_url, summary=summary or "",
    )
    session.add(b)
    await session.commit()
    await session.refresh(b)
    await cache.invalidate_book(b.id)
    return _ok("Book created successfully.", book=book_out(b))

async def update_book(session: AsyncSession, *, book_id: str, cache: Cache = NULL_CACHE, **changes) -> Dict[str, Any]:
    unknown = set(changes) - set(BOOK_FIELDS)
    if unknown:
        return _err(f"Unknown fields: {', '.join(sorted(unknown))}.", code="INVALID_FIELDS")
    b = await session.get(Book, book_id, with_for_update=True)
    if not b:
        return _err("Book not found.", code="BOOK_NOT_FOUND")
    await session.refresh(b)
    new_total = changes.get("total_copies")
    if new_total is not None:
        if new_total < 0:
            return _err("total_copies must be >= 0.", code="INVALID_COPIES")
        # copies on loan stay on loan; only the shelf count moves
        available = max(b.available_copies + (new_total - b.total_copies), 0)
        b.available_copies = min(available, new_total)
    for field, value in changes.items():
        # None clears a nullable field and is ignored for the rest
        if value is not None or field in NULLABLE_FIELDS:
            setattr(b, field, value)
    await session.commit()
    await session.refresh(b)
    await cache.invalidate_book(b.id)
    return _ok("Book updated successfully.", book=book_out(b))

async def delete_book(session: AsyncSession, *, book_id: str, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    if not book_id:
        return _err("Missing book id.", code="MISSING_ID")
    r_book = await session.execute(select(Book).where(Book.id == book_id))
    book = r_book.scalar_one_or_none()
    if not book:
        return _err("Book not found.", code="BOOK_NOT_FOUND")
    r_open = await session.execute(
        select(BorrowRecord.id).where(and_(BorrowRecord.book_id == book_id, BorrowRecord.status == BorrowStatus.BORROWED)).limit(1)
    )
    if r_open.first():
        return _err("The book has open loans and cannot be deleted.", code="BOOK_HAS_OPEN_BORROWS")
    record_ids = [row[0] for row in await session.execute(select(BorrowRecord.id).where(BorrowRecord.book_id == book_id))]
    try:
        if record_ids:
            await session.execute(delete(ScheduledReminder).where(ScheduledReminder.borrow_record_id.in_(record_ids)))
            await session.execute(delete(BorrowRecord).where(BorrowRecord.id.in_(record_ids)))
        await session.execute(delete(Book).where(Book.id == book_id))
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await cache.invalidate_borrows(book_id=book_id)
    return _ok("Book deleted successfully.", book_id=book_id, removed_records=len(record_ids))

async def seed_books(session: AsyncSession, items: Iterable[Dict[str, Any]], *, cache: Cache = NULL_CACHE) -> Dict[str, Any]:
    """Explicit catalog import. Rows already present (same title and author)
    and rows with bad data are skipped; the import commits as a whole."""
    created: List[str] = []
    skipped = 0
    try:
        for item in items:
            title, author = (item.get("title") or "").strip(), (item.get("author") or "").strip()
            if not (title and author and item.get("genre")):
                skipped += 1
                continue
            try:
                total = int(item.get("total_copies", 1))
            except (TypeError, ValueError):
                total = -1
            if total < 0:
                logger.warning("skipping %r: invalid total_copies %r", title, item.get("total_copies"))
                skipped += 1
                continue
            exists = (await session.execute(
                select(Book.id).where(and_(Book.title == title, Book.author == author))
            )).first()
            if exists:
                skipped += 1
                continue
            b = Book(**{k: item[k] for k in BOOK_FIELDS if k in item and item[k] is not None})
            b.title, b.author = title, author
            b.total_copies = total
            b.available_copies = total
            session.add(b)
            await session.flush()
            created.append(b.id)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    if created:
        await cache.invalidate_book()
    logger.info("seeded %s books (%s skipped)", len(created), skipped)
    return _ok("Catalog seeded.", created=len(created), skipped=skipped, book_ids=created)
