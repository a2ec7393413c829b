import itertools
import json

import httpx
import pytest
import pytest_asyncio
from fakeredis import aioredis
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from bookwise.db import Base
from bookwise import models
from bookwise.cache import Cache
from bookwise.email.client import MailClient
from bookwise.notifications import Notifier
from bookwise.ratelimit import RateLimiter
from bookwise.receipts import ReceiptStore

_university_ids = itertools.count(1000)

@pytest_asyncio.fixture
async def async_engine(tmp_path):
    # file-backed so concurrent sessions get their own connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'library.db'}", echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()

@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, expire_on_commit=False, class_=AsyncSession)

@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        try:
            yield s
        finally:
            await s.rollback()

@pytest_asyncio.fixture
async def cache():
    c = Cache(aioredis.FakeRedis(decode_responses=True))
    try:
        yield c
    finally:
        await c.aclose()

class Outbox:
    def __init__(self):
        self.sent = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(500, json={"message": "mail provider down"})
        self.sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": f"msg-{len(self.sent)}"})

    def subjects(self):
        return [m["subject"] for m in self.sent]

@pytest.fixture
def outbox():
    return Outbox()

@pytest_asyncio.fixture
async def notifier(outbox):
    mailer = MailClient("test-key", "Library <library@example.edu>", base_url="https://mail.test",
                        transport=httpx.MockTransport(outbox.handler))
    try:
        yield Notifier(mailer)
    finally:
        await mailer.aclose()

@pytest.fixture
def receipt_store(tmp_path):
    return ReceiptStore(tmp_path / "receipts")

@pytest.fixture
def make_book(session):
    async def _make(title="Clean Code", author="Robert C. Martin", genre="Software", total_copies=3, **kw):
        b = models.Book(title=title, author=author, genre=genre, total_copies=total_copies,
                        available_copies=kw.pop("available_copies", total_copies), **kw)
        session.add(b)
        await session.commit()
        await session.refresh(b)
        return b
    return _make

@pytest.fixture
def make_user(session):
    async def _make(full_name="Alice Reader", email=None, status=models.UserStatus.APPROVED, **kw):
        uid = next(_university_ids)
        u = models.User(full_name=full_name, email=email or f"reader{uid}@uni.edu", university_id=uid,
                        password="x", status=status, **kw)
        session.add(u)
        await session.commit()
        await session.refresh(u)
        return u
    return _make

@pytest_asyncio.fixture
async def client(session_factory, cache, notifier, receipt_store):
    from bookwise.main import app
    from bookwise import deps

    async def _session():
        async with session_factory() as s:
            yield s

    limiter = RateLimiter("async+memory://")
    app.dependency_overrides[deps.get_session] = _session
    app.dependency_overrides[deps.get_cache] = lambda: cache
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    app.dependency_overrides[deps.get_receipt_store] = lambda: receipt_store
    app.dependency_overrides[deps.get_rate_limiter] = lambda: limiter
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.clear()
