from functools import lru_cache
from typing import AsyncGenerator
from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from bookwise.cache import Cache
from bookwise.config import settings
from bookwise.db import SessionLocal
from bookwise.email.client import MailClient
from bookwise.notifications import Notifier
from bookwise.ratelimit import RateLimiter
from bookwise.receipts import ReceiptStore

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

@lru_cache
def get_cache() -> Cache:
    return Cache.from_url(settings.REDIS_URL)

@lru_cache
def get_rate_limiter() -> RateLimiter:
    return RateLimiter(settings.RATE_LIMIT_STORAGE_URI, enabled=settings.RATE_LIMIT_ENABLED)

@lru_cache
def get_notifier() -> Notifier:
    mailer = None
    if settings.MAIL_API_KEY:
        mailer = MailClient(settings.MAIL_API_KEY, settings.MAIL_FROM, base_url=settings.MAIL_API_URL,
                            timeout=settings.MAIL_TIMEOUT)
    return Notifier(mailer)

@lru_cache
def get_receipt_store() -> ReceiptStore:
    return ReceiptStore(settings.RECEIPTS_DIR)

def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"

def rate_limit(policy: str):
    async def dependency(request: Request, response: Response, limiter: RateLimiter = Depends(get_rate_limiter)):
        result = await limiter.check(client_ip(request), policy)
        if not result.allowed:
            raise HTTPException(status_code=429, detail="Too many requests. Please try again later.", headers=result.headers)
        for k, v in result.headers.items():
            response.headers[k] = v
    return dependency
