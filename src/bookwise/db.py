from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from bookwise.config import settings

class Base(DeclarativeBase):
    pass

def make_engine(url: str, **kw):
    if settings.DB_ISOLATION_LEVEL:
        kw.setdefault("isolation_level", settings.DB_ISOLATION_LEVEL)
    if not url.startswith("sqlite"):
        kw.setdefault("pool_pre_ping", True)
        kw.setdefault("pool_recycle", 1800)
    return create_async_engine(url, echo=False, future=True, **kw)

engine = make_engine(settings.DATABASE_URL)

SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def init_db():
    from bookwise import models
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
