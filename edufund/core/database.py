from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from redis import asyncio as aioredis
from typing import AsyncGenerator, Optional
from edufund.core.config import settings

Base = declarative_base()


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Async engine for ``url``; in-memory SQLite shares one connection"""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return create_async_engine(url, echo=echo, **kwargs)
    return create_async_engine(url, echo=echo, pool_pre_ping=True, pool_size=10, max_overflow=20)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # Background services keep using rows after commit
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    # Importing the models registers their tables on Base.metadata
    from edufund.modules import agreements, loan_requests, offers  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async_engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = build_session_factory(async_engine)

# Redis connection pool, only opened for LOCK_BACKEND=redis
redis_pool: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    global redis_pool
    if redis_pool is None:
        redis_pool = aioredis.from_url(settings.REDIS_URL, max_connections=10)
    return redis_pool


async def close_redis():
    global redis_pool
    if redis_pool:
        await redis_pool.aclose()
        redis_pool = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; services commit their own units of work"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
