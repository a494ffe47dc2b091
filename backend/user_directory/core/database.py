"""
Async database engine and session management.
Uses SQLAlchemy 2.0 async with asyncpg (PostgreSQL) or aiosqlite (local/tests).
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from user_directory.core.config import get_settings

settings = get_settings()

# ── Engine ───────────────────────────────────────────────────────────────────
_engine_options: dict = {
    "echo": settings.DATABASE_ECHO,
    "pool_pre_ping": True,
}
if not settings.is_sqlite:
    _engine_options.update(pool_size=20, max_overflow=10, pool_recycle=300)

engine = create_async_engine(settings.DATABASE_URL, **_engine_options)

# ── Session Factory ──────────────────────────────────────────────────────────
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ───────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Dependency ───────────────────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields a database session.
    One session is one unit of work: committed when the request succeeds,
    rolled back on any exception.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
