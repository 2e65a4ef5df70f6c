"""Database engine and session management for the URL shortener.

This module provides SQLAlchemy async engine setup and database lifecycle
operations. Engines are built from an explicit ``Settings`` object instead of
module import time, so the store adapter receives its connection details at
construction.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │ create_     │
    │ engine()    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ create_     │
    │ session_    │
    │ factory()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init_db()   │
    │ (tables)    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Repository  │
    │ opens one   │
    │ session per │
    │ operation   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ close_db()  │
    └─────────────┘

How to Use
===========
**Step 1 — Build engine and session factory**::
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

**Step 2 — Create tables on startup**::
    await init_db(engine)

**Step 3 — Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- Connection pooling is configured for production workloads.
- SQLite URLs (used in tests) share a single in-process connection.
- Sessions do not expire attributes on commit.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine():  Async engine from settings.
    create_session_factory():  Session factory bound to an engine.
    init_db():  Creates all tables.
    close_db():  Disposes the engine.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from shortener.config import Settings

__all__ = ["Base", "create_engine", "create_session_factory", "init_db", "close_db"]


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    if settings.DATABASE_URL.startswith("sqlite"):
        return create_async_engine(
            settings.DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_async_engine(
        settings.DATABASE_URL,
        echo=(settings.APP_ENV == "development"),
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Import for side effect: registers the tables on Base.metadata.
    import shortener.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
