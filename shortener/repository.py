"""Short URL repository contract and its persistent store adapters.

Class Relationship Diagram
=========================
::
    ShortUrlRepository (ABC)
    ├─ SqlAlchemyShortUrlRepository   (relational store, one session per call)
    ├─ InMemoryShortUrlRepository     (process-local store)
    └─ CachedShortUrlRepository       (cache-aside decorator, see cached_repository.py)

Key Behaviours
===============
- Ids are issued by the store and never reused.
- ``get_by_id`` loads only the long URL, not the full record.
- ``increment_click_count`` is a single store-side ``click_count + 1`` update,
  never a read-modify-write of the record.
- Driver failures surface as ``DataStoreError``; a failed ``add`` is rolled back.

Classes:
    ShortUrlRepository:  Async contract consumed by the shortening service.
    SqlAlchemyShortUrlRepository:  SQLAlchemy async adapter.
    InMemoryShortUrlRepository:  Dict-backed adapter for local runs and tests.
"""

import datetime
import functools
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.exceptions import DataStoreError, ShortUrlNotFoundError
from shortener.models import ShortUrl
from shortener.schemas import ReadShortUrlView, UpdateShortUrl

__all__ = [
    "ShortUrlRepository",
    "SqlAlchemyShortUrlRepository",
    "InMemoryShortUrlRepository",
]

logger = logging.getLogger("shortener.repository")

F = TypeVar("F", bound=Callable[..., Any])


class ShortUrlRepository(ABC):
    """Contract for short URL storage.

    Methods:
        add(long_url) -> int:
            Persist a new record and return its id, or 0 if no id was issued.
        get_by_id(short_url_id) -> ReadShortUrlView | None:
            Return the read projection, or None if no record has that id.
        update(short_url) -> None:
            Overwrite the long URL of an existing record.
        increment_click_count(short_url_id) -> None:
            Atomically add one to the record's click count.
    """

    @abstractmethod
    async def add(self, long_url: str) -> int:
        pass

    @abstractmethod
    async def get_by_id(self, short_url_id: int) -> ReadShortUrlView | None:
        pass

    @abstractmethod
    async def update(self, short_url: UpdateShortUrl) -> None:
        pass

    @abstractmethod
    async def increment_click_count(self, short_url_id: int) -> None:
        pass


def handle_database_errors(method: F) -> F:
    """Wrap store methods so driver errors surface as DataStoreError."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            raise DataStoreError(f"Database operation {method.__name__} failed: {exc}") from exc

    return wrapper


class SqlAlchemyShortUrlRepository(ShortUrlRepository):
    """Relational store backed by an async SQLAlchemy session factory.

    Every operation opens its own short-lived session, so concurrent callers
    (including detached click increments) never share session state.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @handle_database_errors
    async def add(self, long_url: str) -> int:
        async with self._session_factory() as session:
            record = ShortUrl(long_url=long_url)
            session.add(record)
            try:
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                raise
            return record.id or 0

    @handle_database_errors
    async def get_by_id(self, short_url_id: int) -> ReadShortUrlView | None:
        async with self._session_factory() as session:
            result = await session.execute(select(ShortUrl.long_url).where(ShortUrl.id == short_url_id))
            long_url = result.scalar_one_or_none()
        if long_url is None:
            return None
        return ReadShortUrlView(long_url=long_url)

    @handle_database_errors
    async def update(self, short_url: UpdateShortUrl) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(ShortUrl).where(ShortUrl.id == short_url.id).values(long_url=short_url.long_url)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise ShortUrlNotFoundError(f"Short URL with id {short_url.id} not found.")
            await session.commit()

    @handle_database_errors
    async def increment_click_count(self, short_url_id: int) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(ShortUrl)
                .where(ShortUrl.id == short_url_id)
                .values(click_count=ShortUrl.click_count + 1)
            )
            matched = result.rowcount
            await session.commit()
        if matched == 0:
            logger.debug(f"Click increment matched no record for id={short_url_id}")

    @handle_database_errors
    async def get_record(self, short_url_id: int) -> ShortUrl | None:
        """Load the full record, bypassing any cache. Not part of the contract."""
        async with self._session_factory() as session:
            return await session.get(ShortUrl, short_url_id)


class InMemoryShortUrlRepository(ShortUrlRepository):
    """Process-local store with the same semantics as the relational adapter."""

    def __init__(self) -> None:
        self._records: dict[int, ShortUrl] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    async def add(self, long_url: str) -> int:
        with self._lock:
            short_url_id = next(self._ids)
            self._records[short_url_id] = ShortUrl(
                id=short_url_id,
                long_url=long_url,
                created_at=datetime.datetime.now(datetime.UTC),
                click_count=0,
            )
        return short_url_id

    async def get_by_id(self, short_url_id: int) -> ReadShortUrlView | None:
        with self._lock:
            record = self._records.get(short_url_id)
            if record is None:
                return None
            return ReadShortUrlView(long_url=record.long_url)

    async def update(self, short_url: UpdateShortUrl) -> None:
        with self._lock:
            record = self._records.get(short_url.id)
            if record is None:
                raise ShortUrlNotFoundError(f"Short URL with id {short_url.id} not found.")
            record.long_url = short_url.long_url

    async def increment_click_count(self, short_url_id: int) -> None:
        with self._lock:
            record = self._records.get(short_url_id)
            if record is not None:
                record.click_count += 1

    async def get_record(self, short_url_id: int) -> ShortUrl | None:
        with self._lock:
            return self._records.get(short_url_id)
