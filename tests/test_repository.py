"""Store adapter tests: SQLAlchemy over in-memory SQLite and the dict-backed store."""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from shortener.database import Base
from shortener.exceptions import DataStoreError, ShortUrlNotFoundError
from shortener.repository import InMemoryShortUrlRepository, SqlAlchemyShortUrlRepository
from shortener.schemas import ReadShortUrlView, UpdateShortUrl


@pytest.fixture(params=["sql", "memory"])
def store(request, sql_store: SqlAlchemyShortUrlRepository, memory_store: InMemoryShortUrlRepository):
    return sql_store if request.param == "sql" else memory_store


@pytest.mark.asyncio
async def test_add_issues_sequential_ids_starting_at_one(store) -> None:
    assert await store.add("https://example.com/a") == 1
    assert await store.add("https://example.com/b") == 2


@pytest.mark.asyncio
async def test_get_by_id_returns_long_url_view(store) -> None:
    short_url_id = await store.add("https://example.com/a")
    assert await store.get_by_id(short_url_id) == ReadShortUrlView(long_url="https://example.com/a")


@pytest.mark.asyncio
async def test_get_by_id_unknown_returns_none(store) -> None:
    assert await store.get_by_id(42) is None


@pytest.mark.asyncio
async def test_new_record_defaults(store) -> None:
    short_url_id = await store.add("https://example.com/a")
    record = await store.get_record(short_url_id)
    assert record.long_url == "https://example.com/a"
    assert record.click_count == 0
    assert record.created_at is not None


@pytest.mark.asyncio
async def test_update_overwrites_long_url(store) -> None:
    short_url_id = await store.add("https://example.com/a")
    await store.update(UpdateShortUrl(id=short_url_id, long_url="https://example.com/b"))

    assert await store.get_by_id(short_url_id) == ReadShortUrlView(long_url="https://example.com/b")
    record = await store.get_record(short_url_id)
    assert record.click_count == 0


@pytest.mark.asyncio
async def test_update_unknown_id_raises(store) -> None:
    with pytest.raises(ShortUrlNotFoundError):
        await store.update(UpdateShortUrl(id=99, long_url="https://example.com/b"))
    assert await store.get_by_id(99) is None


@pytest.mark.asyncio
async def test_increment_click_count(store) -> None:
    short_url_id = await store.add("https://example.com/a")
    for _ in range(3):
        await store.increment_click_count(short_url_id)

    record = await store.get_record(short_url_id)
    assert record.click_count == 3


@pytest.mark.asyncio
async def test_increment_unknown_id_is_a_no_op(store) -> None:
    await store.increment_click_count(42)
    assert await store.get_record(42) is None


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(memory_store: InMemoryShortUrlRepository) -> None:
    short_url_id = await memory_store.add("https://example.com/a")
    await asyncio.gather(*(memory_store.increment_click_count(short_url_id) for _ in range(50)))

    record = await memory_store.get_record(short_url_id)
    assert record.click_count == 50


@pytest.mark.asyncio
async def test_driver_failures_raise_data_store_error(engine: AsyncEngine, sql_store: SqlAlchemyShortUrlRepository) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    with pytest.raises(DataStoreError):
        await sql_store.add("https://example.com/a")
    with pytest.raises(DataStoreError):
        await sql_store.get_by_id(1)
    with pytest.raises(DataStoreError):
        await sql_store.increment_click_count(1)
