"""Shortening service tests: creation, lookup and click accounting."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from shortener.cache import MISSING, MemoryCache
from shortener.cached_repository import CachedShortUrlRepository
from shortener.encoder import ShortCodeEncoder
from shortener.exceptions import DataStoreError
from shortener.repository import InMemoryShortUrlRepository, ShortUrlRepository
from shortener.schemas import ReadShortUrlView
from shortener.service import (
    INVALID_URL_MESSAGE,
    PERSISTENCE_FAILURE_MESSAGE,
    UNEXPECTED_FAILURE_MESSAGE,
    UrlShorteningService,
    is_valid_long_url,
    wants_json,
)


@pytest.fixture
def repository(memory_store: InMemoryShortUrlRepository, memory_cache: MemoryCache) -> CachedShortUrlRepository:
    return CachedShortUrlRepository(memory_store, memory_cache)


@pytest.fixture
def service(repository: CachedShortUrlRepository, encoder: ShortCodeEncoder) -> UrlShorteningService:
    return UrlShorteningService(repository, encoder)


@pytest.fixture
def mock_repository() -> AsyncMock:
    return AsyncMock(spec=ShortUrlRepository)


# ============================================================================
# create_short_url
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "long_url",
    [
        "not-a-url",
        "",
        "example.com/path",
        "https://",
        "mailto:someone@example.com",
        "https://example.com/" + "a" * 2048,
    ],
)
async def test_invalid_url_fails_without_store_access(
    mock_repository: AsyncMock, encoder: ShortCodeEncoder, long_url: str
) -> None:
    service = UrlShorteningService(mock_repository, encoder)

    result = await service.create_short_url(long_url, "https", "sho.rt")

    assert not result.is_success
    assert result.short_url is None
    assert result.error_message == INVALID_URL_MESSAGE
    mock_repository.add.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "long_url",
    [
        "https://example.com/a",
        "http://example.com",
        "https://sub.example.co.uk/a/b?c=d#frag",
        "https://example.com/search?q",
        "https://example.com/?a&b=1",
        "https://example.com/path?x=1&flag",
    ],
)
async def test_valid_url_is_accepted(service: UrlShorteningService, long_url: str) -> None:
    assert is_valid_long_url(long_url)

    result = await service.create_short_url(long_url, "https", "sho.rt")

    assert result.is_success
    assert result.error_message is None


@pytest.mark.asyncio
async def test_create_then_read_is_served_from_cache(
    service: UrlShorteningService, memory_store: InMemoryShortUrlRepository, encoder: ShortCodeEncoder
) -> None:
    memory_store.get_by_id = AsyncMock(wraps=memory_store.get_by_id)

    result = await service.create_short_url("https://example.com/a", "https", "sho.rt")

    assert result.is_success
    assert result.error_message is None
    code = result.short_url.rsplit("/", 1)[1]
    assert result.short_url == f"https://sho.rt/{code}"
    assert encoder.decode(code) == 1

    response = await service.handle_short_url_request(code, {})
    assert response.long_url == "https://example.com/a"
    memory_store.get_by_id.assert_not_awaited()
    await service.drain_background_tasks()


@pytest.mark.asyncio
async def test_zero_id_is_a_persistence_failure(
    mock_repository: AsyncMock, encoder: ShortCodeEncoder, caplog: pytest.LogCaptureFixture
) -> None:
    mock_repository.add.return_value = 0
    service = UrlShorteningService(mock_repository, encoder)

    with caplog.at_level(logging.ERROR, logger="shortener.service"):
        result = await service.create_short_url("https://example.com/a", "https", "sho.rt")

    assert result.error_message == PERSISTENCE_FAILURE_MESSAGE
    assert "https://example.com/a" in caplog.text


@pytest.mark.asyncio
async def test_store_exception_is_an_unexpected_failure(mock_repository: AsyncMock, encoder: ShortCodeEncoder) -> None:
    mock_repository.add.side_effect = DataStoreError("connection refused")
    service = UrlShorteningService(mock_repository, encoder)

    result = await service.create_short_url("https://example.com/a", "https", "sho.rt")

    assert not result.is_success
    assert result.error_message == UNEXPECTED_FAILURE_MESSAGE


@pytest.mark.asyncio
async def test_cache_failure_after_commit_still_succeeds(
    memory_store: InMemoryShortUrlRepository, memory_cache: MemoryCache, encoder: ShortCodeEncoder
) -> None:
    memory_cache.set = AsyncMock(side_effect=DataStoreError("redis down"))
    service = UrlShorteningService(CachedShortUrlRepository(memory_store, memory_cache), encoder)

    result = await service.create_short_url("https://example.com/a", "https", "sho.rt")

    assert result.is_success
    assert encoder.decode(result.short_url.rsplit("/", 1)[1]) == 1
    assert await memory_store.get_record(2) is None


# ============================================================================
# handle_short_url_request
# ============================================================================


@pytest.mark.asyncio
async def test_lookup_counts_click_and_invalidates_cache(
    service: UrlShorteningService, memory_store: InMemoryShortUrlRepository, memory_cache: MemoryCache
) -> None:
    result = await service.create_short_url("https://example.com/a", "https", "sho.rt")
    code = result.short_url.rsplit("/", 1)[1]

    response = await service.handle_short_url_request(code, {})
    await service.drain_background_tasks()

    assert response.long_url == "https://example.com/a"
    assert response.wants_json is False
    record = await memory_store.get_record(1)
    assert record.click_count == 1
    assert await memory_cache.try_get("ShortUrl:1") is MISSING
    assert service.pending_background_tasks == 0


@pytest.mark.asyncio
async def test_lookup_reports_json_preference(service: UrlShorteningService) -> None:
    result = await service.create_short_url("https://example.com/a", "https", "sho.rt")
    code = result.short_url.rsplit("/", 1)[1]

    response = await service.handle_short_url_request(code, {"Accept": "application/json"})
    await service.drain_background_tasks()

    assert response.wants_json is True


@pytest.mark.asyncio
async def test_unknown_code_returns_none_and_creates_nothing(
    service: UrlShorteningService, memory_store: InMemoryShortUrlRepository, encoder: ShortCodeEncoder
) -> None:
    code = encoder.encode(999)

    assert await service.handle_short_url_request(code, {}) is None
    assert await service.handle_short_url_request(code, {}) is None
    await service.drain_background_tasks()

    assert await memory_store.get_record(999) is None
    assert await memory_store.get_by_id(1) is None


@pytest.mark.asyncio
async def test_malformed_code_returns_none_without_store_access(
    mock_repository: AsyncMock, encoder: ShortCodeEncoder, caplog: pytest.LogCaptureFixture
) -> None:
    service = UrlShorteningService(mock_repository, encoder)

    with caplog.at_level(logging.WARNING, logger="shortener.service"):
        assert await service.handle_short_url_request("$$$", {}) is None

    mock_repository.get_by_id.assert_not_awaited()
    assert "could not be decoded" in caplog.text


@pytest.mark.asyncio
async def test_lookup_failure_returns_none(mock_repository: AsyncMock, encoder: ShortCodeEncoder) -> None:
    mock_repository.get_by_id.side_effect = DataStoreError("timeout")
    service = UrlShorteningService(mock_repository, encoder)

    assert await service.handle_short_url_request(encoder.encode(1), {}) is None
    mock_repository.increment_click_count.assert_not_awaited()


@pytest.mark.asyncio
async def test_click_increment_failure_is_logged_not_raised(
    mock_repository: AsyncMock, encoder: ShortCodeEncoder, caplog: pytest.LogCaptureFixture
) -> None:
    mock_repository.get_by_id.return_value = ReadShortUrlView(long_url="https://example.com/a")
    mock_repository.increment_click_count.side_effect = DataStoreError("deadlock")
    service = UrlShorteningService(mock_repository, encoder)

    with caplog.at_level(logging.ERROR, logger="shortener.service"):
        response = await service.handle_short_url_request(encoder.encode(1), {})
        await service.drain_background_tasks()

    assert response.long_url == "https://example.com/a"
    mock_repository.increment_click_count.assert_awaited_once_with(1)
    assert "Click count increment failed" in caplog.text
    assert service.pending_background_tasks == 0


@pytest.mark.asyncio
async def test_cancelled_request_does_not_cancel_click_increment(
    mock_repository: AsyncMock, encoder: ShortCodeEncoder
) -> None:
    release_increment = asyncio.Event()
    incremented: list[int] = []

    async def slow_increment(short_url_id: int) -> None:
        await release_increment.wait()
        incremented.append(short_url_id)

    mock_repository.get_by_id.return_value = ReadShortUrlView(long_url="https://example.com/a")
    mock_repository.increment_click_count.side_effect = slow_increment
    service = UrlShorteningService(mock_repository, encoder)
    dispatched = asyncio.Event()

    async def request() -> None:
        await service.handle_short_url_request(encoder.encode(1), {})
        dispatched.set()
        await asyncio.sleep(3600)

    caller = asyncio.create_task(request())
    await dispatched.wait()
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    assert service.pending_background_tasks == 1
    release_increment.set()
    await service.drain_background_tasks()

    assert incremented == [1]
    assert service.pending_background_tasks == 0


# ============================================================================
# wants_json
# ============================================================================


@pytest.mark.parametrize(
    "headers",
    [
        {"Accept": "application/json"},
        {"accept": "text/html, Application/JSON;q=0.9"},
        {"X-Requested-With": "xmlhttprequest"},
        {"Sec-Fetch-Mode": "CORS"},
        {"Referer": "http://localhost:8000/Swagger/index.html"},
        {"Origin": ""},
    ],
)
def test_wants_json_true(headers: dict[str, str]) -> None:
    assert wants_json(headers) is True


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Accept": "text/html"},
        {"Accept": "*/*", "User-Agent": "curl/8.0"},
        {"Sec-Fetch-Mode": "navigate"},
        {"Referer": "https://example.com/docs"},
    ],
)
def test_wants_json_false(headers: dict[str, str]) -> None:
    assert wants_json(headers) is False
