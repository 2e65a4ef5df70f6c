"""Shared pytest fixtures for store, cache, service and API tests."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortener.cache import MemoryCache
from shortener.config import Settings
from shortener.database import close_db, create_engine, create_session_factory, init_db
from shortener.dependencies import ServiceManager, _service_manager
from shortener.encoder import ShortCodeEncoder
from shortener.main import app
from shortener.repository import InMemoryShortUrlRepository, SqlAlchemyShortUrlRepository

TEST_SALT = "test-salt"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        APP_ENV="test",
        LOG_LEVEL="DEBUG",
        STORE_BACKEND="sqlalchemy",
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        CACHE_BACKEND="memory",
        HASHIDS_SALT=TEST_SALT,
    )


@pytest.fixture
def encoder() -> ShortCodeEncoder:
    return ShortCodeEncoder(salt=TEST_SALT, min_length=7)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock: FakeClock) -> MemoryCache:
    return MemoryCache(max_entries=1000, clock=clock)


@pytest.fixture
def memory_store() -> InMemoryShortUrlRepository:
    return InMemoryShortUrlRepository()


@pytest_asyncio.fixture(scope="function")
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def sql_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlAlchemyShortUrlRepository:
    return SqlAlchemyShortUrlRepository(session_factory)


@pytest_asyncio.fixture(scope="function")
async def service_manager(settings: Settings) -> AsyncGenerator[ServiceManager, None]:
    await _service_manager.initialize(settings)
    await _service_manager.init_db()
    yield _service_manager
    await _service_manager.cleanup()


@pytest_asyncio.fixture(scope="function")
async def client(service_manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
