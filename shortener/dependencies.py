"""Dependency injection with a singleton service manager.

Every shared resource (database engine, cache client, encoder and the
shortening service itself) is built once at startup by ``ServiceManager``
and handed to endpoints through FastAPI dependencies. Only the request
context is created per request.

Object Graph
============
::
    ServiceManager (singleton)
    ├─ settings: Settings
    ├─ logger: logging.Logger ("shortener")
    ├─ engine / session_factory      (STORE_BACKEND=sqlalchemy)
    ├─ store: ShortUrlRepository     (SqlAlchemy... or InMemory...)
    ├─ cache: Cache                  (MemoryCache or RedisCache)
    ├─ repository: CachedShortUrlRepository(store, cache)
    └─ url_service: UrlShorteningService(repository, encoder)

How to Use
===========
**Startup / shutdown**::
    await _service_manager.initialize(settings)
    await _service_manager.init_db()
    ...
    await _service_manager.cleanup()

**In endpoints**::
    @router.get("/{short_code}")
    async def redirect(service: UrlShorteningService = Depends(get_url_service)): ...
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortener.cache import Cache, MemoryCache, RedisCache
from shortener.cached_repository import CachedShortUrlRepository
from shortener.config import Settings, get_settings
from shortener.database import close_db, create_engine, create_session_factory, init_db
from shortener.encoder import ShortCodeEncoder
from shortener.enums import HealthStatus
from shortener.repository import InMemoryShortUrlRepository, ShortUrlRepository, SqlAlchemyShortUrlRepository
from shortener.schemas import ReadShortUrlView
from shortener.service import UrlShorteningService

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_request_context",
    "get_url_service",
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton owner of the long-lived resources.

    The shortening service is created once and shared by all requests, so
    detached click increments outlive the request that started them and can
    be drained at shutdown.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, settings: Settings | None = None) -> None:
        """Build shared resources once at startup."""
        if self._initialized:
            return

        self.settings = settings or get_settings()
        self.logger = self._setup_logger()

        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None
        self.redis_client: redis.Redis | None = None

        self.store = self._setup_store()
        self.cache = self._setup_cache()
        self.encoder = ShortCodeEncoder.from_settings(self.settings)
        self.repository = CachedShortUrlRepository.from_settings(self.store, self.cache, self.settings)
        self.url_service = UrlShorteningService(
            self.repository,
            self.encoder,
            logger=logging.getLogger("shortener.service"),
        )

        self._initialized = True
        self.logger.info(
            f"Service manager initialized (store={self.settings.STORE_BACKEND}, "
            f"cache={self.settings.CACHE_BACKEND})"
        )

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("shortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    def _setup_store(self) -> ShortUrlRepository:
        if self.settings.STORE_BACKEND == "memory":
            return InMemoryShortUrlRepository()

        self.engine = create_engine(self.settings)
        self.session_factory = create_session_factory(self.engine)
        return SqlAlchemyShortUrlRepository(self.session_factory)

    def _setup_cache(self) -> Cache:
        if self.settings.CACHE_BACKEND == "redis":
            self.redis_client = redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)
            return RedisCache(self.redis_client, ReadShortUrlView, prefix=self.settings.CACHE_KEY_PREFIX)

        return MemoryCache(max_entries=self.settings.CACHE_MAX_ENTRIES)

    async def init_db(self) -> None:
        """Create tables when a relational store is configured."""
        if self.engine is not None:
            await init_db(self.engine)

    async def check_database(self) -> HealthStatus:
        if self.session_factory is None:
            return HealthStatus.HEALTHY
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            self.logger.error(f"Database health check failed: {e}")
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY

    async def check_cache(self) -> HealthStatus:
        try:
            healthy = await self.cache.ping()
        except Exception as e:
            self.logger.error(f"Cache health check failed: {e}")
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY

    async def cleanup(self) -> None:
        """Release shared resources at shutdown."""
        if not self._initialized:
            return
        await self.url_service.drain_background_tasks()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        if self.engine is not None:
            await close_db(self.engine)
        self._initialized = False
        self.logger.info("Service manager shut down")


_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking on top of the shared resources.

    Attributes:
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.time)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger carrying this request's identifiers."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager.initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    client_ip = request.client.host if request.client else None
    return RequestContext(
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip,
    )


def get_url_service(manager: ServiceManager = Depends(get_service_manager)) -> UrlShorteningService:
    return manager.url_service
