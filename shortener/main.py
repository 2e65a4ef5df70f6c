"""FastAPI application entry point for the URL shortener.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ initialize() │
    │ init_db()    │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ cleanup():   │
    │ drain clicks │
    │ close cache  │
    │ close db     │
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8000

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8000/shorten \
         -H "Content-Type: application/json" \
         -d '{"longUrl": "https://example.com"}'

    curl -i http://localhost:8000/<code>
    curl -H "Accept: application/json" http://localhost:8000/<code>

Key Behaviours
===============
- Tables are created on startup when the relational store is configured.
- Pending click increments are awaited before connections are closed.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app", "create_app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import Settings, get_settings
from shortener.dependencies import _service_manager
from shortener.routes import router


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await _service_manager.initialize(settings)
        await _service_manager.init_db()
        yield
        await _service_manager.cleanup()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Reversible URL shortener with a cache-aside store",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
