"""FastAPI route definitions for the URL shortener.

The routes only translate between HTTP and the shortening service; every
decision (validation, lookup, click accounting) is made by the service.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /shorten
        ├─ ShortenUrlRequest (request body)
        └─ ShortenUrlResponse (200) or 400 {"detail": ...}

    GET  /:short_code
        └─ 302 Redirect, 200 LongUrlResponse (JSON clients) or 404

Key Behaviours
===============
- The short URL is built from the scheme and host of the incoming request.
- JSON-preferring clients (see ``wants_json``) get the long URL in the body
  instead of a redirect.
- Unknown, malformed and expired codes all answer 404.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from shortener.dependencies import (
    RequestContext,
    ServiceManager,
    get_request_context,
    get_service_manager,
    get_url_service,
)
from shortener.enums import HealthStatus
from shortener.schemas import HealthResponse, LongUrlResponse, ShortenUrlRequest, ShortenUrlResponse
from shortener.service import UrlShorteningService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    db_status = await manager.check_database()
    cache_status = await manager.check_cache()

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/shorten", response_model=ShortenUrlResponse, response_model_by_alias=True, tags=["urls"])
async def shorten_url(
    payload: ShortenUrlRequest,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: UrlShorteningService = Depends(get_url_service),
) -> ShortenUrlResponse:
    result = await service.create_short_url(payload.long_url, request.url.scheme, request.url.netloc)
    if not result.is_success:
        ctx.logger.warning(f"URL shortening failed: {result.error_message}")
        raise HTTPException(status_code=400, detail=result.error_message)

    ctx.logger.info(f"URL shortened in {ctx.get_duration():.1f}ms: {result.short_url}")
    return ShortenUrlResponse(short_url=result.short_url)


@router.get("/{short_code}", tags=["redirect"], response_model=None)
async def redirect_to_url(
    short_code: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: UrlShorteningService = Depends(get_url_service),
) -> RedirectResponse | LongUrlResponse:
    response = await service.handle_short_url_request(short_code, request.headers)
    if response is None:
        ctx.logger.info(f"Short code not found: {short_code}")
        raise HTTPException(status_code=404, detail="Short URL not found")

    if response.wants_json:
        return LongUrlResponse(long_url=response.long_url)
    return RedirectResponse(url=response.long_url, status_code=302)
