"""Business logic layer for URL shortening and redirect handling.

This module is the only component the HTTP layer talks to. It validates input,
persists URLs through the repository, turns ids into short codes and back, and
dispatches click accounting without slowing the redirect down.

Flow Diagram — URL Creation
===========================
::
    ┌─────────────┐
    │ create_     │
    │ short_url() │
    └──────┬──────┘
           ▼
    ┌─────────────┐   invalid   ┌─────────────┐
    │ Validate URL│────────────▶│ failure()   │
    └──────┬──────┘             └─────────────┘
           ▼
    ┌─────────────┐   id == 0   ┌─────────────┐
    │ repository. │────────────▶│ failure()   │
    │ add()       │             └─────────────┘
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ encode(id)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ success(    │
    │ scheme://   │
    │ host/code)  │
    └─────────────┘

Flow Diagram — Redirect Lookup
==============================
::
    ┌─────────────┐
    │ handle_     │
    │ short_url_  │
    │ request()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐   no match  ┌─────────────┐
    │ decode(code)│────────────▶│ None        │
    └──────┬──────┘             └─────────────┘
           ▼
    ┌─────────────┐   absent    ┌─────────────┐
    │ repository. │────────────▶│ None        │
    │ get_by_id() │             └─────────────┘
    └──────┬──────┘
           ▼
    ┌─────────────┐        ┌──────────────────┐
    │ spawn click │ ─ ─ ─ ▶│ increment_click_ │
    │ increment   │detached│ count() (logged) │
    └──────┬──────┘        └──────────────────┘
           ▼
    ┌─────────────┐
    │ Response(   │
    │ long_url,   │
    │ wants_json) │
    └─────────────┘

Key Behaviours
===============
- No method raises to its caller; failures become results or None.
- Unknown, malformed and not-found codes are all reported as None.
- Click increments run as detached tasks: they are not awaited by the request,
  are not cancelled with it, and their failures are only logged.

Classes:
    UrlShorteningService:  Orchestrates creation, lookup and click accounting.

Functions:
    wants_json():  Header heuristics for JSON-preferring clients.
    is_valid_long_url():  Absolute URL validation.
"""

import asyncio
import logging
from collections.abc import Mapping

import validators
from prometheus_client import Counter

from shortener.encoder import ShortCodeEncoder
from shortener.enums import RequestStatus
from shortener.models import LONG_URL_MAX_LENGTH
from shortener.repository import ShortUrlRepository
from shortener.schemas import CreateShortUrlResult, HandleShortUrlResponse

__all__ = [
    "INVALID_URL_MESSAGE",
    "PERSISTENCE_FAILURE_MESSAGE",
    "UNEXPECTED_FAILURE_MESSAGE",
    "UrlShorteningService",
    "is_valid_long_url",
    "wants_json",
]

INVALID_URL_MESSAGE = "The provided URL is not valid."
PERSISTENCE_FAILURE_MESSAGE = "Could not save the URL to the database."
UNEXPECTED_FAILURE_MESSAGE = "An unexpected error occurred while shortening the URL."

CREATION_REQUESTS_TOTAL = Counter(
    "shortener_creation_requests_total",
    "Short URL creation requests by outcome",
    ["status"],
)
LOOKUP_REQUESTS_TOTAL = Counter(
    "shortener_lookup_requests_total",
    "Short code lookup requests by outcome",
    ["status"],
)
CLICK_INCREMENT_FAILURES_TOTAL = Counter(
    "shortener_click_increment_failures_total",
    "Detached click count increments that failed",
)


def is_valid_long_url(long_url: str) -> bool:
    if not isinstance(long_url, str) or not long_url or len(long_url) > LONG_URL_MAX_LENGTH:
        return False
    return bool(validators.url(long_url, simple_host=True, strict_query=False))


def wants_json(headers: Mapping[str, str]) -> bool:
    """Guess whether the client prefers a JSON body over a redirect.

    Any one of these is enough (header names are case-insensitive):
    Accept contains application/json, X-Requested-With is XMLHttpRequest,
    Sec-Fetch-Mode is cors, Referer contains /swagger, or Origin is present.
    """
    normalized = {name.lower(): value for name, value in headers.items()}

    accept = normalized.get("accept", "")
    requested_with = normalized.get("x-requested-with", "")
    fetch_mode = normalized.get("sec-fetch-mode", "")
    referer = normalized.get("referer", "")

    return (
        "application/json" in accept.lower()
        or requested_with.lower() == "xmlhttprequest"
        or fetch_mode.lower() == "cors"
        or "/swagger" in referer.lower()
        or "origin" in normalized
    )


class UrlShorteningService:
    """Service boundary for creating short URLs and resolving short codes.

    Example:
        >>> service = UrlShorteningService(repository, ShortCodeEncoder("salt"))
        >>> result = await service.create_short_url("https://example.com/a", "https", "sho.rt")
        >>> result.short_url
        'https://sho.rt/...'
        >>> response = await service.handle_short_url_request(code, {"Accept": "application/json"})
        >>> response.wants_json
        True
    """

    def __init__(
        self,
        repository: ShortUrlRepository,
        encoder: ShortCodeEncoder,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._repository = repository
        self._encoder = encoder
        self._logger = logger or logging.getLogger("shortener.service")
        self._background_tasks: set[asyncio.Task] = set()

    async def create_short_url(self, long_url: str, scheme: str, host: str) -> CreateShortUrlResult:
        if not is_valid_long_url(long_url):
            CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.info(f"Rejected invalid URL: {long_url!r}")
            return CreateShortUrlResult.failure(INVALID_URL_MESSAGE)

        try:
            short_url_id = await self._repository.add(long_url)
            if not short_url_id:
                CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.PERSISTENCE_ERROR).inc()
                self._logger.error(f"Failed to save the URL and obtain an id: {long_url}")
                return CreateShortUrlResult.failure(PERSISTENCE_FAILURE_MESSAGE)

            short_code = self._encoder.encode(short_url_id)
        except Exception:
            CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.exception(f"Unexpected error while creating the short URL for {long_url}")
            return CreateShortUrlResult.failure(UNEXPECTED_FAILURE_MESSAGE)

        CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Short URL created: id={short_url_id} code={short_code}")
        return CreateShortUrlResult.success(f"{scheme}://{host}/{short_code}")

    async def handle_short_url_request(
        self, short_code: str, headers: Mapping[str, str]
    ) -> HandleShortUrlResponse | None:
        try:
            short_url_id = self._encoder.decode(short_code)
            if short_url_id is None:
                LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
                self._logger.warning(f"Short code {short_code!r} could not be decoded")
                return None

            view = await self._repository.get_by_id(short_url_id)
        except Exception:
            LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.exception(f"Error while resolving short code {short_code!r}")
            return None

        if view is None:
            LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            self._logger.debug(f"No record for short code {short_code!r} (id={short_url_id})")
            return None

        self._schedule_click_increment(short_url_id)

        LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        return HandleShortUrlResponse(long_url=view.long_url, wants_json=wants_json(headers))

    async def drain_background_tasks(self) -> None:
        """Wait for every dispatched click increment to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background_tasks)

    def _schedule_click_increment(self, short_url_id: int) -> None:
        task = asyncio.create_task(
            self._increment_click_count(short_url_id),
            name=f"click-increment-{short_url_id}",
        )
        # The event loop only keeps weak references to tasks.
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _increment_click_count(self, short_url_id: int) -> None:
        try:
            await self._repository.increment_click_count(short_url_id)
        except Exception:
            CLICK_INCREMENT_FAILURES_TOTAL.inc()
            self._logger.exception(f"Click count increment failed for id={short_url_id}")
