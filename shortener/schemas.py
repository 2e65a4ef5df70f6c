"""Pydantic schemas and result types for the URL shortener.

Schema Hierarchy
=================
::
    ShortenUrlRequest (HTTP input)
    └─ long_url: str  (JSON "longUrl")

    ShortenUrlResponse (HTTP output)
    └─ short_url: str  (JSON "shortUrl")

    LongUrlResponse (HTTP output, JSON clients)
    └─ long_url: str  (JSON "longUrl")

    HealthResponse (HTTP output)
    ├─ status: HealthStatus
    ├─ database: HealthStatus
    └─ cache: HealthStatus

    ReadShortUrlView (repository read projection, cached)
    └─ long_url: str

    UpdateShortUrl (repository overwrite payload)
    ├─ id: int
    └─ long_url: str

    CreateShortUrlResult (service output)
    ├─ is_success: bool
    ├─ short_url: str | None
    └─ error_message: str | None

    HandleShortUrlResponse (service output)
    ├─ long_url: str
    └─ wants_json: bool

Key Behaviours
===============
- HTTP payloads use camelCase on the wire and snake_case in Python.
- ReadShortUrlView carries only the long URL, never click counts or timestamps.
- Service results are plain frozen dataclasses and never carry exceptions.
"""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from shortener.enums import HealthStatus

__all__ = [
    "ShortenUrlRequest",
    "ShortenUrlResponse",
    "LongUrlResponse",
    "HealthResponse",
    "ReadShortUrlView",
    "UpdateShortUrl",
    "CreateShortUrlResult",
    "HandleShortUrlResponse",
]


class ShortenUrlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    long_url: str = Field(..., alias="longUrl", description="Absolute URL to shorten")


class ShortenUrlResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    short_url: str = Field(..., alias="shortUrl")


class LongUrlResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    long_url: str = Field(..., alias="longUrl")


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ReadShortUrlView(BaseModel):
    """Read projection served on the redirect path and stored in the cache."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    long_url: str


class UpdateShortUrl(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1)
    long_url: str


@dataclass(frozen=True)
class CreateShortUrlResult:
    is_success: bool
    short_url: str | None = None
    error_message: str | None = None

    @classmethod
    def success(cls, short_url: str) -> "CreateShortUrlResult":
        return cls(is_success=True, short_url=short_url)

    @classmethod
    def failure(cls, error_message: str) -> "CreateShortUrlResult":
        return cls(is_success=False, error_message=error_message)


@dataclass(frozen=True)
class HandleShortUrlResponse:
    long_url: str
    wants_json: bool
