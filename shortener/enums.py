"""Shared enums for the URL shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    PERSISTENCE_ERROR = "persistence_error"
    NOT_FOUND = "not_found"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache lookup outcomes for metrics."""

    HIT = "hit"
    NEGATIVE_HIT = "negative_hit"
    MISS = "miss"
