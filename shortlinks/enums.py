"""Shared enums for the short-link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["CacheBackend", "CacheStatus", "HealthStatus", "RequestStatus", "Role"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class CacheBackend(StrEnum):
    """Backends the URL cache can run on."""

    REDIS = "redis"
    MEMORY = "memory"


class Role(StrEnum):
    """Principal roles handed over by the auth gateway."""

    USER = "USER"
    ADMIN = "ADMIN"

    @classmethod
    def from_str(cls, value: str | None) -> "Role":
        """Parse a header value, treating anything unknown as a plain user."""
        try:
            return cls((value or "").upper())
        except ValueError:
            return cls.USER
