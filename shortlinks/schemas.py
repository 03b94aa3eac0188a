"""Pydantic schemas for request validation and response views.

Schema Hierarchy
=================
::
    URLCreate (Input)
    ├─ original_url: str (scheme required, <= 2048 chars)
    ├─ custom_code: str | None ([A-Za-z0-9_-]{3,10}, not a route name)
    └─ expires_at: datetime | None

    URLResponse (Output)
    ├─ short_code: str
    ├─ short_url: str (BASE_URL + "/" + short_code)
    ├─ original_url: str
    ├─ click_count: int
    ├─ expires_at: datetime | None
    └─ created_at: datetime

    URLStats (Output)            AdminURLResponse (Output)
    ├─ ...URLResponse            ├─ ...URLResponse
    └─ recent_clicks: [ClickView]└─ owner_id: str | None

    ClickMetadata (Internal)
    ├─ user_agent: str | None
    ├─ referer: str | None
    └─ ip_address: str | None

Key Behaviours
===============
- URL validation uses the validators library; a scheme is mandatory.
- Naive ``expires_at`` values are read as UTC.
- Empty click metadata strings collapse to None.
"""

import datetime
import re

import validators
from pydantic import BaseModel, Field, field_validator

from shortlinks.enums import HealthStatus
from shortlinks.models import Click, ShortUrl, as_utc

__all__ = [
    "AdminURLResponse",
    "ClickMetadata",
    "ClickView",
    "HealthResponse",
    "ServiceHealth",
    "URLCreate",
    "URLResponse",
    "URLStats",
]

MAX_URL_LENGTH = 2048
CUSTOM_CODE_PATTERN = re.compile(r"[A-Za-z0-9_-]{3,10}")
# Paths served ahead of the /{short_code} redirect route.
RESERVED_CODES = frozenset({"admin", "docs", "health", "metrics", "redoc", "urls", "users"})


class URLCreate(BaseModel):
    original_url: str = Field(..., max_length=MAX_URL_LENGTH)
    custom_code: str | None = None
    expires_at: datetime.datetime | None = None

    @field_validator("original_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if "://" not in v or not validators.url(v):
            raise ValueError("Please provide a valid URL with protocol (http/https)")
        return v

    @field_validator("custom_code")
    @classmethod
    def validate_custom_code(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not CUSTOM_CODE_PATTERN.fullmatch(v):
            raise ValueError("Custom code must be 3-10 alphanumeric characters, underscores, or hyphens")
        if v in RESERVED_CODES:
            raise ValueError(f'Custom code "{v}" is reserved')
        return v

    @field_validator("expires_at")
    @classmethod
    def normalize_expires_at(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return as_utc(v)


class ClickMetadata(BaseModel):
    """Best-effort request details stored with each click. Never validated."""

    user_agent: str | None = None
    referer: str | None = None
    ip_address: str | None = None

    @field_validator("user_agent", "referer", "ip_address")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        return v or None


class URLResponse(BaseModel):
    short_code: str
    short_url: str
    original_url: str
    click_count: int
    expires_at: datetime.datetime | None = None
    created_at: datetime.datetime

    @classmethod
    def from_model(cls, url: ShortUrl, base_url: str, **extra) -> "URLResponse":
        return cls(
            short_code=url.short_code,
            short_url=f"{base_url.rstrip('/')}/{url.short_code}",
            original_url=url.original_url,
            click_count=url.click_count,
            expires_at=as_utc(url.expires_at),
            created_at=as_utc(url.created_at),
            **extra,
        )


class ClickView(BaseModel):
    clicked_at: datetime.datetime
    user_agent: str | None = None
    referer: str | None = None

    @classmethod
    def from_model(cls, click: Click) -> "ClickView":
        return cls(clicked_at=as_utc(click.clicked_at), user_agent=click.user_agent, referer=click.referer)


class URLStats(URLResponse):
    recent_clicks: list[ClickView] = Field(default_factory=list, description="Newest first, at most 10")


class AdminURLResponse(URLResponse):
    owner_id: str | None = None


class ServiceHealth(BaseModel):
    database: HealthStatus
    cache: HealthStatus


class HealthResponse(BaseModel):
    status: HealthStatus
    timestamp: datetime.datetime
    services: ServiceHealth
