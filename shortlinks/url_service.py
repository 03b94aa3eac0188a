"""Short-link resolution service - core business logic.

This module orchestrates creation, resolution, statistics, deletion and click
tracking on top of the durable store, the advisory cache and the click
recorder. Expiration and ownership policy live here and nowhere else.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                     URLShorteningService                    │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │ create / delete │  │ resolve (hot)   │  │ track_click  │ │
    │  │ info / stats    │  │ cache → store   │  │ (dispatch)   │ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                    │                    │
                ▼                    ▼                    ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐
    │    URLStore     │  │    URLCache     │  │  ClickRecorder  │
    │  (PostgreSQL)   │  │ (Redis, 1h TTL) │  │ (bg tasks)      │
    └─────────────────┘  └─────────────────┘  └─────────────────┘

Resolution Flow
---------------
::
    ┌─────────────┐
    │ resolve(c)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐  HIT   ┌──────────────────────────────┐
    │ cache.get   │ ─────► │ return cached URL            │
    └──────┬──────┘        │ (no expiry check; stale until│
           │ MISS          │  TTL eviction)               │
           ▼               └──────────────────────────────┘
    ┌─────────────┐
    │ store.find  │ ── absent / expired ──► NotFoundError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache.set   │ ──► return URL
    └─────────────┘

Key Behaviours
===============
- Cache failures never surface; they count as misses.
- Absent and expired codes produce the same ``NotFoundError``.
- Anonymous links without an explicit expiry live for 24 hours; owned links
  without one never expire.
- Delete commits in the database first, then evicts the cache entry.
- Anonymous links may be deleted by anyone (see ``can_delete``).
"""

import asyncio
import datetime
import time
from typing import Optional

from prometheus_client import Counter, Histogram

from shortlinks.auth import Principal
from shortlinks.cache import cache_key
from shortlinks.enums import CacheStatus, RequestStatus
from shortlinks.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ShortLinkError,
)
from shortlinks.models import ShortUrl, utcnow
from shortlinks.schemas import AdminURLResponse, ClickMetadata, ClickView, URLCreate, URLResponse, URLStats
from shortlinks.shortcode import generate
from shortlinks.store import URLStore

__all__ = ["URLShorteningService", "can_delete"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URL_CREATION_REQUESTS_TOTAL = Counter(
    "shortlinks_creation_requests_total",
    "Total short URL creation requests",
    ["status"],
)
URL_RESOLVE_REQUESTS_TOTAL = Counter(
    "shortlinks_resolve_requests_total",
    "Total short code resolutions",
    ["status", "cache_hit"],
)
URL_DELETE_REQUESTS_TOTAL = Counter(
    "shortlinks_delete_requests_total",
    "Total short URL delete requests",
    ["status"],
)
URL_CREATION_DURATION = Histogram(
    "shortlinks_creation_duration_seconds",
    "Time taken to create short URLs",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
URL_RESOLVE_DURATION = Histogram(
    "shortlinks_resolve_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)

_STATUS_BY_ERROR: dict[type[ShortLinkError], RequestStatus] = {
    BadRequestError: RequestStatus.VALIDATION_ERROR,
    ConflictError: RequestStatus.CONFLICT,
    ForbiddenError: RequestStatus.FORBIDDEN,
    NotFoundError: RequestStatus.NOT_FOUND,
}


def _status_for(exc: Exception) -> RequestStatus:
    return _STATUS_BY_ERROR.get(type(exc), RequestStatus.ERROR)


# ============================================================================
# AUTHORIZATION
# ============================================================================


def can_delete(url: ShortUrl, principal: Optional[Principal], is_admin: bool = False) -> bool:
    """Decide whether ``principal`` may delete ``url``.

    Admins may delete anything. Ownerless (anonymous) links may be deleted by
    any caller, authenticated or not. Owned links only by their owner.
    """
    if is_admin:
        return True
    if url.owner_id is None:
        return True
    return principal is not None and principal.id == url.owner_id


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class URLShorteningService:
    """Core service class for short-link operations.

    Example:
        >>> service = URLShorteningService.from_context(ctx)
        >>> view = await service.create(URLCreate(original_url="https://example.com"))
        >>> await service.resolve(view.short_code)
        'https://example.com'
    """

    def __init__(self, ctx: "RequestContext"):
        """Initialize service from a request context.

        Args:
            ctx: Request context exposing ``database``, ``cache``,
                ``click_recorder``, ``logger`` and ``settings``
        """
        self._db = ctx.database
        self._cache = ctx.cache
        self._click_recorder = ctx.click_recorder
        self._logger = ctx.logger
        self._settings = ctx.settings
        self._store = URLStore(ctx.database, ctx.logger)

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "URLShorteningService":
        return cls(ctx)

    @property
    def settings(self):
        return self._settings

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create(self, payload: URLCreate, principal: Optional[Principal] = None) -> URLResponse:
        """Create a short URL and warm the cache with it.

        Args:
            payload: Validated creation request
            principal: Authenticated caller, None for anonymous submissions

        Returns:
            URLResponse: View of the stored record

        Raises:
            ConflictError: Custom code already taken, or generated codes kept
                colliding for ``SHORT_CODE_MAX_ATTEMPTS`` attempts
            BadRequestError: ``expires_at`` is not in the future
        """
        start_time = time.perf_counter()
        try:
            self._logger.info(f"Creating short URL for: {payload.original_url}")

            if payload.custom_code and await self._store.exists(payload.custom_code):
                raise ConflictError(f'Short code "{payload.custom_code}" is already taken')
            expires_at = self._resolve_expiration(payload, principal)

            url = await self._persist(payload, principal, expires_at)
            await self._cache.set(cache_key(url.short_code), url.original_url, self._settings.CACHE_TTL_SECONDS)

            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.info(f"URL created successfully: {url.short_code}")
            return self._to_view(url)

        except ShortLinkError as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=_status_for(exc)).inc()
            self._logger.warning(f"URL creation failed: {exc}")
            raise

        except Exception as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"URL creation error: {exc}")
            raise

        finally:
            URL_CREATION_DURATION.observe(time.perf_counter() - start_time)

    async def resolve(self, short_code: str) -> str:
        """Return the target of ``short_code`` for a redirect.

        A cache hit is returned without touching the database and without an
        expiry check: an expired link that is still cached keeps resolving
        until its cache entry is evicted.

        Raises:
            NotFoundError: Code is absent or expired (indistinguishable)
        """
        start_time = time.perf_counter()
        key = cache_key(short_code)
        try:
            cached = await self._cache.get(key)
            if cached:
                URL_RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.HIT).inc()
                self._logger.debug(f"Cache hit for {short_code}")
                return cached

            url = await self._store.find_by_code(short_code)
            if url is None or url.is_expired():
                raise NotFoundError(f'Short URL "{short_code}" not found')

            await self._cache.set(key, url.original_url, self._settings.CACHE_TTL_SECONDS)
            URL_RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.MISS).inc()
            self._logger.debug(f"Database hit and cached for {short_code}")
            return url.original_url

        except ShortLinkError as exc:
            URL_RESOLVE_REQUESTS_TOTAL.labels(status=_status_for(exc), cache_hit=CacheStatus.MISS).inc()
            raise

        finally:
            URL_RESOLVE_DURATION.observe(time.perf_counter() - start_time)

    async def get_info(self, short_code: str) -> URLResponse:
        """Database-only lookup; expired links stay visible here."""
        return self._to_view(await self._require(short_code))

    async def get_stats(self, short_code: str) -> URLStats:
        self._logger.info(f"Getting statistics for code: {short_code}")
        url = await self._require(short_code)
        clicks = await self._store.recent_clicks(url.id, self._settings.RECENT_CLICKS_LIMIT)
        return URLStats.model_validate(
            {
                **self._to_view(url).model_dump(),
                "recent_clicks": [ClickView.from_model(click) for click in clicks],
            }
        )

    def track_click(self, short_code: str, metadata: Optional[ClickMetadata] = None) -> asyncio.Task:
        """Dispatch click recording in the background and return immediately.

        The returned task never raises; callers on the redirect path must not
        await it.
        """
        return self._click_recorder.dispatch(short_code, metadata or ClickMetadata())

    async def delete(
        self,
        short_code: str,
        principal: Optional[Principal] = None,
        is_admin: bool = False,
    ) -> None:
        """Delete a link after the ownership check, then evict it from cache.

        Raises:
            NotFoundError: Code is absent
            ForbiddenError: Caller may not delete this link
        """
        try:
            url = await self._require(short_code)
            if not can_delete(url, principal, is_admin):
                raise ForbiddenError("You are not authorized to delete this URL")

            await self._store.delete(short_code)
            await self._cache.delete(cache_key(short_code))

            URL_DELETE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.info(f"URL deleted: {short_code}")

        except ShortLinkError as exc:
            URL_DELETE_REQUESTS_TOTAL.labels(status=_status_for(exc)).inc()
            self._logger.warning(f"URL deletion failed for {short_code}: {exc}")
            raise

    async def list_by_owner(self, owner_id: str) -> list[URLResponse]:
        return [self._to_view(url) for url in await self._store.list_by_owner(owner_id)]

    async def list_all(
        self,
        owner_id: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[AdminURLResponse]:
        take = min(limit or self._settings.ADMIN_PAGE_SIZE_DEFAULT, self._settings.ADMIN_PAGE_SIZE_MAX)
        skip = (max(page, 1) - 1) * take
        urls = await self._store.list_all(owner_id=owner_id, skip=skip, take=take)
        return [
            AdminURLResponse.from_model(url, self._settings.BASE_URL, owner_id=url.owner_id)
            for url in urls
        ]

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    def _resolve_expiration(
        self, payload: URLCreate, principal: Optional[Principal]
    ) -> Optional[datetime.datetime]:
        now = utcnow()
        if payload.expires_at is not None:
            if payload.expires_at <= now:
                raise BadRequestError("Expiration date must be in the future")
            return payload.expires_at
        if principal is None:
            return now + datetime.timedelta(hours=self._settings.ANONYMOUS_TTL_HOURS)
        return None

    async def _persist(
        self,
        payload: URLCreate,
        principal: Optional[Principal],
        expires_at: Optional[datetime.datetime],
    ) -> ShortUrl:
        # Generated codes get a few fresh draws; a custom code gets exactly one.
        attempts = 1 if payload.custom_code else max(1, self._settings.SHORT_CODE_MAX_ATTEMPTS)
        attempt = 0
        while True:
            attempt += 1
            short_code = payload.custom_code or generate(self._settings.SHORT_CODE_LENGTH)
            try:
                return await self._store.create(
                    ShortUrl(
                        short_code=short_code,
                        original_url=payload.original_url,
                        owner_id=principal.id if principal else None,
                        click_count=0,
                        expires_at=expires_at,
                    )
                )
            except ConflictError:
                if attempt >= attempts:
                    raise
                self._logger.warning(f"Generated code collided, retrying: {short_code}")

    async def _require(self, short_code: str) -> ShortUrl:
        url = await self._store.find_by_code(short_code)
        if url is None:
            raise NotFoundError(f'Short URL "{short_code}" not found')
        return url

    def _to_view(self, url: ShortUrl) -> URLResponse:
        return URLResponse.from_model(url, self._settings.BASE_URL)
