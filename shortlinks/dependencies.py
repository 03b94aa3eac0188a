"""Dependency injection with a singleton service manager.

Shared resources (settings, logger, cache, click recorder, scheduler) are
built once at startup by ``ServiceManager``; the only per-request resource is
the database session. ``RequestContext`` bundles both for the service layer.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.cache import InMemoryURLCache, RedisURLCache, URLCache
from shortlinks.clicks import ClickRecorder
from shortlinks.config import Settings, get_settings
from shortlinks.database import async_session, get_db
from shortlinks.enums import CacheBackend
from shortlinks.scheduler import Scheduler
from shortlinks.schemas import ClickMetadata
from shortlinks.url_service import URLShorteningService

__all__ = [
    "RequestContext",
    "ServiceManager",
    "get_click_metadata",
    "get_request_context",
    "get_service_manager",
    "get_url_service",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton holder for resources shared by every request."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    cache: Optional[URLCache] = None
    click_recorder: Optional[ClickRecorder] = None
    scheduler: Optional[Scheduler] = None

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(
        self,
        cache: Optional[URLCache] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        """Initialize shared resources once at startup.

        Args:
            cache: Cache to use instead of the one ``CACHE_BACKEND`` selects
            session_factory: Session factory for background click recording
        """
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger(self.settings)
            self.cache = cache if cache is not None else self._setup_cache(self.settings)
            self.click_recorder = ClickRecorder(session_factory or async_session, self.logger)
            self.scheduler = Scheduler(self.logger)
            self._initialized = True
            self.logger.info(f"Service manager initialized (cache={type(self.cache).__name__})")

    def _setup_logger(self, settings: Settings) -> logging.Logger:
        logger = logging.getLogger("shortlinks")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(settings.LOG_LEVEL)
        return logger

    def _setup_cache(self, settings: Settings) -> URLCache:
        if settings.CACHE_BACKEND is CacheBackend.MEMORY:
            return InMemoryURLCache()
        return RedisURLCache.from_url(
            settings.REDIS_URL,
            timeout=settings.CACHE_OPERATION_TIMEOUT_SECONDS,
            logger=self.logger,
        )

    async def cleanup(self) -> None:
        """Flush pending clicks and release shared resources at shutdown."""
        if self.scheduler is not None:
            await self.scheduler.stop()
            self.scheduler = None
        if self.click_recorder is not None:
            await self.click_recorder.drain()
            self.click_recorder = None
        if self.cache is not None:
            await self.cache.close()
            self.cache = None
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request view over the shared resources.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.time)

    @property
    def cache(self) -> URLCache:
        return self.service_manager.cache

    @property
    def click_recorder(self) -> ClickRecorder:
        return self.service_manager.click_recorder

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
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def get_url_service(ctx: RequestContext = Depends(get_request_context)) -> URLShorteningService:
    return URLShorteningService.from_context(ctx)


def get_click_metadata(request: Request) -> ClickMetadata:
    """Collect the best-effort click details from the redirect request."""
    forwarded_for = request.headers.get("x-forwarded-for")
    client_ip = forwarded_for.split(",")[0].strip() if forwarded_for else None
    if not client_ip and request.client:
        client_ip = request.client.host
    return ClickMetadata(
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
        ip_address=client_ip,
    )
