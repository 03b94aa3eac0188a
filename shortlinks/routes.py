"""FastAPI route definitions for the short-link REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /urls
        ├─ URLCreate (request body), optional principal
        └─ URLResponse (201) or 400/409/422

    GET    /urls/:code                GET /urls/:code/stats
        └─ URLResponse (200) or 404       └─ URLStats (200) or 404

    DELETE /urls/:code
        └─ 204 or 403/404

    GET    /users/me/urls             (principal required)
        └─ [URLResponse] (200) or 401

    GET    /admin/urls                DELETE /admin/urls/:code   (admin only)
        └─ [AdminURLResponse] (200)       └─ 204 or 404

    GET    /:code
        └─ 302 Redirect or 404

Key Behaviours
===============
- Domain errors (``ShortLinkError``) are rendered by the handler in
  ``shortlinks.main``; routes only call the service.
- The redirect dispatches click recording and responds without awaiting it.
- The principal comes from the auth gateway headers (``shortlinks.auth``).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from shortlinks.auth import Principal, get_principal, require_admin, require_principal
from shortlinks.dependencies import RequestContext, get_click_metadata, get_request_context, get_url_service
from shortlinks.enums import HealthStatus
from shortlinks.models import utcnow
from shortlinks.schemas import (
    AdminURLResponse,
    ClickMetadata,
    HealthResponse,
    ServiceHealth,
    URLCreate,
    URLResponse,
    URLStats,
)
from shortlinks.url_service import URLShorteningService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    if not await ctx.cache.ping():
        cache_status = HealthStatus.UNHEALTHY

    # The cache is advisory, so only the database decides overall health.
    status = db_status
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(
        status=status,
        timestamp=utcnow(),
        services=ServiceHealth(database=db_status, cache=cache_status),
    )


@router.post("/urls", response_model=URLResponse, status_code=201, tags=["urls"])
async def create_url(
    payload: URLCreate,
    principal: Optional[Principal] = Depends(get_principal),
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> URLResponse:
    url = await service.create(payload, principal)
    ctx.logger.info(
        f"URL shortened successfully: {url.short_code}",
        extra={"operation": "create", "short_code": url.short_code, "duration_ms": ctx.get_duration()},
    )
    return url


@router.get("/urls/{short_code}", response_model=URLResponse, tags=["urls"])
async def get_url_info(
    short_code: str,
    service: URLShorteningService = Depends(get_url_service),
) -> URLResponse:
    return await service.get_info(short_code)


@router.get("/urls/{short_code}/stats", response_model=URLStats, tags=["urls"])
async def get_url_stats(
    short_code: str,
    service: URLShorteningService = Depends(get_url_service),
) -> URLStats:
    return await service.get_stats(short_code)


@router.delete("/urls/{short_code}", status_code=204, tags=["urls"])
async def delete_url(
    short_code: str,
    principal: Optional[Principal] = Depends(get_principal),
    service: URLShorteningService = Depends(get_url_service),
) -> Response:
    is_admin = principal is not None and principal.is_admin
    await service.delete(short_code, principal, is_admin)
    return Response(status_code=204)


@router.get("/users/me/urls", response_model=list[URLResponse], tags=["users"])
async def get_my_urls(
    principal: Principal = Depends(require_principal),
    service: URLShorteningService = Depends(get_url_service),
) -> list[URLResponse]:
    return await service.list_by_owner(principal.id)


@router.get("/admin/urls", response_model=list[AdminURLResponse], tags=["admin"])
async def list_all_urls(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    owner_id: Optional[str] = Query(None),
    _: Principal = Depends(require_admin),
    service: URLShorteningService = Depends(get_url_service),
) -> list[AdminURLResponse]:
    return await service.list_all(owner_id=owner_id, page=page, limit=limit)


@router.delete("/admin/urls/{short_code}", status_code=204, tags=["admin"])
async def admin_delete_url(
    short_code: str,
    principal: Principal = Depends(require_admin),
    service: URLShorteningService = Depends(get_url_service),
) -> Response:
    await service.delete(short_code, principal, is_admin=True)
    return Response(status_code=204)


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    metadata: ClickMetadata = Depends(get_click_metadata),
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> RedirectResponse:
    original_url = await service.resolve(short_code)

    # Not awaited: the click may still be in flight when the client follows the redirect.
    service.track_click(short_code, metadata)

    ctx.logger.info(
        f"Redirect successful: {short_code} -> {original_url}",
        extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=original_url, status_code=302)
