"""FastAPI application entry point for the short-link service.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌───────────────────┐
    │ lifespan()        │
    │ init_db()         │
    │ manager.init()    │
    │ scheduler.start() │
    └──────┬────────────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌──────────────────────┐
    │ lifespan() shutdown: │
    │ stop scheduler,      │
    │ drain clicks, close  │
    │ cache, close_db()    │
    └──────────────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn shortlinks.main:app --host 0.0.0.0 --port 3000

**Shorten a URL**::
    curl -X POST http://localhost:3000/urls \
         -H "Content-Type: application/json" \
         -d '{"original_url": "https://example.com"}'

Key Behaviours
===============
- Tables are created on startup.
- ``ShortLinkError`` subclasses are rendered as ``{"detail": ...}`` with
  their own status code.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortlinks.config import get_settings
from shortlinks.database import close_db, init_db
from shortlinks.dependencies import _service_manager
from shortlinks.exceptions import ShortLinkError
from shortlinks.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    _service_manager.scheduler.start(settings)
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short-link service with cache-aside resolution and click analytics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShortLinkError)
async def short_link_error_handler(request: Request, exc: ShortLinkError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
