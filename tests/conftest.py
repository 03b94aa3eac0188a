"""Shared pytest fixtures for service, store and API tests.

Every test gets its own SQLite database file (aiosqlite) and an in-memory
cache, so the suite runs without PostgreSQL or Redis.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shortlinks.cache import InMemoryURLCache
from shortlinks.database import create_tables, get_db, make_session_factory
from shortlinks.dependencies import RequestContext, ServiceManager, _service_manager, get_service_manager
from shortlinks.main import app
from shortlinks.url_service import URLShorteningService


class FakeClock:
    """Monotonic clock the tests can move forward by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'shortlinks.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> InMemoryURLCache:
    return InMemoryURLCache(clock=clock)


@pytest_asyncio.fixture(scope="function")
async def manager(cache, session_factory) -> AsyncGenerator[ServiceManager, None]:
    await _service_manager.cleanup()
    await _service_manager.initialize(cache=cache, session_factory=session_factory)
    yield _service_manager
    await _service_manager.cleanup()


@pytest.fixture
def service(db_session: AsyncSession, manager: ServiceManager) -> URLShorteningService:
    return URLShorteningService.from_context(RequestContext(database=db_session, service_manager=manager))


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_service_manager() -> ServiceManager:
        return manager

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build the headers the auth gateway forwards for a principal."""

    def _headers(user_id: str, role: str = "USER") -> dict[str, str]:
        return {"X-User-Id": user_id, "X-User-Role": role}

    return _headers
