"""Resolution service tests.

Covers creation policy, cache-aside resolution (including the accepted
staleness window), statistics, ownership checks on delete, and click tracking.
"""

import asyncio
import datetime
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import func, select

from shortlinks.auth import Principal
from shortlinks.cache import RedisURLCache, cache_key
from shortlinks.config import get_settings
from shortlinks.dependencies import RequestContext
from shortlinks.enums import Role
from shortlinks.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from shortlinks.models import Click, ShortUrl, as_utc, utcnow
from shortlinks.schemas import ClickMetadata, URLCreate
from shortlinks.store import URLStore
from shortlinks.url_service import URLShorteningService, can_delete

ALICE = Principal(id="alice")
BOB = Principal(id="bob")
ADMIN = Principal(id="root", role=Role.ADMIN)


async def _fresh(session_factory, short_code: str) -> ShortUrl | None:
    async with session_factory() as session:
        return await URLStore(session).find_by_code(short_code)


# ============================================================================
# AUTHORIZATION DECISION
# ============================================================================


class TestCanDelete:
    def test_admin_may_delete_anything(self):
        assert can_delete(ShortUrl(owner_id="alice"), None, is_admin=True)

    def test_owner_may_delete(self):
        assert can_delete(ShortUrl(owner_id="alice"), ALICE)

    def test_other_user_may_not_delete(self):
        assert not can_delete(ShortUrl(owner_id="alice"), BOB)

    def test_anonymous_caller_may_not_delete_owned_link(self):
        assert not can_delete(ShortUrl(owner_id="alice"), None)

    def test_anyone_may_delete_ownerless_link(self):
        assert can_delete(ShortUrl(owner_id=None), None)
        assert can_delete(ShortUrl(owner_id=None), BOB)


# ============================================================================
# CREATE
# ============================================================================


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_then_resolve_returns_original(self, service):
        view = await service.create(URLCreate(original_url="https://example.com/some/long/path"))

        assert len(view.short_code) == 7
        assert view.short_url == f"{get_settings().BASE_URL}/{view.short_code}"
        assert view.click_count == 0
        assert await service.resolve(view.short_code) == "https://example.com/some/long/path"

    @pytest.mark.asyncio
    async def test_create_populates_cache(self, service, cache):
        view = await service.create(URLCreate(original_url="https://example.com"))

        assert await cache.get(cache_key(view.short_code)) == "https://example.com"

    @pytest.mark.asyncio
    async def test_custom_code_scenario(self, service):
        view = await service.create(
            URLCreate(original_url="https://example.com/a", custom_code="demo"), principal=ALICE
        )

        assert view.short_code == "demo"
        assert view.original_url == "https://example.com/a"
        assert view.click_count == 0
        assert view.expires_at is None

        with pytest.raises(ConflictError, match='Short code "demo" is already taken'):
            await service.create(URLCreate(original_url="https://other.com", custom_code="demo"))

    @pytest.mark.asyncio
    async def test_anonymous_create_expires_in_24_hours(self, service):
        before = utcnow()
        view = await service.create(URLCreate(original_url="https://example.com"))

        expected = before + datetime.timedelta(hours=24)
        assert view.expires_at is not None
        assert abs((as_utc(view.expires_at) - expected).total_seconds()) < 5

    @pytest.mark.asyncio
    async def test_owned_create_never_expires(self, service, session_factory):
        view = await service.create(URLCreate(original_url="https://example.com"), principal=ALICE)

        assert view.expires_at is None
        stored = await _fresh(session_factory, view.short_code)
        assert stored.owner_id == "alice"

    @pytest.mark.asyncio
    async def test_explicit_expiry_is_kept(self, service):
        expires_at = utcnow() + datetime.timedelta(days=3)
        view = await service.create(URLCreate(original_url="https://example.com", expires_at=expires_at))

        assert abs((as_utc(view.expires_at) - expires_at).total_seconds()) < 1

    @pytest.mark.asyncio
    async def test_past_expiry_is_rejected(self, service):
        expires_at = utcnow() - datetime.timedelta(minutes=1)

        with pytest.raises(BadRequestError, match="Expiration date must be in the future"):
            await service.create(URLCreate(original_url="https://example.com", expires_at=expires_at))

    @pytest.mark.asyncio
    async def test_generated_code_collision_is_retried(self, service, monkeypatch):
        await service.create(URLCreate(original_url="https://first.example.com", custom_code="dupcode"))
        codes = iter(["dupcode", "fresh01"])
        monkeypatch.setattr("shortlinks.url_service.generate", lambda length: next(codes))

        view = await service.create(URLCreate(original_url="https://second.example.com"))

        assert view.short_code == "fresh01"

    @pytest.mark.asyncio
    async def test_generated_code_collision_bubbles_after_attempts(self, service, monkeypatch):
        await service.create(URLCreate(original_url="https://first.example.com", custom_code="dupcode"))
        monkeypatch.setattr("shortlinks.url_service.generate", lambda length: "dupcode")

        with pytest.raises(ConflictError):
            await service.create(URLCreate(original_url="https://second.example.com"))


# ============================================================================
# RESOLVE
# ============================================================================


class TestResolve:
    @pytest.mark.asyncio
    async def test_unknown_code_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.resolve("nothere")

    @pytest.mark.asyncio
    async def test_cache_miss_falls_back_to_store_and_refills(self, service, cache):
        view = await service.create(URLCreate(original_url="https://example.com"))
        await cache.delete(cache_key(view.short_code))

        assert await service.resolve(view.short_code) == "https://example.com"
        assert await cache.get(cache_key(view.short_code)) == "https://example.com"

    @pytest.mark.asyncio
    async def test_expired_uncached_code_is_not_found(self, service, db_session):
        db_session.add(
            ShortUrl(
                short_code="old",
                original_url="https://example.com",
                expires_at=utcnow() - datetime.timedelta(hours=1),
            )
        )
        await db_session.commit()

        with pytest.raises(NotFoundError) as expired:
            await service.resolve("old")
        with pytest.raises(NotFoundError) as missing:
            await service.resolve("never")

        # Expired and absent read the same apart from the code itself.
        assert str(expired.value).replace("old", "X") == str(missing.value).replace("never", "X")

    @pytest.mark.asyncio
    async def test_expired_but_cached_code_resolves_until_eviction(self, service, cache, clock, session_factory):
        view = await service.create(
            URLCreate(
                original_url="https://example.com/stale",
                expires_at=utcnow() + datetime.timedelta(hours=1),
            )
        )
        assert await service.resolve(view.short_code) == "https://example.com/stale"

        async with session_factory() as session:
            url = await URLStore(session).find_by_code(view.short_code)
            url.expires_at = utcnow() - datetime.timedelta(seconds=1)
            await session.commit()

        # Accepted staleness window: the cached mapping still answers.
        assert await service.resolve(view.short_code) == "https://example.com/stale"

        clock.advance(get_settings().CACHE_TTL_SECONDS)
        with pytest.raises(NotFoundError):
            await service.resolve(view.short_code)

    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(self, settings_ctx):
        settings_ctx.cache.get.return_value = "https://cached.example.com"
        service = URLShorteningService(settings_ctx)

        assert await service.resolve("abc123") == "https://cached.example.com"
        settings_ctx.cache.get.assert_called_once_with("url:abc123")
        settings_ctx.database.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_cache_outage_degrades_to_store(self, service, monkeypatch):
        down = AsyncMock(spec=redis.Redis)
        down.get = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        down.setex = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        down.delete = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        monkeypatch.setattr(service, "_cache", RedisURLCache(down))

        view = await service.create(URLCreate(original_url="https://example.com"))
        assert await service.resolve(view.short_code) == "https://example.com"
        await service.delete(view.short_code)


@pytest.fixture
def settings_ctx() -> Mock:
    """Context with mocked collaborators, for paths that must not hit the database."""
    ctx = Mock()
    ctx.database = AsyncMock()
    ctx.cache = AsyncMock()
    ctx.click_recorder = MagicMock()
    ctx.logger = MagicMock()
    ctx.settings = get_settings()
    return ctx


# ============================================================================
# INFO / STATS
# ============================================================================


class TestInfoAndStats:
    @pytest.mark.asyncio
    async def test_get_info(self, service):
        created = await service.create(URLCreate(original_url="https://example.com", custom_code="info1"))

        info = await service.get_info("info1")

        assert info.short_code == "info1"
        assert info.created_at == created.created_at

    @pytest.mark.asyncio
    async def test_get_info_ignores_expiry(self, service, db_session):
        db_session.add(
            ShortUrl(
                short_code="expired",
                original_url="https://example.com",
                expires_at=utcnow() - datetime.timedelta(days=1),
            )
        )
        await db_session.commit()

        info = await service.get_info("expired")
        assert info.short_code == "expired"

    @pytest.mark.asyncio
    async def test_get_info_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.get_info("missing")

    @pytest.mark.asyncio
    async def test_get_stats_lists_recent_clicks(self, service, manager):
        await service.create(URLCreate(original_url="https://example.com", custom_code="stats1"))
        for i in range(12):
            await service.track_click("stats1", ClickMetadata(user_agent=f"agent-{i}", referer="https://ref.example.com"))
        await manager.click_recorder.drain()

        stats = await service.get_stats("stats1")

        assert len(stats.recent_clicks) == 10
        assert stats.recent_clicks[0].user_agent == "agent-11"
        assert stats.recent_clicks[0].referer == "https://ref.example.com"
        timestamps = [click.clicked_at for click in stats.recent_clicks]
        assert timestamps == sorted(timestamps, reverse=True)

    @pytest.mark.asyncio
    async def test_get_stats_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.get_stats("missing")


# ============================================================================
# CLICK TRACKING
# ============================================================================


class TestTrackClick:
    @pytest.mark.asyncio
    async def test_concurrent_clicks_are_all_counted(self, service, manager, session_factory):
        await service.create(URLCreate(original_url="https://example.com", custom_code="busy"))

        tasks = [service.track_click("busy", ClickMetadata(user_agent=f"agent-{i}")) for i in range(20)]
        results = await asyncio.gather(*tasks)

        assert all(results)
        stored = await _fresh(session_factory, "busy")
        assert stored.click_count == 20
        async with session_factory() as session:
            count = await session.execute(
                select(func.count()).select_from(Click).where(Click.url_id == stored.id)
            )
        assert count.scalar_one() == 20

    @pytest.mark.asyncio
    async def test_unknown_code_is_silent_noop(self, service, session_factory):
        result = await service.track_click("ghost", ClickMetadata(user_agent="pytest"))

        assert result is False
        async with session_factory() as session:
            count = await session.execute(select(func.count()).select_from(Click))
        assert count.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_click_after_delete_is_dropped(self, service, session_factory):
        await service.create(URLCreate(original_url="https://example.com", custom_code="bye"))
        await service.delete("bye")

        assert await service.track_click("bye", ClickMetadata()) is False
        async with session_factory() as session:
            count = await session.execute(select(func.count()).select_from(Click))
        assert count.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_store_failure_is_logged_not_raised(self, manager, monkeypatch):
        async def explode(self, short_code, metadata):
            raise RuntimeError("database went away")

        monkeypatch.setattr(URLStore, "increment_click_and_insert_click", explode)

        assert await manager.click_recorder.record("any", ClickMetadata()) is False

    @pytest.mark.asyncio
    async def test_track_click_does_not_block(self, settings_ctx):
        service = URLShorteningService(settings_ctx)

        service.track_click("abc123")

        settings_ctx.click_recorder.dispatch.assert_called_once_with("abc123", ClickMetadata())


# ============================================================================
# DELETE
# ============================================================================


class TestDelete:
    @pytest.mark.asyncio
    async def test_non_owner_is_forbidden(self, service):
        await service.create(URLCreate(original_url="https://example.com", custom_code="mine"), principal=ALICE)

        with pytest.raises(ForbiddenError):
            await service.delete("mine", BOB)
        with pytest.raises(ForbiddenError):
            await service.delete("mine", None)

        assert (await service.get_info("mine")).short_code == "mine"

    @pytest.mark.asyncio
    async def test_owner_delete_removes_link_and_cache(self, service, cache):
        await service.create(URLCreate(original_url="https://example.com", custom_code="mine"), principal=ALICE)
        await service.resolve("mine")

        await service.delete("mine", ALICE)

        assert await cache.get(cache_key("mine")) is None
        with pytest.raises(NotFoundError):
            await service.resolve("mine")
        with pytest.raises(NotFoundError):
            await service.get_info("mine")

    @pytest.mark.asyncio
    async def test_admin_delete(self, service):
        await service.create(URLCreate(original_url="https://example.com", custom_code="mine"), principal=ALICE)

        await service.delete("mine", ADMIN, is_admin=True)

        with pytest.raises(NotFoundError):
            await service.get_info("mine")

    @pytest.mark.asyncio
    async def test_anonymous_link_deletable_by_anyone(self, service):
        await service.create(URLCreate(original_url="https://example.com", custom_code="anon1"))

        await service.delete("anon1", None)

        with pytest.raises(NotFoundError):
            await service.get_info("anon1")

    @pytest.mark.asyncio
    async def test_delete_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.delete("missing", ADMIN, is_admin=True)


# ============================================================================
# LISTING
# ============================================================================


class TestListing:
    @pytest.mark.asyncio
    async def test_list_by_owner(self, service):
        await service.create(URLCreate(original_url="https://a.example.com", custom_code="a01"), principal=ALICE)
        await service.create(URLCreate(original_url="https://b.example.com", custom_code="b01"), principal=BOB)

        mine = await service.list_by_owner("alice")

        assert [view.short_code for view in mine] == ["a01"]

    @pytest.mark.asyncio
    async def test_list_all_pages_and_caps_limit(self, service):
        for i in range(5):
            await service.create(URLCreate(original_url=f"https://{i}.example.com", custom_code=f"code{i}"))

        page_one = await service.list_all(page=1, limit=2)
        page_three = await service.list_all(page=3, limit=2)
        everything = await service.list_all(limit=1000)

        assert len(page_one) == 2
        assert len(page_three) == 1
        assert len(everything) == 5
        assert all(view.owner_id is None for view in everything)


# ============================================================================
# CONCURRENT CREATION
# ============================================================================


class TestConcurrentCreate:
    @pytest.mark.asyncio
    async def test_same_custom_code_has_exactly_one_winner(self, session_factory, manager):
        async def attempt(i: int) -> str:
            async with session_factory() as session:
                service = URLShorteningService.from_context(RequestContext(database=session, service_manager=manager))
                try:
                    await service.create(
                        URLCreate(original_url=f"https://{i}.example.com", custom_code="race"),
                        principal=ALICE,
                    )
                except ConflictError:
                    return "conflict"
                return "ok"

        outcomes = await asyncio.gather(*(attempt(i) for i in range(8)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 7
        async with session_factory() as session:
            rows = await session.execute(select(func.count()).select_from(ShortUrl).where(ShortUrl.short_code == "race"))
        assert rows.scalar_one() == 1
