"""Tests for CacheSystem wiring and lifecycle."""

import logging
from datetime import timedelta

import pytest
from fastapi import FastAPI

from diagcache.cache.types import CacheType
from diagcache.config import Settings
from diagcache.runtime import CacheSystem, cache_system_lifespan


class TestFromSettings:
    """Tests for building a system from configuration."""

    @pytest.mark.asyncio
    async def test_components_follow_settings(self) -> None:
        """Settings flow into every component."""
        settings = Settings(
            _env_file=None,
            REDIS_URL=None,
            REDIS_TOKEN=None,
            DATABASE_URL="sqlite+aiosqlite:///:memory:",
            INVALIDATION_POLL_INTERVAL=2.5,
            INVALIDATION_BATCH_SIZE=10,
            INVALIDATION_MAX_RETRIES=5,
            INVALIDATION_RETENTION_HOURS=12,
            INVALIDATION_AUTOSTART=False,
        )

        system = CacheSystem.from_settings(settings)
        try:
            assert system.cache.available is False
            assert system.processor.poll_interval == 2.5
            assert system.processor.batch_size == 10
            assert system.queue.max_retries == 5
            assert system.queue.retention == timedelta(hours=12)
            assert system.autostart is False

            await system.database.create_all()
            await system.queue.enqueue(CacheType.USER_PROFILE, "u-1", "u-1")
            assert (await system.queue.get_stats()).pending == 1
        finally:
            await system.database.dispose()


class TestLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_system, database, store, fake_redis) -> None:
        """start() runs the processor; stop() releases everything."""
        system = make_system(database, store, autostart=True)

        await system.start(install_signal_handlers=False)
        assert system.started
        assert system.processor.is_running

        await system.stop()
        assert not system.started
        assert not system.processor.is_running
        assert fake_redis.closed

    @pytest.mark.asyncio
    async def test_second_start_is_noop(self, make_system, database, caplog) -> None:
        """Starting twice keeps the first processor timer."""
        system = make_system(database, autostart=True)
        await system.start(install_signal_handlers=False)
        timer = system.processor._timer

        with caplog.at_level(logging.INFO, logger="diagcache.runtime"):
            await system.start(install_signal_handlers=False)

        assert system.processor._timer is timer
        assert "already initialized" in caplog.text
        await system.stop()

    @pytest.mark.asyncio
    async def test_unhealthy_cache_does_not_raise(self, make_system, database, caplog) -> None:
        """A missing cache is logged at startup, not raised."""
        system = make_system(database)

        with caplog.at_level(logging.WARNING, logger="diagcache.runtime"):
            await system.start(install_signal_handlers=False)

        assert "Cache health check failed" in caplog.text
        await system.stop()

    @pytest.mark.asyncio
    async def test_autostart_disabled(self, make_system, database) -> None:
        """With autostart off, the processor is left idle."""
        system = make_system(database, autostart=False)

        await system.start(install_signal_handlers=False)

        assert not system.processor.is_running
        await system.stop()

    @pytest.mark.asyncio
    async def test_signal_stops_processor(self, make_system, database) -> None:
        """A shutdown signal stops the timer and releases waiters."""
        system = make_system(database, autostart=True)
        await system.start()

        system._signal_handler()
        await system.wait_for_shutdown()

        assert not system.processor.is_running
        await system.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, make_system, database) -> None:
        """stop() before start() does nothing."""
        await make_system(database).stop()


class TestHealthReport:
    """Tests for the admin health report."""

    @pytest.mark.asyncio
    async def test_report_sections(self, make_system, database, audit_database, store) -> None:
        """The report combines cache, queue and audit data."""
        system = make_system(database, store, audit_database=audit_database)
        await system.cache.set("user:profile:u-1", {"name": "Ada"}, 60)
        await system.queue.enqueue(CacheType.USER_PROFILE, "u-1", "u-1")
        await system.audit.flush()

        report = await system.health_report()

        assert report["status"] == "healthy"
        assert report["health"]["status"] == "healthy"
        assert report["stats"]["total_keys"] == 1
        assert report["invalidation_queue"]["pending"] == 1
        assert report["processor"] == {"running": False, "processing": False}
        assert any(
            op["cache_key"] == "user:profile:u-1" for op in report["recent_operations"]
        )
        assert report["recent_errors"] == []
        assert "operations_per_hour" in report["performance"]


class TestLifespan:
    """Tests for the FastAPI lifespan."""

    @pytest.mark.asyncio
    async def test_lifespan_uses_installed_system(self, make_system, database) -> None:
        """A system on app.state is started and stopped with the app."""
        app = FastAPI()
        system = make_system(database)
        app.state.cache_system = system

        async with cache_system_lifespan(app):
            assert system.started

        assert not system.started
