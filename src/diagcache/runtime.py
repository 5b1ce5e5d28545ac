"""Runtime wiring for diagcache.

CacheSystem is the composition root: it owns the store, audit log, cache
manager, invalidation queue and processor, and their start/stop order. Host
applications create one per process and pass its parts to the code that needs
them.

Example:
    system = CacheSystem.from_settings(settings)
    await system.start()
    ...
    await system.stop()

    # FastAPI
    app = FastAPI(lifespan=cache_system_lifespan)
"""

from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, AsyncIterator

from diagcache.cache.audit import CacheAuditLog
from diagcache.cache.manager import CacheManager, HealthStatus
from diagcache.cache.store import CacheStore
from diagcache.invalidation.processor import InvalidationProcessor
from diagcache.invalidation.queue import InvalidationQueue
from diagcache.observability.logging import configure_logging
from diagcache.observability.metrics import get_metrics
from diagcache.persistence.db import Database

if TYPE_CHECKING:
    from fastapi import FastAPI

    from diagcache.config import Settings

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class CacheSystem:
    """Owns the cache subsystem components and their lifecycle."""

    def __init__(
        self,
        *,
        database: Database,
        cache: CacheManager,
        audit: CacheAuditLog,
        queue: InvalidationQueue,
        processor: InvalidationProcessor,
        autostart: bool = True,
    ) -> None:
        self.database = database
        self.cache = cache
        self.audit = audit
        self.queue = queue
        self.processor = processor
        self.autostart = autostart
        self._started = False
        self._signals_installed: list[signal.Signals] = []
        self._shutdown_event = asyncio.Event()

    @classmethod
    def from_settings(cls, settings: Settings) -> CacheSystem:
        database = Database.from_settings(settings)
        store = CacheStore.from_config(settings.redis_url, settings.redis_token)
        audit = CacheAuditLog(
            database,
            buffer_size=settings.cache_audit_buffer_size,
            enabled=settings.cache_audit_enabled,
        )
        cache = CacheManager(
            store,
            audit,
            compression_threshold=settings.cache_compression_threshold,
            healthy_latency_ms=settings.cache_healthy_latency_ms,
        )
        queue = InvalidationQueue(
            database,
            max_retries=settings.invalidation_max_retries,
            retention=timedelta(hours=settings.invalidation_retention_hours),
        )
        processor = InvalidationProcessor(
            cache,
            queue,
            poll_interval=settings.invalidation_poll_interval,
            batch_size=settings.invalidation_batch_size,
        )
        return cls(
            database=database,
            cache=cache,
            audit=audit,
            queue=queue,
            processor=processor,
            autostart=settings.invalidation_autostart,
        )

    @property
    def started(self) -> bool:
        return self._started

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, *, install_signal_handlers: bool = True) -> None:
        """Start the processor and check cache health.

        An unhealthy cache is logged, never raised: the application keeps
        serving from the source of truth.
        """
        if self._started:
            logger.info("Cache system already initialized")
            return
        self._started = True

        if self.autostart:
            self.processor.start()

        health = await self.cache.health_check()
        if health.status is HealthStatus.UNHEALTHY:
            logger.warning(f"Cache health check failed: {health.error}")
        else:
            logger.info(
                f"Cache health check: {health.status.value} ({health.latency_ms}ms)"
            )

        if install_signal_handlers:
            self._install_signal_handlers()

        logger.info("Cache system initialized")

    async def stop(self) -> None:
        """Stop processing and release connections.

        The in-flight batch (if any) completes before connections close.
        """
        if not self._started:
            return
        self._started = False
        self._remove_signal_handlers()

        self.processor.stop()
        await self.processor.wait_idle()
        await self.audit.flush()
        await self.cache.store.close()
        await self.database.dispose()
        logger.info("Cache system stopped")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._signal_handler)
            except (NotImplementedError, RuntimeError):
                # Not the main thread, or the platform lacks signal support
                logger.debug(f"Cannot install handler for {sig.name}")
                continue
            self._signals_installed.append(sig)

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()

    def _signal_handler(self) -> None:
        logger.info("Received shutdown signal, stopping cache invalidation processor")
        self.processor.stop()
        self._shutdown_event.set()

    async def wait_for_shutdown(self) -> None:
        """Block until SIGTERM/SIGINT is received."""
        await self._shutdown_event.wait()

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def health_report(self) -> dict[str, Any]:
        """Full monitoring report for the admin health endpoint."""
        health = await self.cache.health_check()
        stats = await self.cache.get_stats()
        queue_stats = await self.processor.get_stats()
        performance = await self.audit.performance_metrics()
        recent_operations = await self.audit.recent_operations(limit=10)
        recent_errors = await self.audit.recent_errors(limit=5)

        return {
            "status": health.status.value,
            "timestamp": datetime.now(UTC).isoformat(),
            "health": health.to_dict(),
            "stats": stats.to_dict(),
            "invalidation_queue": queue_stats,
            "processor": {
                "running": self.processor.is_running,
                "processing": self.processor.is_processing,
            },
            "performance": performance,
            "recent_operations": recent_operations,
            "recent_errors": recent_errors,
        }


def create_cache_system(settings: Settings | None = None) -> CacheSystem:
    """Build a CacheSystem from settings (the process settings by default)."""
    if settings is None:
        from diagcache.config import settings as default_settings

        settings = default_settings
    return CacheSystem.from_settings(settings)


@asynccontextmanager
async def cache_system_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """FastAPI lifespan that runs a CacheSystem for the application's lifetime.

    A system already placed on app.state.cache_system is used as-is. Signal
    handling is left to the ASGI server, which stops the lifespan on shutdown.
    """
    from diagcache.config import settings

    json_format = settings.log_json if settings.log_json is not None else settings.env != "dev"
    configure_logging(json_format=json_format, level=settings.log_level)
    get_metrics()

    system: CacheSystem | None = getattr(app.state, "cache_system", None)
    if system is None:
        system = create_cache_system(settings)
        app.state.cache_system = system

    await system.start(install_signal_handlers=False)
    try:
        yield
    finally:
        await system.stop()
