"""Background processor for the cache invalidation queue.

A timer fires every poll interval; each tick starts a batch unless one is
already in flight, in which case the tick is skipped. A batch fetches the
oldest pending items, runs the cascade handler for each, and records the
outcome on the queue row. Processed rows past the retention window are then
cleaned up, on every tick, whether or not the batch found work.

Example:
    processor = InvalidationProcessor(cache, queue)
    processor.start()

    # One-off run (admin action, CLI)
    result = await processor.process_queue()

    # Shutdown: stop ticking, let the in-flight batch finish
    processor.stop()
    await processor.wait_idle()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from diagcache.invalidation.handlers import run_cascade
from diagcache.observability.logging import LogContext
from diagcache.observability.metrics import (
    record_invalidation_batch,
    record_invalidation_item,
)

if TYPE_CHECKING:
    from diagcache.cache.manager import CacheManager
    from diagcache.invalidation.queue import InvalidationItem, InvalidationQueue

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_BATCH_SIZE = 50
DEFAULT_FAILURE_MESSAGE = "Cache invalidation failed"


@dataclass
class BatchResult:
    """Outcome counts of one process_queue() run."""

    processed: int = 0
    errors: int = 0
    skipped: int = 0

    @property
    def did_work(self) -> bool:
        return bool(self.processed or self.errors or self.skipped)

    def to_dict(self) -> dict[str, int]:
        return {"processed": self.processed, "errors": self.errors, "skipped": self.skipped}


class InvalidationProcessor:
    """Polls the invalidation queue and applies cascades to the cache."""

    def __init__(
        self,
        cache: CacheManager,
        queue: InvalidationQueue,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.cache = cache
        self.queue = queue
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self._processing = False
        self._timer: asyncio.Task[None] | None = None
        self._batches: set[asyncio.Task[Any]] = set()

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_processing(self) -> bool:
        return self._processing

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, poll_interval: float | None = None) -> None:
        """Start the periodic timer. Must be called from a running event loop."""
        if self.is_running:
            logger.warning("Cache invalidation processor already running")
            return

        interval = poll_interval if poll_interval is not None else self.poll_interval
        self._timer = asyncio.get_running_loop().create_task(self._run_timer(interval))
        logger.info(f"Started cache invalidation processor (interval: {interval}s)")

    def stop(self) -> None:
        """Stop the timer. An in-flight batch is left to finish."""
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        logger.info("Stopped cache invalidation processor")

    async def wait_idle(self) -> None:
        """Wait for any in-flight batch to complete."""
        if self._batches:
            await asyncio.gather(*self._batches, return_exceptions=True)

    async def _run_timer(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self._tick()

    def _tick(self) -> None:
        if self._processing:
            logger.debug("Invalidation batch still running, skipping tick")
            return
        task = asyncio.get_running_loop().create_task(self.process_queue())
        self._batches.add(task)
        task.add_done_callback(self._batches.discard)

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process_queue(self) -> BatchResult:
        """Process one batch of pending invalidations.

        Returns an empty result without touching the queue when another batch
        is already in flight.
        """
        if self._processing:
            return BatchResult()

        self._processing = True
        result = BatchResult()
        start = time.perf_counter()

        try:
            try:
                items = await self.queue.fetch_pending(self.batch_size)
            except Exception as e:
                logger.error(f"Error fetching cache invalidation queue: {e}")
                result.errors += 1
                items = []

            if items:
                logger.debug(f"Processing {len(items)} cache invalidation items")

            for item in items:
                with LogContext(user_id=item.user_id or "", correlation_id=item.id):
                    await self._process_item(item, result)

            await self._cleanup()
        finally:
            self._processing = False

        record_invalidation_batch(time.perf_counter() - start)
        if result.did_work:
            logger.info(
                f"Cache invalidation batch: {result.processed} processed, "
                f"{result.errors} errors, {result.skipped} skipped"
            )
        return result

    async def _process_item(self, item: InvalidationItem, result: BatchResult) -> None:
        error_message: str | None = None
        try:
            success = await run_cascade(self.cache, item)
            if not success:
                error_message = DEFAULT_FAILURE_MESSAGE
        except Exception as e:
            logger.error(f"Error processing invalidation {item.id} ({item.cache_key}): {e}")
            success = False
            error_message = str(e) or DEFAULT_FAILURE_MESSAGE

        try:
            if success:
                updated = await self.queue.mark_processed(item.id)
            else:
                updated = await self.queue.mark_failed(
                    item.id, error_message or DEFAULT_FAILURE_MESSAGE
                )
        except Exception as e:
            logger.error(f"Error updating invalidation {item.id}: {e}")
            result.errors += 1
            record_invalidation_item(item.cache_type, "error")
            return

        if not updated:
            # Row already processed or removed by someone else
            result.skipped += 1
            record_invalidation_item(item.cache_type, "skipped")
        elif success:
            result.processed += 1
            record_invalidation_item(item.cache_type, "processed")
        else:
            result.errors += 1
            record_invalidation_item(item.cache_type, "failed")
            if item.retry_count + 1 >= self.queue.max_retries:
                logger.warning(
                    f"Invalidation {item.id} ({item.cache_key}) reached "
                    f"{self.queue.max_retries} attempts and is frozen: {error_message}"
                )

    async def _cleanup(self) -> int:
        try:
            removed = await self.queue.cleanup_processed()
        except Exception as e:
            logger.error(f"Error cleaning up processed invalidations: {e}")
            return 0
        if removed:
            logger.debug(f"Removed {removed} processed invalidation items")
        return removed

    async def clear_expired(self) -> int:
        """Run the retention cleanup now."""
        return await self._cleanup()

    async def get_stats(self) -> dict[str, int]:
        stats = await self.queue.get_stats(processing=1 if self._processing else 0)
        return stats.to_dict()
