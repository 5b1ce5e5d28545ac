"""Fire-and-forget audit trail for cache operations.

Record calls are synchronous: they append to an in-memory buffer and schedule
a single background writer that drains the buffer into cache_operation_logs
and cache_error_logs. Nothing here ever blocks or fails a cache operation:
write failures are logged at debug level and the rows are discarded, and the
buffer is bounded (oldest rows are dropped when full).

Example:
    audit = CacheAuditLog(database)
    audit.record_operation("SET", "user:purchase:u-1", {"size": 120})
    await audit.flush()  # tests and shutdown only
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from diagcache.observability.metrics import key_space
from diagcache.persistence.tables import CacheErrorLogTable, CacheOperationLogTable

if TYPE_CHECKING:
    from diagcache.persistence.db import Database

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1000
WRITE_BATCH_SIZE = 100


@dataclass
class OperationRecord:
    operation: str
    cache_key: str
    metadata: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_row(self) -> CacheOperationLogTable:
        return CacheOperationLogTable(
            operation=self.operation,
            cache_key=self.cache_key,
            details=self.metadata,
            timestamp=self.timestamp,
        )


@dataclass
class ErrorRecord:
    operation: str
    cache_key: str
    error_message: str
    error_stack: str | None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_row(self) -> CacheErrorLogTable:
        return CacheErrorLogTable(
            operation=self.operation,
            cache_key=self.cache_key,
            error_message=self.error_message,
            error_stack=self.error_stack,
            timestamp=self.timestamp,
        )


AuditRecord = OperationRecord | ErrorRecord


class CacheAuditLog:
    """Buffered, best-effort writer for the cache audit tables."""

    def __init__(
        self,
        database: Database | None,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        enabled: bool = True,
    ) -> None:
        self.database = database
        self.enabled = enabled and database is not None
        self._buffer: deque[AuditRecord] = deque(maxlen=buffer_size)
        self._write_lock = asyncio.Lock()
        self._writer: asyncio.Task[None] | None = None
        self.dropped = 0

    @property
    def pending(self) -> int:
        return len(self._buffer)

    # -------------------------------------------------------------------------
    # Recording (never awaits, never raises)
    # -------------------------------------------------------------------------

    def record_operation(self, operation: str, key: str, metadata: dict[str, Any]) -> None:
        self._append(OperationRecord(operation=operation, cache_key=key, metadata=metadata))

    def record_error(self, operation: str, key: str, error: BaseException) -> None:
        stack = "".join(traceback.format_exception(error)) if error.__traceback__ else None
        self._append(
            ErrorRecord(
                operation=operation,
                cache_key=key,
                error_message=str(error) or type(error).__name__,
                error_stack=stack,
            )
        )

    def _append(self, record: AuditRecord) -> None:
        if not self.enabled:
            return
        if len(self._buffer) == self._buffer.maxlen:
            self.dropped += 1
        self._buffer.append(record)
        self._schedule_writer()

    def _schedule_writer(self) -> None:
        if self._writer is not None and not self._writer.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # No loop: rows wait for the next flush()
        self._writer = loop.create_task(self._drain())

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    async def _drain(self) -> None:
        while self._buffer:
            await self._write_batch()

    async def _write_batch(self) -> None:
        async with self._write_lock:
            batch: list[AuditRecord] = []
            while self._buffer and len(batch) < WRITE_BATCH_SIZE:
                batch.append(self._buffer.popleft())
            if not batch or self.database is None:
                return

            try:
                async with self.database.session() as session:
                    session.add_all([record.to_row() for record in batch])
            except Exception as e:
                # Audit logging must never affect cache behaviour
                logger.debug(f"Cache audit logging failed, dropped {len(batch)} rows: {e}")

    async def flush(self) -> None:
        """Write every buffered row now."""
        if self._writer is not None:
            await self._writer
        while self._buffer:
            await self._write_batch()

    # -------------------------------------------------------------------------
    # Reading (admin report)
    # -------------------------------------------------------------------------

    async def recent_operations(self, limit: int = 10) -> list[dict[str, Any]]:
        if self.database is None:
            return []
        try:
            async with self.database.session() as session:
                result = await session.execute(
                    select(CacheOperationLogTable)
                    .order_by(CacheOperationLogTable.timestamp.desc())
                    .limit(limit)
                )
                rows = result.scalars().all()
        except Exception as e:
            logger.error(f"Error reading cache operation logs: {e}")
            return []

        return [
            {
                "operation": row.operation,
                "cache_key": row.cache_key,
                "metadata": row.details,
                "timestamp": row.timestamp.isoformat(),
            }
            for row in rows
        ]

    async def recent_errors(self, limit: int = 5) -> list[dict[str, Any]]:
        if self.database is None:
            return []
        try:
            async with self.database.session() as session:
                result = await session.execute(
                    select(CacheErrorLogTable)
                    .order_by(CacheErrorLogTable.timestamp.desc())
                    .limit(limit)
                )
                rows = result.scalars().all()
        except Exception as e:
            logger.error(f"Error reading cache error logs: {e}")
            return []

        return [
            {
                "operation": row.operation,
                "cache_key": row.cache_key,
                "error_message": row.error_message,
                "timestamp": row.timestamp.isoformat(),
            }
            for row in rows
        ]

    async def performance_metrics(self, window: timedelta = timedelta(hours=1)) -> dict[str, Any]:
        """Summarize logged operations within the window.

        Returns operations count, GET hit rate, and the five most accessed
        key spaces.
        """
        empty: dict[str, Any] = {
            "operations_per_hour": 0,
            "hit_rate": 0.0,
            "most_accessed_keys": [],
        }
        if self.database is None:
            return empty

        since = datetime.now(UTC) - window
        try:
            async with self.database.session() as session:
                result = await session.execute(
                    select(
                        CacheOperationLogTable.operation,
                        CacheOperationLogTable.cache_key,
                        CacheOperationLogTable.details,
                    ).where(CacheOperationLogTable.timestamp >= since)
                )
                rows = result.all()
        except Exception as e:
            logger.error(f"Error calculating cache performance metrics: {e}")
            return empty

        if not rows:
            return empty

        gets = [row for row in rows if row.operation == "GET"]
        hits = sum(1 for row in gets if (row.details or {}).get("hit"))
        hit_rate = hits / len(gets) if gets else 0.0

        spaces = Counter(key_space(row.cache_key or "") for row in rows)
        hours = max(window.total_seconds() / 3600, 1e-9)

        return {
            "operations_per_hour": round(len(rows) / hours, 2),
            "hit_rate": round(hit_rate, 4),
            "most_accessed_keys": [
                {"pattern": pattern, "count": count} for pattern, count in spaces.most_common(5)
            ],
        }
