"""Durable cache invalidation queue.

Producers (order placement, appointment changes, profile edits) append rows
to cache_invalidation_queue instead of deleting cache keys directly, so the
invalidation survives the end of the request that caused it. The
InvalidationProcessor is the only component that mutates rows.

Item lifecycle:
- pending: processed=False, retry_count < max_retries (polled oldest first)
- done: processed=True, processed_at set; deleted after the retention window
- frozen: processed=False, retry_count >= max_retries; excluded from polling
  and kept for operator inspection until reset_frozen() clears it

Example:
    queue = InvalidationQueue(database)

    # Producer side
    await queue.invalidate_user_data(user_id, [CacheType.APPOINTMENTS])
    await queue.invalidate_order_data(order_id, user_id)

    # Processor side
    for item in await queue.fetch_pending(limit=50):
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Sequence

from sqlalchemy import delete, func, select, update

from diagcache.cache.types import USER_SCOPED_TYPES, CacheType, generate_cache_key
from diagcache.persistence.tables import InvalidationQueueTable

if TYPE_CHECKING:
    from diagcache.persistence.db import Database

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETENTION = timedelta(hours=24)
DEFAULT_USER_TYPES: tuple[CacheType, ...] = USER_SCOPED_TYPES


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes returned by backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


@dataclass
class InvalidationItem:
    """Snapshot of one queue row."""

    id: str
    cache_key: str
    cache_type: str
    user_id: str | None
    invalidated_at: datetime
    processed: bool = False
    processed_at: datetime | None = None
    retry_count: int = 0
    error_message: str | None = None

    @classmethod
    def from_row(cls, row: InvalidationQueueTable) -> InvalidationItem:
        return cls(
            id=row.id,
            cache_key=row.cache_key,
            cache_type=row.cache_type,
            user_id=row.user_id,
            invalidated_at=_as_utc(row.invalidated_at) or datetime.now(UTC),
            processed=row.processed,
            processed_at=_as_utc(row.processed_at),
            retry_count=row.retry_count,
            error_message=row.error_message,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cache_key": self.cache_key,
            "cache_type": self.cache_type,
            "user_id": self.user_id,
            "invalidated_at": self.invalidated_at.isoformat(),
            "processed": self.processed,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "retry_count": self.retry_count,
            "error_message": self.error_message,
        }


@dataclass
class QueueStats:
    pending: int = 0
    processing: int = 0
    frozen: int = 0
    processed_today: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "processing": self.processing,
            "frozen": self.frozen,
            "processed_today": self.processed_today,
        }


class InvalidationQueue:
    """Repository over the cache_invalidation_queue table."""

    def __init__(
        self,
        database: Database,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retention: timedelta = DEFAULT_RETENTION,
    ) -> None:
        self.database = database
        self.max_retries = max_retries
        self.retention = retention

    # -------------------------------------------------------------------------
    # Producer API (append-only)
    # -------------------------------------------------------------------------

    async def enqueue_key(
        self,
        cache_key: str,
        cache_type: CacheType | str,
        user_id: str | None = None,
    ) -> str:
        """Queue invalidation of a literal cache key.

        Database errors propagate: a lost invalidation means stale cache, so
        the producer must know.

        Returns:
            Queue item ID
        """
        row = InvalidationQueueTable(
            cache_key=cache_key,
            cache_type=cache_type.value if isinstance(cache_type, CacheType) else cache_type,
            user_id=user_id,
            invalidated_at=datetime.now(UTC),
            processed=False,
            retry_count=0,
        )
        async with self.database.session() as session:
            session.add(row)
            await session.flush()
            item_id = row.id

        logger.debug(f"Queued cache invalidation: {row.cache_type} {cache_key}")
        return item_id

    async def enqueue(
        self,
        cache_type: CacheType,
        identifier: str,
        user_id: str | None = None,
    ) -> str:
        """Queue invalidation of one entity of the given type."""
        return await self.enqueue_key(
            generate_cache_key(cache_type, identifier), cache_type, user_id
        )

    async def invalidate_user_data(
        self,
        user_id: str,
        cache_types: Sequence[CacheType] | None = None,
    ) -> list[str]:
        """Queue invalidation of a user's caches.

        Defaults to purchase history, appointments, analytics and profile.
        All rows are inserted in one transaction.
        """
        types = tuple(cache_types) if cache_types else DEFAULT_USER_TYPES
        now = datetime.now(UTC)
        rows = [
            InvalidationQueueTable(
                cache_key=generate_cache_key(cache_type, user_id),
                cache_type=cache_type.value,
                user_id=user_id,
                invalidated_at=now,
                processed=False,
                retry_count=0,
            )
            for cache_type in types
        ]
        async with self.database.session() as session:
            session.add_all(rows)
            await session.flush()
            ids = [row.id for row in rows]

        logger.debug(f"Queued {len(ids)} cache invalidations for user {user_id}")
        return ids

    async def invalidate_order_data(self, order_id: str, user_id: str | None = None) -> str:
        """Queue invalidation of an order (and the owner's purchase history)."""
        return await self.enqueue(CacheType.ORDER_DETAILS, order_id, user_id)

    # -------------------------------------------------------------------------
    # Processor API
    # -------------------------------------------------------------------------

    async def fetch_pending(self, limit: int) -> list[InvalidationItem]:
        """Oldest pending items that are still under the retry ceiling."""
        async with self.database.session() as session:
            result = await session.execute(
                select(InvalidationQueueTable)
                .where(
                    InvalidationQueueTable.processed.is_(False),
                    InvalidationQueueTable.retry_count < self.max_retries,
                )
                .order_by(InvalidationQueueTable.invalidated_at.asc())
                .limit(limit)
            )
            return [InvalidationItem.from_row(row) for row in result.scalars().all()]

    async def mark_processed(self, item_id: str) -> bool:
        """Mark an item done. Returns False if no pending row matched."""
        async with self.database.session() as session:
            result = await session.execute(
                update(InvalidationQueueTable)
                .where(
                    InvalidationQueueTable.id == item_id,
                    InvalidationQueueTable.processed.is_(False),
                )
                .values(processed=True, processed_at=datetime.now(UTC), error_message=None)
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)  # type: ignore[attr-defined]

    async def mark_failed(self, item_id: str, error_message: str) -> bool:
        """Record a failed attempt. Returns False if no pending row matched.

        The increment happens in SQL so concurrent processors never lose one.
        """
        async with self.database.session() as session:
            result = await session.execute(
                update(InvalidationQueueTable)
                .where(
                    InvalidationQueueTable.id == item_id,
                    InvalidationQueueTable.processed.is_(False),
                )
                .values(
                    retry_count=InvalidationQueueTable.retry_count + 1,
                    error_message=error_message,
                )
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)  # type: ignore[attr-defined]

    async def cleanup_processed(self, now: datetime | None = None) -> int:
        """Delete processed items older than the retention window."""
        cutoff = (now or datetime.now(UTC)) - self.retention
        async with self.database.session() as session:
            result = await session.execute(
                delete(InvalidationQueueTable)
                .where(
                    InvalidationQueueTable.processed.is_(True),
                    InvalidationQueueTable.processed_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            return int(result.rowcount or 0)  # type: ignore[attr-defined]

    # -------------------------------------------------------------------------
    # Operator API
    # -------------------------------------------------------------------------

    async def get_item(self, item_id: str) -> InvalidationItem | None:
        async with self.database.session() as session:
            row = await session.get(InvalidationQueueTable, item_id)
            return InvalidationItem.from_row(row) if row is not None else None

    async def list_frozen(self, limit: int = 100) -> list[InvalidationItem]:
        """Items that hit the retry ceiling and are no longer polled."""
        async with self.database.session() as session:
            result = await session.execute(
                select(InvalidationQueueTable)
                .where(
                    InvalidationQueueTable.processed.is_(False),
                    InvalidationQueueTable.retry_count >= self.max_retries,
                )
                .order_by(InvalidationQueueTable.invalidated_at.asc())
                .limit(limit)
            )
            return [InvalidationItem.from_row(row) for row in result.scalars().all()]

    async def reset_frozen(self, item_ids: Sequence[str] | None = None) -> int:
        """Return frozen items to the pending state.

        Args:
            item_ids: Items to reset (None for every frozen item)

        Returns:
            Number of items reset
        """
        stmt = (
            update(InvalidationQueueTable)
            .where(
                InvalidationQueueTable.processed.is_(False),
                InvalidationQueueTable.retry_count >= self.max_retries,
            )
            .values(retry_count=0, error_message=None)
            .execution_options(synchronize_session=False)
        )
        if item_ids is not None:
            stmt = stmt.where(InvalidationQueueTable.id.in_(list(item_ids)))

        async with self.database.session() as session:
            result = await session.execute(stmt)
            count = int(result.rowcount or 0)  # type: ignore[attr-defined]

        if count:
            logger.info(f"Reset {count} frozen cache invalidation items")
        return count

    async def get_stats(self, processing: int = 0) -> QueueStats:
        """Queue counts for monitoring. Returns zeros on failure."""
        start_of_day = datetime.now(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        count = select(func.count()).select_from(InvalidationQueueTable)

        try:
            async with self.database.session() as session:
                pending = await session.scalar(
                    count.where(
                        InvalidationQueueTable.processed.is_(False),
                        InvalidationQueueTable.retry_count < self.max_retries,
                    )
                )
                frozen = await session.scalar(
                    count.where(
                        InvalidationQueueTable.processed.is_(False),
                        InvalidationQueueTable.retry_count >= self.max_retries,
                    )
                )
                processed_today = await session.scalar(
                    count.where(
                        InvalidationQueueTable.processed.is_(True),
                        InvalidationQueueTable.processed_at >= start_of_day,
                    )
                )
        except Exception as e:
            logger.error(f"Error getting invalidation queue stats: {e}")
            return QueueStats()

        return QueueStats(
            pending=pending or 0,
            processing=processing,
            frozen=frozen or 0,
            processed_today=processed_today or 0,
        )
