"""Tests for the durable invalidation queue."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import update

from diagcache.cache.types import CacheType
from diagcache.invalidation.queue import InvalidationItem, InvalidationQueue
from diagcache.persistence.tables import InvalidationQueueTable


async def set_row(queue: InvalidationQueue, item_id: str, **values: object) -> None:
    """Overwrite columns of a queue row."""
    async with queue.database.session() as session:
        await session.execute(
            update(InvalidationQueueTable)
            .where(InvalidationQueueTable.id == item_id)
            .values(**values)
        )


class TestInvalidationItem:
    """Tests for the InvalidationItem dataclass."""

    def test_to_dict(self) -> None:
        """Item serializes with ISO timestamps."""
        item = InvalidationItem(
            id="i-1",
            cache_key="user:purchase:u-1",
            cache_type="purchase_history",
            user_id="u-1",
            invalidated_at=datetime(2024, 1, 1, tzinfo=UTC),
        )

        data = item.to_dict()

        assert data["invalidated_at"] == "2024-01-01T00:00:00+00:00"
        assert data["processed"] is False
        assert data["processed_at"] is None
        assert data["retry_count"] == 0


class TestProducers:
    """Tests for enqueue operations."""

    @pytest.mark.asyncio
    async def test_enqueue(self, queue: InvalidationQueue) -> None:
        """enqueue() stores a pending row keyed by the entity."""
        item_id = await queue.enqueue(CacheType.APPOINTMENTS, "u-1", user_id="u-1")

        item = await queue.get_item(item_id)
        assert item is not None
        assert item.cache_key == "user:appointments:u-1"
        assert item.cache_type == "appointments"
        assert item.user_id == "u-1"
        assert item.processed is False
        assert item.retry_count == 0
        assert item.invalidated_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_enqueue_key_accepts_unknown_type(self, queue: InvalidationQueue) -> None:
        """Literal keys with free-form types are accepted."""
        item_id = await queue.enqueue_key("feature:flags:all", "feature_flags")

        item = await queue.get_item(item_id)
        assert item is not None
        assert item.cache_type == "feature_flags"
        assert item.user_id is None

    @pytest.mark.asyncio
    async def test_invalidate_user_data_defaults(self, queue: InvalidationQueue) -> None:
        """Default user invalidation covers the four user-scoped types."""
        ids = await queue.invalidate_user_data("u-1")

        items = await queue.fetch_pending(limit=10)
        assert len(ids) == 4
        assert {item.cache_type for item in items} == {
            "purchase_history",
            "appointments",
            "analytics",
            "user_profile",
        }
        assert all(item.user_id == "u-1" for item in items)

    @pytest.mark.asyncio
    async def test_invalidate_user_data_subset(self, queue: InvalidationQueue) -> None:
        """Explicit types limit the rows created."""
        await queue.invalidate_user_data("u-1", [CacheType.APPOINTMENTS])

        items = await queue.fetch_pending(limit=10)
        assert [item.cache_key for item in items] == ["user:appointments:u-1"]

    @pytest.mark.asyncio
    async def test_invalidate_order_data(self, queue: InvalidationQueue) -> None:
        """Order invalidation records the order key and owner."""
        item_id = await queue.invalidate_order_data("o-9", user_id="u-1")

        item = await queue.get_item(item_id)
        assert item is not None
        assert item.cache_key == "order:details:o-9"
        assert item.cache_type == "order_details"
        assert item.user_id == "u-1"

    @pytest.mark.asyncio
    async def test_enqueue_propagates_database_errors(self) -> None:
        """Producers learn about failed inserts."""
        database = MagicMock()
        database.session.side_effect = RuntimeError("database down")
        queue = InvalidationQueue(database)

        with pytest.raises(RuntimeError):
            await queue.enqueue(CacheType.USER_PROFILE, "u-1", "u-1")


class TestProcessorApi:
    """Tests for polling and state transitions."""

    @pytest.mark.asyncio
    async def test_fetch_pending_oldest_first(self, queue: InvalidationQueue) -> None:
        """Pending items come back in insertion-time order, limited."""
        now = datetime.now(UTC)
        newer = await queue.enqueue(CacheType.ANALYTICS, "u-2", "u-2")
        older = await queue.enqueue(CacheType.ANALYTICS, "u-1", "u-1")
        oldest = await queue.enqueue(CacheType.ANALYTICS, "u-0", "u-0")
        await set_row(queue, newer, invalidated_at=now)
        await set_row(queue, older, invalidated_at=now - timedelta(minutes=1))
        await set_row(queue, oldest, invalidated_at=now - timedelta(minutes=2))

        items = await queue.fetch_pending(limit=2)

        assert [item.id for item in items] == [oldest, older]

    @pytest.mark.asyncio
    async def test_mark_processed(self, queue: InvalidationQueue) -> None:
        """Processed items leave the pending set; a second mark matches nothing."""
        item_id = await queue.enqueue(CacheType.USER_PROFILE, "u-1", "u-1")

        assert await queue.mark_processed(item_id) is True
        assert await queue.mark_processed(item_id) is False

        item = await queue.get_item(item_id)
        assert item is not None
        assert item.processed is True
        assert item.processed_at is not None
        assert await queue.fetch_pending(limit=10) == []

    @pytest.mark.asyncio
    async def test_mark_failed_until_frozen(self, queue: InvalidationQueue) -> None:
        """Each failure increments retry_count; the ceiling freezes the item."""
        item_id = await queue.enqueue(CacheType.USER_PROFILE, "u-1", "u-1")

        for expected in (1, 2, 3):
            assert await queue.mark_failed(item_id, "boom") is True
            item = await queue.get_item(item_id)
            assert item is not None
            assert item.retry_count == expected
            assert item.error_message == "boom"

        assert await queue.fetch_pending(limit=10) == []
        assert [item.id for item in await queue.list_frozen()] == [item_id]

    @pytest.mark.asyncio
    async def test_mark_failed_on_processed_item(self, queue: InvalidationQueue) -> None:
        """A completed item cannot be failed."""
        item_id = await queue.enqueue(CacheType.USER_PROFILE, "u-1", "u-1")
        await queue.mark_processed(item_id)

        assert await queue.mark_failed(item_id, "late failure") is False


class TestCleanup:
    """Tests for retention cleanup."""

    @pytest.mark.asyncio
    async def test_cleanup_respects_retention(self, queue: InvalidationQueue) -> None:
        """Processed rows older than 24h are deleted; recent ones are kept."""
        now = datetime.now(UTC)
        expired = await queue.enqueue(CacheType.ANALYTICS, "u-1", "u-1")
        recent = await queue.enqueue(CacheType.ANALYTICS, "u-2", "u-2")
        pending = await queue.enqueue(CacheType.ANALYTICS, "u-3", "u-3")
        await set_row(queue, expired, processed=True, processed_at=now - timedelta(hours=25))
        await set_row(queue, recent, processed=True, processed_at=now - timedelta(hours=1))
        await set_row(queue, pending, invalidated_at=now - timedelta(hours=48))

        assert await queue.cleanup_processed() == 1
        assert await queue.get_item(expired) is None
        assert await queue.get_item(recent) is not None
        assert await queue.get_item(pending) is not None

    @pytest.mark.asyncio
    async def test_frozen_items_are_not_cleaned(self, queue: InvalidationQueue) -> None:
        """Frozen rows stay until an operator resets them."""
        item_id = await queue.enqueue(CacheType.ANALYTICS, "u-1", "u-1")
        await set_row(
            queue,
            item_id,
            retry_count=3,
            invalidated_at=datetime.now(UTC) - timedelta(days=7),
        )

        assert await queue.cleanup_processed() == 0
        assert await queue.get_item(item_id) is not None


class TestOperatorApi:
    """Tests for frozen-item management and stats."""

    @pytest.mark.asyncio
    async def test_reset_frozen_all(self, queue: InvalidationQueue) -> None:
        """Resetting returns frozen items to the pending set."""
        first = await queue.enqueue(CacheType.ANALYTICS, "u-1", "u-1")
        second = await queue.enqueue(CacheType.ANALYTICS, "u-2", "u-2")
        await set_row(queue, first, retry_count=3, error_message="boom")
        await set_row(queue, second, retry_count=3, error_message="boom")

        assert await queue.reset_frozen() == 2

        items = await queue.fetch_pending(limit=10)
        assert {item.id for item in items} == {first, second}
        assert all(item.retry_count == 0 and item.error_message is None for item in items)

    @pytest.mark.asyncio
    async def test_reset_frozen_selected(self, queue: InvalidationQueue) -> None:
        """Only the listed frozen items are reset."""
        first = await queue.enqueue(CacheType.ANALYTICS, "u-1", "u-1")
        second = await queue.enqueue(CacheType.ANALYTICS, "u-2", "u-2")
        await set_row(queue, first, retry_count=3)
        await set_row(queue, second, retry_count=3)

        assert await queue.reset_frozen([first]) == 1
        assert [item.id for item in await queue.list_frozen()] == [second]

    @pytest.mark.asyncio
    async def test_get_stats(self, queue: InvalidationQueue) -> None:
        """Stats count pending, frozen and processed-today rows."""
        await queue.enqueue(CacheType.ANALYTICS, "u-1", "u-1")
        frozen = await queue.enqueue(CacheType.ANALYTICS, "u-2", "u-2")
        done = await queue.enqueue(CacheType.ANALYTICS, "u-3", "u-3")
        await set_row(queue, frozen, retry_count=3)
        await queue.mark_processed(done)

        stats = await queue.get_stats(processing=1)

        assert stats.to_dict() == {
            "pending": 1,
            "processing": 1,
            "frozen": 1,
            "processed_today": 1,
        }

    @pytest.mark.asyncio
    async def test_get_stats_failure_returns_zeros(self) -> None:
        """A failing database yields zeroed stats instead of raising."""
        database = MagicMock()
        database.session.side_effect = RuntimeError("database down")

        stats = await InvalidationQueue(database).get_stats()

        assert stats.to_dict() == {"pending": 0, "processing": 0, "frozen": 0, "processed_today": 0}
