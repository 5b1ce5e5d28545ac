"""SQLAlchemy ORM models for the durable side of the cache subsystem.

- cache_invalidation_queue: pending invalidation requests (append-only for
  producers, mutated only by the invalidation processor)
- cache_operation_logs / cache_error_logs: fire-and-forget audit trail

Column types are portable so the same models run on PostgreSQL and SQLite;
JSON columns become JSONB on PostgreSQL.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class InvalidationQueueTable(Base):
    """Pending cache invalidation requests.

    State per row:
    - pending: processed=False, retry_count < max retries
    - done: processed=True, processed_at set
    - frozen: processed=False, retry_count >= max retries (kept for inspection)
    """

    __tablename__ = "cache_invalidation_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    cache_key: Mapped[str] = mapped_column(Text, nullable=False)
    cache_type: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    invalidated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        # Poll query: processed = false AND retry_count < N ORDER BY invalidated_at
        Index("idx_invalidation_queue_pending", "processed", "retry_count", "invalidated_at"),
        # Cleanup query: processed = true AND processed_at < cutoff
        Index("idx_invalidation_queue_processed", "processed", "processed_at"),
    )


class CacheOperationLogTable(Base):
    """Audit record of a cache operation."""

    __tablename__ = "cache_operation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    operation: Mapped[str] = mapped_column(String(32), nullable=False)
    cache_key: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JsonType, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )


class CacheErrorLogTable(Base):
    """Audit record of a failed cache operation."""

    __tablename__ = "cache_error_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    operation: Mapped[str] = mapped_column(String(32), nullable=False)
    cache_key: Mapped[str] = mapped_column(Text, nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
