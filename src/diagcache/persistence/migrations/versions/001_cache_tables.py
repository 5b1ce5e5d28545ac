"""Cache subsystem tables.

Revision ID: 001_cache_tables
Revises:
Create Date: 2026-10-19

Creates tables for:
- cache_invalidation_queue: durable invalidation requests
- cache_operation_logs: audit trail of cache operations
- cache_error_logs: audit trail of cache failures
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001_cache_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "cache_invalidation_queue",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("cache_key", sa.Text(), nullable=False),
        sa.Column("cache_type", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column(
            "invalidated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index(
        "idx_invalidation_queue_pending",
        "cache_invalidation_queue",
        ["processed", "retry_count", "invalidated_at"],
    )
    op.create_index(
        "idx_invalidation_queue_processed",
        "cache_invalidation_queue",
        ["processed", "processed_at"],
    )

    op.create_table(
        "cache_operation_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("operation", sa.String(32), nullable=False),
        sa.Column("cache_key", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_cache_operation_logs_timestamp", "cache_operation_logs", ["timestamp"]
    )

    op.create_table(
        "cache_error_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("operation", sa.String(32), nullable=False),
        sa.Column("cache_key", sa.Text(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("error_stack", sa.Text(), nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_cache_error_logs_timestamp", "cache_error_logs", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_cache_error_logs_timestamp", table_name="cache_error_logs")
    op.drop_table("cache_error_logs")
    op.drop_index("ix_cache_operation_logs_timestamp", table_name="cache_operation_logs")
    op.drop_table("cache_operation_logs")
    op.drop_index("idx_invalidation_queue_processed", table_name="cache_invalidation_queue")
    op.drop_index("idx_invalidation_queue_pending", table_name="cache_invalidation_queue")
    op.drop_table("cache_invalidation_queue")
