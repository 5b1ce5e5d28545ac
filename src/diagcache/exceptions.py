"""Exception hierarchy for the cache subsystem.

None of these cross the public CacheManager API: the manager converts them into
benign results. They are raised on the strict paths used by cascade handlers so
the invalidation processor can record a retry.
"""

from __future__ import annotations


class CacheError(Exception):
    """Base class for cache subsystem errors."""


class CacheStoreError(CacheError):
    """A call to the remote cache service failed."""

    def __init__(self, operation: str, key: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Cache {operation} failed for {key!r}{detail}")


class InvalidationError(CacheError):
    """A cascade handler could not invalidate the entries for a queue item."""
