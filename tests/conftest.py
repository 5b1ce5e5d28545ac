"""Global pytest configuration and fixtures.

Provides an in-memory Redis double and an in-memory SQLite database so the
cache and invalidation layers can be exercised without external services.
"""

from __future__ import annotations

import math
from collections.abc import AsyncIterator, Callable
from fnmatch import fnmatchcase
from typing import Any

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from diagcache.cache.audit import CacheAuditLog
from diagcache.cache.manager import CacheManager
from diagcache.cache.store import CacheStore
from diagcache.invalidation.processor import InvalidationProcessor
from diagcache.invalidation.queue import InvalidationQueue
from diagcache.persistence.db import Database
from diagcache.runtime import CacheSystem

SQLITE_URL = "sqlite+aiosqlite:///:memory:"


class FakePipeline:
    """Buffers commands and replays them on execute()."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._commands: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *args: Any) -> None:
        self._commands.clear()

    def set(self, key: str, value: bytes) -> FakePipeline:
        self._commands.append(("set", (key, value)))
        return self

    def setex(self, key: str, ttl: int, value: bytes) -> FakePipeline:
        self._commands.append(("setex", (key, ttl, value)))
        return self

    async def execute(self) -> list[Any]:
        self._redis._check("pipeline")
        results = []
        for name, args in self._commands:
            results.append(await getattr(self._redis, name)(*args))
        return results


class FakeRedis:
    """Stateful stand-in for redis.asyncio.Redis (decode_responses=False).

    Expiry follows a manual clock moved with advance(). Methods listed in
    fail_on raise a ConnectionError, mimicking an outage.
    """

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.expires_at: dict[str, float] = {}
        self.fail_on: set[str] = set()
        self.info_sections: dict[str, dict[str, Any]] = {
            "memory": {"used_memory_human": "1.5M"},
            "stats": {"keyspace_hits": 75, "keyspace_misses": 25},
        }
        self.now = 0.0
        self.closed = False

    def advance(self, seconds: float) -> None:
        self.now += seconds
        for key, deadline in list(self.expires_at.items()):
            if deadline <= self.now:
                self.data.pop(key, None)
                del self.expires_at[key]

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RedisConnectionError(f"{operation} failed: connection refused")

    async def get(self, key: str) -> bytes | None:
        self._check("get")
        return self.data.get(key)

    async def set(self, key: str, value: bytes) -> bool:
        self._check("set")
        self.data[key] = value
        self.expires_at.pop(key, None)
        return True

    async def setex(self, key: str, ttl: int, value: bytes) -> bool:
        self._check("setex")
        if ttl <= 0:
            raise ResponseError("invalid expire time in 'setex' command")
        self.data[key] = value
        self.expires_at[key] = self.now + ttl
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expires_at.pop(key, None)
        return removed

    async def scan_iter(self, match: str = "*", count: int | None = None) -> AsyncIterator[bytes]:
        self._check("scan_iter")
        for key in list(self.data):
            if fnmatchcase(key, match):
                yield key.encode()

    async def exists(self, key: str) -> int:
        self._check("exists")
        return 1 if key in self.data else 0

    async def ttl(self, key: str) -> int:
        self._check("ttl")
        if key not in self.data:
            return -2
        if key not in self.expires_at:
            return -1
        return math.ceil(self.expires_at[key] - self.now)

    async def expire(self, key: str, ttl: int) -> bool:
        self._check("expire")
        if key not in self.data:
            return False
        self.expires_at[key] = self.now + ttl
        return True

    async def mget(self, keys: list[str]) -> list[bytes | None]:
        self._check("mget")
        return [self.data.get(key) for key in keys]

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def dbsize(self) -> int:
        self._check("dbsize")
        return len(self.data)

    async def info(self, section: str | None = None) -> dict[str, Any]:
        self._check("info")
        return dict(self.info_sections.get(section or "", {}))

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Empty in-memory Redis."""
    return FakeRedis()


@pytest.fixture
def store(fake_redis: FakeRedis) -> CacheStore:
    """Enabled store backed by the fake Redis."""
    return CacheStore(fake_redis)  # type: ignore[arg-type]


@pytest.fixture
def cache(store: CacheStore) -> CacheManager:
    """Cache manager without an audit log."""
    return CacheManager(store)


@pytest_asyncio.fixture
async def database() -> AsyncIterator[Database]:
    """In-memory SQLite database with all tables created."""
    db = Database(SQLITE_URL)
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def audit_database() -> AsyncIterator[Database]:
    """Second in-memory database for audit tables."""
    db = Database(SQLITE_URL)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def queue(database: Database) -> InvalidationQueue:
    """Invalidation queue with default retry and retention settings."""
    return InvalidationQueue(database)


@pytest.fixture
def make_system() -> Callable[..., CacheSystem]:
    """Factory assembling a CacheSystem from test components.

    The audit log gets its own database so its background writer never shares
    the queue's SQLite connection.
    """

    def factory(
        database: Database,
        store: CacheStore | None = None,
        audit_database: Database | None = None,
        autostart: bool = False,
    ) -> CacheSystem:
        audit = CacheAuditLog(audit_database)
        cache = CacheManager(store or CacheStore.disabled(), audit)
        queue = InvalidationQueue(database)
        processor = InvalidationProcessor(cache, queue, poll_interval=60.0)
        return CacheSystem(
            database=database,
            cache=cache,
            audit=audit,
            queue=queue,
            processor=processor,
            autostart=autostart,
        )

    return factory
