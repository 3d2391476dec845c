"""Shared fixtures: an in-memory SQLite database and a stub Redis client."""

import asyncio
import time
from fnmatch import fnmatchcase

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.cache.layer import CacheLayer
from app.core.config import Settings
from app.core.context import AppContext
from app.database import create_db_and_tables, create_session_factory
from app.main import create_app
from app.repositories.task_repository import TaskRepository
from app.services.task_service import TaskService


class StubRedis:
    """Just enough of redis.asyncio.Redis for the cache layer, with TTLs."""

    def __init__(self):
        self.store: dict[str, tuple[str, float | None]] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False
        self.hang = False
        self.closed = False

    async def _enter(self):
        if self.fail:
            raise RedisConnectionError("stub redis is down")
        if self.hang:
            await asyncio.sleep(3600)

    def _live(self, key):
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self.store[key]
            return None
        return value

    def expire(self, key):
        """Simulate the TTL running out."""
        value, _ = self.store[key]
        self.store[key] = (value, time.monotonic() - 1)

    async def ping(self):
        await self._enter()
        return True

    async def get(self, key):
        await self._enter()
        return self._live(key)

    async def set(self, key, value, ex=None):
        await self._enter()
        self.store[key] = (value, time.monotonic() + ex if ex else None)
        self.ttls[key] = ex
        return True

    async def scan(self, cursor=0, match="*", count=None):
        await self._enter()
        return 0, [key for key in list(self.store) if fnmatchcase(key, match)]

    async def delete(self, *keys):
        await self._enter()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def aclose(self):
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        cache_op_timeout=0.05,
        cache_retry_interval=3600,
        create_tables=True,
    )


@pytest.fixture
def stub_redis() -> StubRedis:
    return StubRedis()


def make_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest_asyncio.fixture
async def engine():
    engine = make_engine()
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    async with create_session_factory(engine)() as session:
        yield session


@pytest_asyncio.fixture
async def cache(settings, stub_redis) -> CacheLayer:
    cache = CacheLayer(settings, client=stub_redis)
    await cache.init_cache()
    return cache


@pytest.fixture
def service(session, cache) -> TaskService:
    return TaskService(TaskRepository(session), cache)


@pytest.fixture
def client(settings, stub_redis):
    context = AppContext(settings, engine=make_engine(), cache_client=stub_redis)
    app = create_app(settings, context=context)
    with TestClient(app) as test_client:
        yield test_client
