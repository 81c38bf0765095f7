"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from lastmile.app.main import app
from lastmile.app.db.session import get_db, Base
from lastmile.app.core.dependencies import get_image_store
from lastmile.app.core.redis_client import get_redis
from lastmile.app.services.cache import ProjectionCache
from lastmile.app.services.projections import ProjectionBuilder
from lastmile.app.services.store import SqlStore
from lastmile.tests.fakes import FakeImageStore, Seeder

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.down = False
    
    def _check(self):
        if self.down:
            raise ConnectionError("redis is down")
    
    async def ping(self):
        self._check()
        return True
    
    async def get(self, key):
        self._check()
        return self.store.get(key)
        
    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        return True
    
    async def incr(self, key):
        self._check()
        self.store[key] = str(int(self.store.get(key) or 0) + 1)
        return int(self.store[key])
    
    async def delete(self, key):
        self._check()
        if key in self.store:
            del self.store[key]
            return 1
        return 0
        
    async def flushdb(self):
        self.store = {}


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session):
    return SqlStore(db_session)


@pytest.fixture
def seed(db_session):
    return Seeder(db_session)


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def cache(redis_client):
    return ProjectionCache(redis_client, ttl_seconds=30, prefix="test")


@pytest.fixture
def projections(store, cache):
    return ProjectionBuilder(store, cache)


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture
async def client(session_factory, redis_client, image_store):
    """Async client for testing."""
    
    async def override_get_db():
        async with session_factory() as session:
            yield session
    
    async def override_get_redis():
        return redis_client
    
    async def override_get_image_store():
        return image_store
    
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_image_store] = override_get_image_store
    
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    
    app.dependency_overrides = {}
