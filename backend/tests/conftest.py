import os
import warnings

import pytest
from sqlalchemy import create_engine

# Set environment variables BEFORE importing app modules
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DATABASE_DSN"] = "sqlite+aiosqlite:///file:giftcircle_tests?mode=memory&cache=shared&uri=true"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-32-chars-minimum!!"
os.environ["REALTIME_REDIS_ENABLED"] = "false"

warnings.filterwarnings("ignore", category=DeprecationWarning)

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from giftcircle.core.config import settings
from giftcircle.core.rate_limit import limiter
from giftcircle.db.session import Base, get_db, get_session_factory
from giftcircle.main import app


def pytest_configure(config):
    warnings.filterwarnings("ignore", category=DeprecationWarning)


@pytest.fixture(scope="session", autouse=True)
def disable_rate_limiting():
    """Disable rate limiting for all tests."""
    original = settings.rate_limit_enabled
    settings.rate_limit_enabled = False
    yield
    settings.rate_limit_enabled = original


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def session_factory(tmp_path):
    """A fresh sqlite database with the schema in place, for service-level tests."""
    db_path = tmp_path / "service-test.db"
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    yield async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    engine.sync_engine.dispose()


@pytest.fixture(autouse=True)
def sync_db_override(tmp_path):
    db_path = tmp_path / "sync-test.db"
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    async_session = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: async_session
    yield
    app.dependency_overrides.clear()
    engine.sync_engine.dispose()


@pytest.fixture
def test_client():
    """Synchronous test client with rate limiting disabled."""
    from fastapi.testclient import TestClient

    with TestClient(app) as client:
        yield client
