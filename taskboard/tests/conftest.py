"""Async test fixtures for taskboard tests using SQLite."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from taskboard.client.api import TaskApiClient
from taskboard.database import get_db
from taskboard.models.base import Base
from taskboard.security.rate_limit import api_rate_limiter
from taskboard.services import task_svc


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_rate_limits():
    api_rate_limiter.reset()
    yield
    api_rate_limiter.reset()


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def task(db: AsyncSession):
    return await task_svc.create_task(db, title="Write report", description="Quarterly numbers")


def _app_with_db(engine):
    from taskboard.app import app

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest_asyncio.fixture
async def client(engine):
    """HTTPX async test client against the taskboard app (same-origin)."""
    app = _app_with_db(engine)

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Origin": "http://test"},
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api(engine):
    """TaskApiClient wired to the app in-process."""
    app = _app_with_db(engine)

    async with TaskApiClient("http://test", transport=ASGITransport(app=app)) as api_client:
        yield api_client

    app.dependency_overrides.clear()
