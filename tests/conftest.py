"""Shared test fixtures — async SQLite in-memory DB + test client."""

import os
from collections.abc import AsyncGenerator

# Credentials must be in the environment before settings are first cached
os.environ.setdefault("MODELS_API_KEY", "test-models-key")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

# Import all models so metadata is populated
import modelrouter.models  # noqa: E402, F401
from modelrouter.core.config import get_settings  # noqa: E402
from modelrouter.core.database import get_session  # noqa: E402
from modelrouter.main import app  # noqa: E402

API_KEY = get_settings().models_api_key
ADMIN_SECRET = get_settings().admin_secret


@pytest.fixture
async def engine():
    # One shared connection so every session sees the same in-memory DB
    eng = create_async_engine("sqlite+aiosqlite://", echo=False, poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
async def client(session) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session override."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def api_headers() -> dict:
    return {"x-api-key": API_KEY}


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {ADMIN_SECRET}"}
