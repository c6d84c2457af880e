"""Shared fixtures: an in-memory SQLite database and mock helpers."""

import os

# Service singletons build OpenAI clients at import time
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from nabi import models  # noqa: F401  registers tables
from nabi.database import Base


@pytest_asyncio.fixture
async def session_factory():
    """Fresh schema per test on an in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def http_response(json_data=None, status_code: int = 200) -> MagicMock:
    """Stand-in for an httpx.Response that decodes to ``json_data``."""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.raise_for_status = MagicMock()
    return response


def mock_async_client(mock_client_cls: MagicMock) -> AsyncMock:
    """Wire a patched httpx.AsyncClient class to return one async client."""
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client.post = AsyncMock()
    mock_client.get = AsyncMock()
    mock_client_cls.return_value = mock_client
    return mock_client
