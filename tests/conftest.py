"""Shared test fixtures."""

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.el_common.database import get_db_session
from src.main import app


@pytest.fixture
def db_session() -> AsyncMock:
    """Stands in for the request's AsyncSession; services are mocked around it."""
    return AsyncMock()


@pytest.fixture
async def client(db_session: AsyncMock) -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints without a database."""

    async def _override():
        yield db_session

    app.dependency_overrides[get_db_session] = _override
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_db_session, None)
