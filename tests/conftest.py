import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Use test DB
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "betdesk_test")
os.environ.setdefault("MONGODB_TIMEOUT_MS", "1000")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("ENV", "test")


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def mongo():
    """Initialise Beanie against the test database; skip when MongoDB is not reachable."""
    from pymongo.errors import PyMongoError

    from app.db.init import init_db
    try:
        await init_db()
    except PyMongoError as e:
        pytest.skip(f"MongoDB not available: {e}")
    yield
