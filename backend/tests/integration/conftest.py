"""Integration test configuration and fixtures."""

import httpx
import pytest_asyncio

from smartdb.db.models import LOCAL_DB_ID
from smartdb.main import create_app


@pytest_asyncio.fixture(scope="function")
async def test_app(manager):
    """
    App wired to the fake-pool manager, with the local database registered.

    ASGITransport does not run the lifespan, so the manager is attached here.
    """
    app = create_app(manager)
    app.state.connection_manager = manager
    await manager.initialize_local_database()
    yield app
    await manager.close_all_connections()


@pytest_asyncio.fixture(scope="function")
async def async_client(test_app):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest_asyncio.fixture
async def local_pool(test_app, pool_recorder):
    """The fake pool behind the local database."""
    return pool_recorder.for_id(LOCAL_DB_ID)
