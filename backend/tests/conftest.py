"""Pytest configuration and fixtures."""

import pytest

from fakes import PoolRecorder, make_credentials
from smartdb.db.manager import ConnectionManager
from smartdb.db.models import DatabaseCredentials


@pytest.fixture
def pool_recorder() -> PoolRecorder:
    return PoolRecorder()


@pytest.fixture
def manager(pool_recorder: PoolRecorder) -> ConnectionManager:
    """Fresh manager per test, backed by fake pools."""
    return ConnectionManager(pool_builder=pool_recorder)


@pytest.fixture
def credentials() -> DatabaseCredentials:
    return make_credentials()
