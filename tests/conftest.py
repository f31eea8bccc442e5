"""Pytest configuration and fixtures."""

import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

from providers.registry import ProviderRegistry, register_builtin_providers


class MockRecord:
    """Behaves like asyncpg.Record for dict() conversion and key access."""

    def __init__(self, data):
        self._data = data

    def __iter__(self):
        return iter(self._data.items())

    def keys(self):
        return self._data.keys()

    def get(self, key, default=None):
        return self._data.get(key, default)

    def __getitem__(self, key):
        return self._data[key]


def make_pool(conn):
    """Build a mock pool whose acquire() yields conn."""
    pool = AsyncMock()

    @asynccontextmanager
    async def mock_acquire():
        yield conn

    pool.acquire = mock_acquire
    return pool


def make_transaction_conn():
    """Build a mock connection that supports `async with conn.transaction()`."""
    conn = AsyncMock()
    mock_transaction = AsyncMock()
    mock_transaction.__aenter__ = AsyncMock(return_value=mock_transaction)
    mock_transaction.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=mock_transaction)
    return conn


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    return conn


@pytest.fixture
def sample_spec():
    """Sample Hostname spec."""
    return {
        "hostname": "home.example.com",
        "address": "",
        "checkIntervalMinutes": 5,
        "ddnsService": {
            "endpoint": "Dyn",
            "authSecretRef": {"name": "dyn-credentials"},
        },
    }


@pytest.fixture
def sample_hostname(sample_spec):
    """Sample parsed hostname row."""
    return {
        "id": 1,
        "name": "home",
        "namespace": "default",
        "spec": sample_spec,
        "status": {},
        "generation": 1,
        "observed_generation": 0,
        "retry_count": 0,
        "last_reconcile_time": None,
        "next_reconcile_time": None,
    }


@pytest.fixture
def provider_registry():
    """A fresh registry with the built-in providers."""
    registry = ProviderRegistry()
    register_builtin_providers(registry)
    return registry
