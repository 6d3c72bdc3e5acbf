"""
Global pytest configuration and fixtures for subledger tests.

Tests run against a throwaway file-backed SQLite database per test, through
the aiosqlite driver. Override nothing here to point at PostgreSQL; the
store is exercised through the same TransactionExecutor either way.
"""

import os

# Configure settings before any subledger module reads them
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "text")
os.environ.setdefault("OBSERVABILITY__LOG_LEVEL", "DEBUG")

import pytest
import pytest_asyncio

from subledger.billing.models import BillingSubscription  # noqa: F401  registers the table
from subledger.billing.subscriptions import BillingSubscriptionStore
from subledger.db import (
    TransactionExecutor,
    create_all_tables_async,
    create_async_database_engine,
    create_session_factory,
    drop_all_tables_async,
)
from subledger.settings import reset_settings


@pytest.fixture(autouse=True)
def _reset_settings():
    """Drop any settings cached by a test that patched the environment."""
    yield
    reset_settings()


@pytest_asyncio.fixture
async def async_db_engine(tmp_path):
    """Async engine bound to a fresh SQLite file with all tables created."""
    engine = create_async_database_engine(f"sqlite+aiosqlite:///{tmp_path / 'subledger.sqlite'}")
    await create_all_tables_async(engine)
    try:
        yield engine
    finally:
        await drop_all_tables_async(engine)
        await engine.dispose()


@pytest.fixture
def transaction_executor(async_db_engine):
    return TransactionExecutor(create_session_factory(async_db_engine))


@pytest.fixture
def subscription_store(transaction_executor):
    return BillingSubscriptionStore(transaction_executor)
