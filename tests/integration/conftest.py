"""
Pytest configuration and fixtures for integration tests.

Requires a disposable PostgreSQL database in TEST_DATABASE_URL or DATABASE_URL.
"""

import os
import uuid
from contextlib import contextmanager

import psycopg2
import pytest
from psycopg2.extras import DictCursor

from budget_service.db.budgets import PostgresBudgetStore
from budget_service.db.schema import ensure_schema


@pytest.fixture(scope="session")
def db_url():
    """
    Get database URL for integration tests.

    Uses TEST_DATABASE_URL if set, otherwise falls back to DATABASE_URL.
    """
    url = os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("No DATABASE_URL or TEST_DATABASE_URL set - skipping integration tests")
    return url


@pytest.fixture(scope="session")
def connection_factory(db_url):
    """One short-lived connection per store call, like a pool checkout."""

    @contextmanager
    def factory():
        try:
            conn = psycopg2.connect(db_url, cursor_factory=DictCursor, connect_timeout=5)
        except psycopg2.OperationalError as e:
            pytest.skip(f"Could not connect to database: {e}")
        try:
            yield conn
        finally:
            conn.close()

    ensure_schema(factory)
    return factory


@pytest.fixture
def pg_store(connection_factory):
    return PostgresBudgetStore(connection_factory=connection_factory, statement_timeout_ms=5000)


@pytest.fixture
def test_user(connection_factory):
    """Unique user id per test; its budgets are deleted afterwards."""
    user_id = f"it-{uuid.uuid4()}"
    yield user_id
    with connection_factory() as conn:
        cur = conn.cursor()
        cur.execute("DELETE FROM budgets WHERE user_id = %s", (user_id,))
        conn.commit()
