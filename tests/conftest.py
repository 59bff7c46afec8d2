"""
Pytest configuration and fixtures for Budget Tracker tests.
"""

import os
from datetime import timedelta
from decimal import Decimal
from typing import Any

import pytest

from budget_tracker.coordinator import BudgetCoordinator
from budget_tracker.types import BudgetPeriod, BudgetRecord
from budget_service.alerts.dispatcher import AlertDispatcher
from budget_service.state.memory_store import InMemoryBudgetStore
from tests.fixtures.budget_fixtures import (
    DLQ_ARN,
    FIXED_NOW,
    NO_WAIT_POLICY,
    FakeClock,
    FakePublisher,
)

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set - skipping database tests")
    return url


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock) -> InMemoryBudgetStore:
    return InMemoryBudgetStore(clock=clock)


@pytest.fixture
def publisher() -> FakePublisher:
    """Publisher shared with the dispatcher fixture; queue failures on .failures."""
    return FakePublisher()


@pytest.fixture
def dispatcher(publisher) -> AlertDispatcher:
    return AlertDispatcher(
        publisher,
        dead_letter_target=DLQ_ARN,
        retry_policy=NO_WAIT_POLICY,
        publish_timeout=1.0,
    )


@pytest.fixture
def coordinator(memory_store, dispatcher, clock) -> BudgetCoordinator:
    return BudgetCoordinator(
        memory_store,
        dispatcher,
        cooldown=timedelta(hours=24),
        store_timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def make_record():
    """Factory for BudgetRecord values with sensible defaults."""

    def _make(**overrides: Any) -> BudgetRecord:
        fields: dict[str, Any] = {
            "id": "6f1c2b9e-3a8d-4a57-9a33-0c1f2d3e4b5a",
            "user_id": "user-1",
            "category": "Groceries",
            "amount": Decimal("500.00"),
            "spent": Decimal("0.00"),
            "period": BudgetPeriod.MONTHLY,
            "alert_threshold": Decimal("80.00"),
            "is_active": True,
            "last_alert_sent_at": None,
            "created_at": FIXED_NOW,
            "updated_at": FIXED_NOW,
        }
        fields.update(overrides)
        return BudgetRecord(**fields)

    return _make
