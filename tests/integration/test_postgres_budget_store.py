"""
[P0] PostgreSQL Budget Store Integration Tests

Atomic increment and cooldown compare-and-set against a real database,
driven from many threads at once.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest

from budget_tracker.coordinator import BudgetCoordinator
from budget_tracker.exceptions import BudgetNotFoundError, DuplicateCategoryError
from budget_tracker.records import new_budget
from budget_service.alerts.dispatcher import AlertDispatcher
from tests.fixtures.budget_fixtures import DLQ_ARN, FIXED_NOW, NO_WAIT_POLICY, FakeClock, FakePublisher

COOLDOWN = timedelta(hours=24)

pytestmark = [pytest.mark.integration, pytest.mark.P0]


def test_create_and_duplicate(pg_store, test_user):
    created = pg_store.create_budget(new_budget(test_user, "Groceries", 500))

    assert pg_store.get_by_id(created.id).amount == Decimal("500.00")
    with pytest.raises(DuplicateCategoryError):
        pg_store.create_budget(new_budget(test_user, "Groceries", 200))


def test_concurrent_increments_are_not_lost(pg_store, test_user):
    budget = pg_store.create_budget(new_budget(test_user, "Fuel", 1000))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: pg_store.atomic_increment_spend(budget.id, Decimal("1.25")), range(40)))

    assert pg_store.get_by_id(budget.id).spent == Decimal("50.00")


def test_increment_clamped_server_side(pg_store, test_user):
    budget = pg_store.create_budget(new_budget(test_user, "Rent", 500))

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(lambda _: pg_store.atomic_increment_spend(budget.id, Decimal("200")), range(6)))

    assert pg_store.get_by_id(budget.id).spent == Decimal("500.00")


def test_exactly_one_claim_wins(pg_store, test_user):
    budget = pg_store.create_budget(new_budget(test_user, "Travel", 500))

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(
            pool.map(
                lambda _: pg_store.claim_alert_cooldown(budget.id, FIXED_NOW, None, COOLDOWN),
                range(10),
            )
        )

    assert results.count(True) == 1
    assert pg_store.get_by_id(budget.id).last_alert_sent_at == FIXED_NOW
    assert pg_store.claim_alert_cooldown(budget.id, FIXED_NOW + COOLDOWN, FIXED_NOW, COOLDOWN) is True


def test_update_floor_and_deactivate(pg_store, test_user):
    budget = pg_store.create_budget(new_budget(test_user, "Dining", 500))
    pg_store.atomic_increment_spend(budget.id, Decimal("320"))

    updated = pg_store.update_budget(budget.id, amount=Decimal("100"))
    deactivated = pg_store.deactivate(budget.id)

    assert updated.amount == Decimal("320.00")
    assert deactivated.is_active is False
    assert deactivated.spent == Decimal("320.00")
    with pytest.raises(BudgetNotFoundError):
        pg_store.atomic_increment_spend(budget.id, Decimal("1"))


@pytest.mark.asyncio
async def test_coordinator_single_alert_under_concurrency(pg_store, test_user):
    publisher = FakePublisher()
    coordinator = BudgetCoordinator(
        pg_store,
        AlertDispatcher(publisher, dead_letter_target=DLQ_ARN, retry_policy=NO_WAIT_POLICY),
        clock=FakeClock(),
    )
    budget = await coordinator.create(test_user, "Utilities", 500)
    await coordinator.increment(budget.id, Decimal("390"))

    await asyncio.gather(*(coordinator.increment(budget.id, Decimal("10")) for _ in range(10)))

    assert (await coordinator.get(budget.id)).spent == Decimal("490.00")
    assert len(publisher.calls) == 1
