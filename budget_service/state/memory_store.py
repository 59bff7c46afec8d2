"""
In-Memory Budget Store

Process-local BudgetStore for local runs, demos and tests. Every operation
runs under one threading.Lock, which gives the same atomicity the
PostgreSQL store gets from single-statement UPDATEs.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict

from budget_tracker.exceptions import BudgetNotFoundError, DuplicateCategoryError
from budget_tracker.records import apply_edit, apply_spend
from budget_tracker.types import BudgetRecord
from budget_service.db.budgets import BudgetStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryBudgetStore(BudgetStore):
    """
    Thread-safe BudgetStore kept in a dict.

    Attributes:
        clock: Callable returning the timestamp used for created_at/updated_at
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self.clock = clock
        self._budgets: Dict[str, BudgetRecord] = {}
        self._lock = threading.Lock()

    def _get_active(self, budget_id: str) -> BudgetRecord:
        # Caller holds self._lock
        record = self._budgets.get(budget_id)
        if record is None or not record.is_active:
            raise BudgetNotFoundError(budget_id)
        return record

    def create_budget(self, record: BudgetRecord) -> BudgetRecord:
        with self._lock:
            for existing in self._budgets.values():
                if (
                    existing.is_active
                    and existing.user_id == record.user_id
                    and existing.category == record.category
                    and existing.period == record.period
                ):
                    logger.warning(
                        f"Duplicate budget: user={record.user_id}, "
                        f"category={record.category}, period={record.period.value}"
                    )
                    raise DuplicateCategoryError(
                        record.user_id, record.category, record.period.value
                    )

            now = self.clock()
            created = replace(
                record,
                created_at=record.created_at or now,
                updated_at=record.updated_at or now,
            )
            self._budgets[created.id] = created

        logger.info(f"Budget created: id={created.id}")
        return created

    def atomic_increment_spend(self, budget_id: str, delta: Decimal) -> BudgetRecord:
        with self._lock:
            record = self._get_active(budget_id)
            updated = replace(apply_spend(record, delta), updated_at=self.clock())
            self._budgets[budget_id] = updated
        return updated

    def claim_alert_cooldown(
        self,
        budget_id: str,
        now: datetime,
        expected_last_alert_at: datetime | None,
        cooldown: timedelta,
    ) -> bool:
        with self._lock:
            record = self._budgets.get(budget_id)
            if record is None or not record.is_active:
                return False
            if record.last_alert_sent_at != expected_last_alert_at:
                return False
            if (
                record.last_alert_sent_at is not None
                and now - record.last_alert_sent_at < cooldown
            ):
                return False
            self._budgets[budget_id] = replace(
                record, last_alert_sent_at=now, updated_at=self.clock()
            )
        return True

    def update_budget(
        self,
        budget_id: str,
        amount: Decimal | None = None,
        alert_threshold: Decimal | None = None,
    ) -> BudgetRecord:
        with self._lock:
            record = self._get_active(budget_id)
            updated = replace(
                apply_edit(record, amount, alert_threshold),
                updated_at=self.clock(),
            )
            self._budgets[budget_id] = updated
        return updated

    def get_by_id(self, budget_id: str) -> BudgetRecord:
        with self._lock:
            return self._get_active(budget_id)

    def list_active_by_user(
        self, user_id: str, page: int = 1, limit: int = 10
    ) -> list[BudgetRecord]:
        with self._lock:
            owned = [
                r for r in self._budgets.values() if r.user_id == user_id and r.is_active
            ]
        # Newest first; insertion order breaks ties
        owned = list(reversed(owned))
        owned.sort(key=lambda r: r.created_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        start = (page - 1) * limit
        return owned[start:start + limit]

    def deactivate(self, budget_id: str) -> BudgetRecord:
        with self._lock:
            record = self._get_active(budget_id)
            updated = replace(record, is_active=False, updated_at=self.clock())
            self._budgets[budget_id] = updated

        logger.info(f"Budget deactivated: id={budget_id}")
        return updated

    def ping(self) -> None:
        return None
