"""
BudgetCoordinator - entry point for budget operations.

Increment protocol, per request:

    Applying -> Evaluating -> (NoAlertDue | ClaimingCooldown)
             -> (Dispatching | SkippedDueToRace) -> Done

1. Applying: the store atomically adds the delta (capped at the ceiling)
   and returns the post-update record. Failures propagate.
2. Evaluating: records.is_alert_due on that record.
3. ClaimingCooldown: compare-and-set of last_alert_sent_at against the value
   observed in step 1. Of N concurrent callers that all see an alert due,
   exactly one wins.
4. Dispatching: only the winner publishes. A failed dispatch is logged and
   counted; it never fails or reverts the increment.

The coordinator holds no locks and no cached state between requests.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from budget_tracker.exceptions import (
    BudgetTrackerError,
    DispatchFailedError,
    TransientStoreError,
    ValidationError,
)
from budget_tracker.records import (
    DEFAULT_ALERT_COOLDOWN,
    DEFAULT_ALERT_THRESHOLD,
    build_alert_event,
    is_alert_due,
    new_budget,
    spent_percentage,
    validate_amount,
    validate_delta,
    validate_threshold,
)
from budget_tracker.types import BudgetPeriod, BudgetRecord

if TYPE_CHECKING:
    from budget_service.alerts.dispatcher import AlertDispatcher
    from budget_service.db.budgets import BudgetStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AlertOutcome(str, Enum):
    """How the alert step of one increment ended."""

    NO_ALERT_DUE = "no_alert_due"
    SKIPPED_DUE_TO_RACE = "skipped_due_to_race"
    CLAIM_FAILED = "claim_failed"
    DISPATCHED = "dispatched"
    DISPATCH_FAILED = "dispatch_failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BudgetCoordinator:
    """
    Orchestrates budget mutations and threshold alerts.

    Example:
        coordinator = BudgetCoordinator(store, dispatcher)
        budget = await coordinator.create("user-1", "Groceries", 500, "MONTHLY", 80)
        budget = await coordinator.increment(budget.id, Decimal("450"))

    Attributes:
        cooldown: Minimum time between two alerts for one budget
        store_timeout: Seconds a single store call may take; keep it above the
            database statement timeout plus pool connect time
        dispatch_failure_count: Alerts that could not be delivered since startup
    """

    def __init__(
        self,
        store: BudgetStore,
        dispatcher: AlertDispatcher,
        cooldown: timedelta = DEFAULT_ALERT_COOLDOWN,
        store_timeout: float = 12.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock
        self.cooldown = cooldown
        self.store_timeout = store_timeout
        self.dispatch_failure_count = 0

    @classmethod
    def from_config(cls) -> BudgetCoordinator:
        """
        Build a coordinator wired to PostgreSQL and the configured transport.

        The connection pool must already be initialized (see ConnectionManager).

        Raises:
            ConfigurationError: If configuration is missing or invalid
        """
        from budget_service.alerts.dispatcher import AlertDispatcher
        from budget_service.config import (
            get_alert_cooldown,
            get_statement_timeout_ms,
            get_store_timeout,
        )
        from budget_service.db.budgets import PostgresBudgetStore

        store = PostgresBudgetStore(statement_timeout_ms=get_statement_timeout_ms())
        return cls(
            store,
            AlertDispatcher.from_config(),
            cooldown=get_alert_cooldown(),
            store_timeout=get_store_timeout(),
        )

    async def _call_store(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking store call off the event loop, bounded by store_timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.store_timeout
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Store call {operation} timed out after {self.store_timeout}s")
            raise TransientStoreError(
                f"Budget store call '{operation}' timed out after {self.store_timeout}s"
            ) from e

    # =========================================================================
    # Inbound Operations
    # =========================================================================

    async def create(
        self,
        user_id: str,
        category: str,
        amount: Decimal | int | float | str,
        period: BudgetPeriod | str = BudgetPeriod.MONTHLY,
        alert_threshold: Decimal | int | float | str = DEFAULT_ALERT_THRESHOLD,
    ) -> BudgetRecord:
        """
        Create a budget with spent=0 and no alert history.

        Raises:
            ValidationError: If any field is invalid (nothing is stored)
            DuplicateCategoryError: If an active budget exists for (user, category, period)
        """
        record = new_budget(user_id, category, amount, period, alert_threshold, now=self._clock())
        logger.debug(
            f"Creating budget: user={record.user_id}, category={record.category}, "
            f"period={record.period.value}"
        )
        return await self._call_store("create_budget", self._store.create_budget, record)

    async def increment(self, budget_id: str, delta: Decimal | int | float | str) -> BudgetRecord:
        """
        Add delta to a budget's spend and send a threshold alert if one is due.

        The returned record is the post-increment state (spent capped at
        amount). Whether an alert was sent is not part of the result.

        A TransientStoreError from a timeout leaves the outcome unknown: the
        statement may still have committed on its worker thread. Re-read the
        budget with get() before retrying, or the spend can be counted twice.

        Raises:
            InvalidDeltaError: If delta is negative or not a finite number
            BudgetNotFoundError: If the budget is absent or inactive
            TransientStoreError: If the store is unavailable or too slow
        """
        value = validate_delta(delta)

        record = await self._call_store(
            "atomic_increment_spend", self._store.atomic_increment_spend, budget_id, value
        )
        outcome = await self._evaluate_alert(record)

        logger.info(
            f"Budget spend updated: id={record.id}, delta={value}, spent={record.spent}, "
            f"spent_pct={spent_percentage(record)}, alert={outcome.value}"
        )
        return record

    async def _evaluate_alert(self, record: BudgetRecord) -> AlertOutcome:
        now = self._clock()
        if not is_alert_due(record, now, self.cooldown):
            return AlertOutcome.NO_ALERT_DUE

        try:
            claimed = await self._call_store(
                "claim_alert_cooldown",
                self._store.claim_alert_cooldown,
                record.id,
                now,
                record.last_alert_sent_at,
                self.cooldown,
            )
        except TransientStoreError as e:
            # The spend is already committed; the next increment re-evaluates
            logger.error(f"Alert cooldown claim failed: budget={record.id}, error={e}")
            return AlertOutcome.CLAIM_FAILED

        if not claimed:
            logger.info(f"Alert already claimed by a concurrent update: budget={record.id}")
            return AlertOutcome.SKIPPED_DUE_TO_RACE

        try:
            await self._dispatcher.dispatch(build_alert_event(record, now))
        except DispatchFailedError as e:
            self.dispatch_failure_count += 1
            logger.error(
                f"Budget alert not delivered: budget={record.id}, attempts={e.attempts}, "
                f"failures_total={self.dispatch_failure_count}"
            )
            return AlertOutcome.DISPATCH_FAILED

        return AlertOutcome.DISPATCHED

    async def edit(
        self,
        budget_id: str,
        new_amount: Decimal | int | float | str | None = None,
        new_threshold: Decimal | int | float | str | None = None,
    ) -> BudgetRecord:
        """
        Change a budget's ceiling and/or alert threshold.

        A ceiling below the current spend is raised to the current spend.

        Raises:
            ValidationError: If neither field is given or a value is invalid
            BudgetNotFoundError: If the budget is absent or inactive
        """
        if new_amount is None and new_threshold is None:
            raise ValidationError("At least one of new_amount or new_threshold must be provided")

        amount = validate_amount(new_amount) if new_amount is not None else None
        threshold = validate_threshold(new_threshold) if new_threshold is not None else None

        updated = await self._call_store(
            "update_budget", self._store.update_budget, budget_id, amount, threshold
        )
        logger.info(
            f"Budget updated: id={budget_id}, amount={updated.amount}, "
            f"threshold={updated.alert_threshold}"
        )
        return updated

    async def deactivate(self, budget_id: str) -> BudgetRecord:
        """
        Soft-delete a budget. Spent and amount are kept.

        Raises:
            BudgetNotFoundError: If the budget is absent or already inactive
        """
        return await self._call_store("deactivate", self._store.deactivate, budget_id)

    async def get(self, budget_id: str) -> BudgetRecord:
        """Fetch an active budget (BudgetNotFoundError otherwise)."""
        return await self._call_store("get_by_id", self._store.get_by_id, budget_id)

    async def list_for_user(
        self, user_id: str, page: int = 1, limit: int = 10
    ) -> list[BudgetRecord]:
        """Active budgets of one user, newest first."""
        # Import here to avoid import cycle
        from budget_service.utils.pagination import validate_page_params

        params = validate_page_params(page, limit)
        return await self._call_store(
            "list_active_by_user",
            self._store.list_active_by_user,
            user_id,
            params["page"],
            params["limit"],
        )

    async def health_check(self) -> bool:
        """Return True if the store answers within store_timeout."""
        try:
            await self._call_store("ping", self._store.ping)
            return True
        except BudgetTrackerError as e:
            logger.error(f"Health check failed: {e}")
            return False
