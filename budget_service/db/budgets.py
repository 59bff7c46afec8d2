"""
Budget Store Module

Persistence gateway for budgets. Every mutation is a single conditional
UPDATE so concurrent writers never lose updates:

- atomic_increment_spend: SET spent = LEAST(spent + delta, amount)
- claim_alert_cooldown: compare-and-set on last_alert_sent_at
- update_budget: SET amount = GREATEST(new_amount, spent)

Stores never retry. Connectivity problems and statement timeouts surface as
TransientStoreError; constraint violations as StoreValidationError.
"""

from __future__ import annotations

import abc
import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import psycopg2
from psycopg2 import errors
from psycopg2.extensions import connection, cursor

from budget_tracker.exceptions import (
    BudgetNotFoundError,
    DuplicateCategoryError,
    StorageError,
    StoreValidationError,
    TransientStoreError,
)
from budget_tracker.types import BudgetPeriod, BudgetRecord
from budget_service.db.connection import get_connection

logger = logging.getLogger(__name__)


class BudgetStore(abc.ABC):
    """
    Atomic keyed store for budgets.

    Implementations must make atomic_increment_spend, claim_alert_cooldown,
    update_budget and deactivate indivisible with respect to each other.
    get_by_id, update_budget, atomic_increment_spend and deactivate treat an
    inactive budget as absent.
    """

    @abc.abstractmethod
    def create_budget(self, record: BudgetRecord) -> BudgetRecord:
        """Persist a new budget. Raises DuplicateCategoryError on an active conflict."""

    @abc.abstractmethod
    def atomic_increment_spend(self, budget_id: str, delta: Decimal) -> BudgetRecord:
        """Add delta to spent, capped at amount, and return the post-update record."""

    @abc.abstractmethod
    def claim_alert_cooldown(
        self,
        budget_id: str,
        now: datetime,
        expected_last_alert_at: datetime | None,
        cooldown: timedelta,
    ) -> bool:
        """Stamp last_alert_sent_at = now iff it still equals the expected value and cooldown elapsed."""

    @abc.abstractmethod
    def update_budget(
        self,
        budget_id: str,
        amount: Decimal | None = None,
        alert_threshold: Decimal | None = None,
    ) -> BudgetRecord:
        """Change amount and/or threshold; amount is floored at the stored spent."""

    @abc.abstractmethod
    def get_by_id(self, budget_id: str) -> BudgetRecord:
        """Return an active budget or raise BudgetNotFoundError."""

    @abc.abstractmethod
    def list_active_by_user(
        self, user_id: str, page: int = 1, limit: int = 10
    ) -> list[BudgetRecord]:
        """Active budgets of one user, newest first."""

    @abc.abstractmethod
    def deactivate(self, budget_id: str) -> BudgetRecord:
        """Soft-delete: is_active=False, spent and amount untouched."""

    def ping(self) -> None:
        """Raise if the store is unreachable."""


# =============================================================================
# PostgreSQL Implementation
# =============================================================================

_COLUMNS = (
    "id, user_id, category, amount, spent, period, alert_threshold, "
    "is_active, last_alert_sent_at, created_at, updated_at"
)


def row_to_record(row: Any) -> BudgetRecord:
    """Convert a budgets row (DictCursor row or dict) to a BudgetRecord."""
    return BudgetRecord(
        id=str(row["id"]),
        user_id=row["user_id"],
        category=row["category"],
        amount=Decimal(row["amount"]),
        spent=Decimal(row["spent"]),
        period=BudgetPeriod(row["period"]),
        alert_threshold=Decimal(row["alert_threshold"]),
        is_active=bool(row["is_active"]),
        last_alert_sent_at=row["last_alert_sent_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _parse_id(budget_id: str) -> str:
    # Malformed ids can't exist in a UUID column
    try:
        return str(uuid.UUID(str(budget_id)))
    except ValueError as e:
        raise BudgetNotFoundError(budget_id) from e


class PostgresBudgetStore(BudgetStore):
    """
    BudgetStore backed by the PostgreSQL budgets table.

    Example:
        store = PostgresBudgetStore(statement_timeout_ms=5000)
        record = store.atomic_increment_spend(budget_id, Decimal("42.10"))

    Attributes:
        statement_timeout_ms: Server-side timeout applied to every statement
    """

    def __init__(
        self,
        connection_factory: Callable[[], AbstractContextManager[connection]] = get_connection,
        statement_timeout_ms: int = 5000,
    ) -> None:
        self._connection_factory = connection_factory
        self.statement_timeout_ms = statement_timeout_ms

    @contextmanager
    def _transaction(self) -> Iterator[cursor]:
        """
        Yield a cursor inside one transaction with statement_timeout set.

        Commits on success, rolls back on any error, and translates
        psycopg2 errors into the store's exception taxonomy.
        """
        try:
            with self._connection_factory() as conn:
                cur = conn.cursor()
                try:
                    cur.execute(
                        "SET LOCAL statement_timeout = %s", (self.statement_timeout_ms,)
                    )
                    yield cur
                    conn.commit()
                except BaseException:
                    conn.rollback()
                    raise
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            # QueryCanceled (statement timeout) is an OperationalError
            logger.error(f"Transient store error: {type(e).__name__}: {e}")
            raise TransientStoreError(f"Budget store unavailable: {e}") from e
        except (psycopg2.IntegrityError, psycopg2.DataError) as e:
            logger.error(f"Budget store rejected write: {type(e).__name__}: {e}")
            raise StoreValidationError(f"Constraint violation: {e}") from e
        except psycopg2.Error as e:
            logger.error(f"Budget store error: {type(e).__name__}: {e}")
            raise StorageError(f"Budget store operation failed: {e}") from e

    def create_budget(self, record: BudgetRecord) -> BudgetRecord:
        logger.debug(
            f"Creating budget: user={record.user_id}, category={record.category}, "
            f"period={record.period.value}"
        )
        with self._transaction() as cur:
            try:
                cur.execute(
                    f"""
                    INSERT INTO budgets (
                        id, user_id, category, amount, spent, period,
                        alert_threshold, is_active, last_alert_sent_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (
                        _parse_id(record.id),
                        record.user_id,
                        record.category,
                        record.amount,
                        record.spent,
                        record.period.value,
                        record.alert_threshold,
                        record.is_active,
                        record.last_alert_sent_at,
                    ),
                )
            except errors.UniqueViolation as e:
                logger.warning(
                    f"Duplicate budget: user={record.user_id}, category={record.category}, "
                    f"period={record.period.value}"
                )
                raise DuplicateCategoryError(
                    record.user_id, record.category, record.period.value
                ) from e
            created = row_to_record(cur.fetchone())

        logger.info(f"Budget created: id={created.id}")
        return created

    def atomic_increment_spend(self, budget_id: str, delta: Decimal) -> BudgetRecord:
        logger.debug(f"Incrementing spend: budget={budget_id}, delta={delta}")
        with self._transaction() as cur:
            cur.execute(
                f"""
                UPDATE budgets
                SET spent = LEAST(spent + %s, amount),
                    updated_at = NOW()
                WHERE id = %s AND is_active
                RETURNING {_COLUMNS}
                """,
                (delta, _parse_id(budget_id)),
            )
            row = cur.fetchone()

        if row is None:
            logger.warning(f"Budget not found for increment: id={budget_id}")
            raise BudgetNotFoundError(budget_id)
        return row_to_record(row)

    def claim_alert_cooldown(
        self,
        budget_id: str,
        now: datetime,
        expected_last_alert_at: datetime | None,
        cooldown: timedelta,
    ) -> bool:
        with self._transaction() as cur:
            cur.execute(
                """
                UPDATE budgets
                SET last_alert_sent_at = %(now)s,
                    updated_at = NOW()
                WHERE id = %(id)s
                  AND is_active
                  AND last_alert_sent_at IS NOT DISTINCT FROM %(expected)s
                  AND (last_alert_sent_at IS NULL
                       OR last_alert_sent_at <= %(now)s - %(cooldown)s)
                RETURNING id
                """,
                {
                    "id": _parse_id(budget_id),
                    "now": now,
                    "expected": expected_last_alert_at,
                    "cooldown": cooldown,
                },
            )
            claimed = cur.fetchone() is not None

        logger.debug(f"Alert cooldown claim: budget={budget_id}, claimed={claimed}")
        return claimed

    def update_budget(
        self,
        budget_id: str,
        amount: Decimal | None = None,
        alert_threshold: Decimal | None = None,
    ) -> BudgetRecord:
        with self._transaction() as cur:
            cur.execute(
                f"""
                UPDATE budgets
                SET amount = GREATEST(COALESCE(%(amount)s, amount), spent),
                    alert_threshold = COALESCE(%(threshold)s, alert_threshold),
                    updated_at = NOW()
                WHERE id = %(id)s AND is_active
                RETURNING {_COLUMNS}
                """,
                {
                    "id": _parse_id(budget_id),
                    "amount": amount,
                    "threshold": alert_threshold,
                },
            )
            row = cur.fetchone()

        if row is None:
            logger.warning(f"Budget not found for update: id={budget_id}")
            raise BudgetNotFoundError(budget_id)

        updated = row_to_record(row)
        if amount is not None and updated.amount != amount:
            logger.info(
                f"Budget amount edit raised to spent: id={budget_id}, "
                f"requested={amount}, applied={updated.amount}"
            )
        return updated

    def get_by_id(self, budget_id: str) -> BudgetRecord:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM budgets WHERE id = %s AND is_active",
                (_parse_id(budget_id),),
            )
            row = cur.fetchone()

        if row is None:
            logger.debug(f"Budget not found: id={budget_id}")
            raise BudgetNotFoundError(budget_id)
        return row_to_record(row)

    def list_active_by_user(
        self, user_id: str, page: int = 1, limit: int = 10
    ) -> list[BudgetRecord]:
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM budgets
                WHERE user_id = %s AND is_active
                ORDER BY created_at DESC, id
                LIMIT %s OFFSET %s
                """,
                (user_id, limit, (page - 1) * limit),
            )
            rows = cur.fetchall()

        return [row_to_record(row) for row in rows]

    def deactivate(self, budget_id: str) -> BudgetRecord:
        with self._transaction() as cur:
            cur.execute(
                f"""
                UPDATE budgets
                SET is_active = FALSE,
                    updated_at = NOW()
                WHERE id = %s AND is_active
                RETURNING {_COLUMNS}
                """,
                (_parse_id(budget_id),),
            )
            row = cur.fetchone()

        if row is None:
            logger.warning(f"Budget not found for deactivation: id={budget_id}")
            raise BudgetNotFoundError(budget_id)

        logger.info(f"Budget deactivated: id={budget_id}")
        return row_to_record(row)

    def ping(self) -> None:
        with self._transaction() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
