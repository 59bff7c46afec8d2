"""
Type definitions and value classes for budget_tracker library.

BudgetRecord is an immutable snapshot of one persisted budget. All mutation
goes through the store's atomic operations or the pure functions in
budget_tracker.records, which return new records.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class BudgetPeriod(str, Enum):
    """Valid budget periods."""

    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


@dataclass(frozen=True)
class BudgetRecord:
    """
    A user-scoped spending ceiling for one category and period.

    Attributes:
        id: Opaque unique identifier (UUID string)
        user_id: Owning user
        category: Category label, unique per (user_id, period) among active budgets
        amount: Budget ceiling, >= 0
        spent: Cumulative spend, 0 <= spent <= amount
        period: Budget period
        alert_threshold: Alert threshold percentage (0-100)
        is_active: False once soft-deleted
        last_alert_sent_at: When the last alert was claimed, None if never
        created_at: Creation timestamp
        updated_at: Last mutation timestamp
    """

    id: str
    user_id: str
    category: str
    amount: Decimal
    spent: Decimal = Decimal("0")
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    alert_threshold: Decimal = Decimal("80")
    is_active: bool = True
    last_alert_sent_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def remaining(self) -> Decimal:
        """Amount left before the ceiling, never negative."""
        return max(self.amount - self.spent, Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        """Render as JSON-friendly dict (decimals as 2dp strings, ISO 8601 datetimes)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "category": self.category,
            "amount": _money(self.amount),
            "spent": _money(self.spent),
            "remaining": _money(self.remaining),
            "period": self.period.value,
            "alert_threshold": f"{self.alert_threshold:.2f}",
            "is_active": self.is_active,
            "last_alert_sent_at": (
                self.last_alert_sent_at.isoformat() if self.last_alert_sent_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class AlertEvent:
    """
    Threshold-exceeded notification derived from a post-increment record.

    Not persisted; lives for one dispatch attempt sequence.
    """

    budget_id: str
    user_id: str
    category: str
    spent: Decimal
    amount: Decimal
    spent_percentage: Decimal
    threshold: Decimal
    period: BudgetPeriod
    remaining: Decimal
    timestamp: datetime

    def message_attributes(self) -> dict[str, str]:
        """Routing metadata carried next to the payload, not inside it."""
        return {
            "userId": self.user_id,
            "budgetId": self.budget_id,
            "category": self.category,
        }
