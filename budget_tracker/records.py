"""
Budget record logic: spend accounting, threshold evaluation and validation.

Everything here is pure: functions take a BudgetRecord and return a value or a
new BudgetRecord. No I/O, no clock access (callers pass `now`).

Policies:
- Spend is capped at the budget ceiling instead of overflowing.
- Lowering the ceiling below what is already spent is overridden to `spent`.
- Percentages are rounded half-up to 2 decimal places and clamped to [0, 100].
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from budget_tracker.exceptions import (
    InvalidAmountError,
    InvalidDeltaError,
    InvalidThresholdError,
    ValidationError,
)
from budget_tracker.types import AlertEvent, BudgetPeriod, BudgetRecord

logger = logging.getLogger(__name__)

DEFAULT_ALERT_COOLDOWN = timedelta(hours=24)
DEFAULT_ALERT_THRESHOLD = Decimal("80")

ZERO = Decimal("0")
HUNDRED = Decimal("100")
TWO_PLACES = Decimal("0.01")

CATEGORY_MAX_LENGTH = 100

# Largest ceiling accepted when a budget is created, per period
PERIOD_AMOUNT_LIMITS: dict[BudgetPeriod, Decimal] = {
    BudgetPeriod.MONTHLY: Decimal("100000"),
    BudgetPeriod.QUARTERLY: Decimal("300000"),
    BudgetPeriod.YEARLY: Decimal("1000000"),
}


def _to_cents(value: Decimal) -> Decimal | None:
    """Round half-up to 2 places; None if the value is too large to represent."""
    try:
        return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def to_decimal(value: object) -> Decimal | None:
    """
    Convert a numeric input to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than its
    binary expansion. Booleans, non-numeric strings and NaN/Infinity return None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not result.is_finite():
        return None
    return result


# =============================================================================
# Validation
# =============================================================================


def validate_delta(delta: object) -> Decimal:
    """
    Validate a spend increment and quantize it to 2 decimal places.

    Spend is stored in cents (NUMERIC(12,2)); rounding here keeps every
    store summing the same values, e.g. 0.004 counts as 0.00 and 0.005 as 0.01.

    Raises:
        InvalidDeltaError: If delta is negative or not a finite number
    """
    value = to_decimal(delta)
    if value is None or value < ZERO:
        raise InvalidDeltaError(delta)
    cents = _to_cents(value)
    if cents is None:
        raise InvalidDeltaError(delta)
    return cents


def validate_amount(amount: object, period: BudgetPeriod | None = None) -> Decimal:
    """
    Validate a budget ceiling and quantize it to 2 decimal places.

    Args:
        amount: Proposed amount
        period: If given, the amount is checked against PERIOD_AMOUNT_LIMITS

    Raises:
        InvalidAmountError: If amount is negative, not finite or above the period ceiling
    """
    value = to_decimal(amount)
    if value is None or value < ZERO:
        raise InvalidAmountError(
            f"Budget amount must be a finite number >= 0, got {amount!r}"
        )
    cents = _to_cents(value)
    if cents is None:
        raise InvalidAmountError(f"Budget amount is out of range: {amount!r}")
    value = cents

    if period is not None:
        limit = PERIOD_AMOUNT_LIMITS[period]
        if value > limit:
            raise InvalidAmountError(
                f"{period.value.title()} budget cannot exceed {limit:,.2f}, got {value:,.2f}"
            )
    return value


def validate_threshold(threshold: object) -> Decimal:
    """
    Validate an alert threshold percentage and quantize it to 2 decimal places.

    Unusual but legal values are logged: low thresholds produce frequent
    notifications, high ones may come too late to be useful.

    Raises:
        InvalidThresholdError: If threshold is outside 0-100
    """
    value = to_decimal(threshold)
    if value is None or value < ZERO or value > HUNDRED:
        raise InvalidThresholdError(threshold)
    value = value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    if ZERO < value < Decimal("50"):
        logger.warning(f"Low alert threshold {value}% may result in frequent notifications")
    elif value > Decimal("90"):
        logger.warning(f"High alert threshold {value}% may not provide timely warnings")
    return value


def validate_category(category: object) -> str:
    """Strip and validate a category label (1-100 characters)."""
    if not isinstance(category, str) or not category.strip():
        raise ValidationError("Budget category must be a non-empty string")
    label = category.strip()
    if len(label) > CATEGORY_MAX_LENGTH:
        raise ValidationError(
            f"Budget category cannot exceed {CATEGORY_MAX_LENGTH} characters"
        )
    return label


def validate_user_id(user_id: object) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("user_id must be a non-empty string")
    return user_id.strip()


def coerce_period(value: object) -> BudgetPeriod:
    """Accept a BudgetPeriod or its name in any case."""
    if isinstance(value, BudgetPeriod):
        return value
    if isinstance(value, str):
        try:
            return BudgetPeriod(value.strip().upper())
        except ValueError:
            pass
    valid = ", ".join(p.value for p in BudgetPeriod)
    raise ValidationError(f"Invalid budget period {value!r}. Must be one of: {valid}")


# =============================================================================
# Record Operations
# =============================================================================


def new_budget(
    user_id: object,
    category: object,
    amount: object,
    period: object = BudgetPeriod.MONTHLY,
    alert_threshold: object = DEFAULT_ALERT_THRESHOLD,
    now: datetime | None = None,
) -> BudgetRecord:
    """
    Build a validated, not yet persisted budget.

    New budgets start with spent=0, is_active=True and no alert history.

    Raises:
        ValidationError: (or a subclass) if any field is invalid
    """
    budget_period = coerce_period(period)
    return BudgetRecord(
        id=str(uuid.uuid4()),
        user_id=validate_user_id(user_id),
        category=validate_category(category),
        amount=validate_amount(amount, budget_period),
        spent=ZERO,
        period=budget_period,
        alert_threshold=validate_threshold(alert_threshold),
        is_active=True,
        last_alert_sent_at=None,
        created_at=now,
        updated_at=now,
    )


def apply_spend(record: BudgetRecord, delta: object) -> BudgetRecord:
    """
    Return a copy of record with delta added to spent, capped at amount.

    Raises:
        InvalidDeltaError: If delta < 0 or not a finite number
    """
    value = validate_delta(delta)
    return replace(record, spent=min(record.spent + value, record.amount))


def spent_percentage(record: BudgetRecord) -> Decimal:
    """
    Percentage of the budget spent, rounded to 2 places and clamped to [0, 100].

    Returns 0 for a zero-amount budget.
    """
    if record.amount == ZERO:
        return ZERO
    percentage = (record.spent / record.amount * HUNDRED).quantize(
        TWO_PLACES, rounding=ROUND_HALF_UP
    )
    return min(max(percentage, ZERO), HUNDRED)


def is_alert_due(
    record: BudgetRecord,
    now: datetime,
    cooldown: timedelta = DEFAULT_ALERT_COOLDOWN,
) -> bool:
    """
    Decide whether a threshold alert should be sent for record at `now`.

    True iff the threshold is reached, the budget is active, and either no
    alert was ever sent or the last one is at least `cooldown` old.
    """
    if not record.is_active:
        return False
    if spent_percentage(record) < record.alert_threshold:
        return False
    if record.last_alert_sent_at is None:
        return True
    return now - record.last_alert_sent_at >= cooldown


def clamp_amount_edit(record: BudgetRecord, new_amount: Decimal) -> Decimal:
    """The ceiling can never be lowered below what is already spent."""
    if new_amount < record.spent:
        return record.spent
    return new_amount


def apply_edit(
    record: BudgetRecord,
    new_amount: Decimal | None = None,
    new_threshold: Decimal | None = None,
) -> BudgetRecord:
    """Return record with amount and/or threshold changed, keeping spent <= amount."""
    amount = record.amount if new_amount is None else clamp_amount_edit(record, new_amount)
    threshold = record.alert_threshold if new_threshold is None else new_threshold
    return replace(
        record,
        amount=amount,
        alert_threshold=threshold,
        spent=min(record.spent, amount),
    )


def build_alert_event(record: BudgetRecord, now: datetime) -> AlertEvent:
    """Snapshot the fields an alert message needs from a post-increment record."""
    return AlertEvent(
        budget_id=record.id,
        user_id=record.user_id,
        category=record.category,
        spent=record.spent,
        amount=record.amount,
        spent_percentage=spent_percentage(record),
        threshold=record.alert_threshold,
        period=record.period,
        remaining=record.remaining,
        timestamp=now,
    )
