"""
Exception hierarchy for budget_tracker library.

All exceptions inherit from BudgetTrackerError for consistent error handling.
"""

from __future__ import annotations


class BudgetTrackerError(Exception):
    """
    Base exception for all budget tracker errors.

    All exceptions raised by budget_tracker and budget_service inherit from
    this class, allowing for catch-all error handling:

        try:
            await coordinator.increment(budget_id, Decimal("12.50"))
        except BudgetTrackerError as e:
            logger.error(f"Budget operation failed: {e}")
    """

    pass


class ValidationError(BudgetTrackerError, ValueError):
    """
    Raised when input validation fails.

    Validation always happens before any store call, so a ValidationError
    guarantees that nothing was written.
    """

    pass


class InvalidDeltaError(ValidationError):
    """Raised when a spend increment is negative or not a finite number."""

    def __init__(self, delta: object) -> None:
        self.delta = delta
        self.message = f"Spend increment must be a finite number >= 0, got {delta!r}"
        super().__init__(self.message)


class InvalidAmountError(ValidationError):
    """
    Raised when a budget amount is rejected.

    This includes:
    - Negative or non-finite amounts
    - Amounts above the ceiling allowed for the budget period
    """

    pass


class InvalidThresholdError(ValidationError):
    """Raised when an alert threshold is outside 0-100."""

    def __init__(self, threshold: object) -> None:
        self.threshold = threshold
        self.message = f"Alert threshold must be between 0 and 100, got {threshold!r}"
        super().__init__(self.message)


class DuplicateCategoryError(BudgetTrackerError):
    """
    Raised when an active budget already exists for (user, category, period).

    Only raised by create; no partial state is persisted.
    """

    def __init__(self, user_id: str, category: str, period: str) -> None:
        self.user_id = user_id
        self.category = category
        self.period = period
        self.message = (
            f"Budget already exists for category '{category}' "
            f"and period {period} (user {user_id})"
        )
        super().__init__(self.message)


class BudgetNotFoundError(BudgetTrackerError, LookupError):
    """Raised when a budget id is absent or the budget is inactive."""

    def __init__(self, budget_id: str) -> None:
        self.budget_id = budget_id
        self.message = f"Budget not found: {budget_id}"
        super().__init__(self.message)


class StorageError(BudgetTrackerError):
    """
    Raised when storage operations fail.

    This includes:
    - Insert/update failures
    - Constraint violations
    """

    pass


class StoreValidationError(StorageError):
    """Raised when the backing store rejects a write on a constraint."""

    pass


class TransientStoreError(BudgetTrackerError):
    """
    Raised when the store is temporarily unavailable.

    This includes:
    - Database unreachable
    - Statement or call timeout
    - Connection pool exhaustion

    The core never retries these; they propagate to the caller unchanged.
    """

    pass


class ConnectionError(TransientStoreError):
    """
    Raised when database connection fails.

    This includes:
    - Connection pool exhaustion
    - Database unreachable
    - Authentication failures
    - Connection timeout
    """

    pass


class DispatchFailedError(BudgetTrackerError):
    """
    Raised when an alert could not be published after all retry attempts.

    Attributes:
        budget_id: Budget the alert was about
        attempts: Number of publish attempts made
        last_error: The exception raised by the final attempt
    """

    def __init__(
        self,
        budget_id: str,
        attempts: int,
        last_error: BaseException | None = None,
    ) -> None:
        self.budget_id = budget_id
        self.attempts = attempts
        self.last_error = last_error
        reason = f"{type(last_error).__name__}: {last_error}" if last_error else "unknown error"
        self.message = (
            f"Alert dispatch for budget {budget_id} failed after "
            f"{attempts} attempt(s): {reason}"
        )
        super().__init__(self.message)
