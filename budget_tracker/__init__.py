"""
Budget Tracker Library API - spend tracking with threshold alerts.

Usage:
    from budget_tracker import BudgetCoordinator, ConnectionManager

    with ConnectionManager():
        coordinator = BudgetCoordinator.from_config()
        budget = await coordinator.increment(budget_id, "42.10")

The library wraps the budget_service implementation, so the CLI and
programmatic callers share one store, one dispatcher and one pool.

Available Classes:
    BudgetCoordinator: Main entry point for budget operations
    ConnectionManager: Database connection management

Types:
    BudgetRecord: One budget and its alert history
    AlertEvent: Snapshot handed to the alert dispatcher
    BudgetPeriod: MONTHLY, QUARTERLY or YEARLY

Exceptions:
    BudgetTrackerError: Base exception for all errors
    ValidationError: Input validation failures
    BudgetNotFoundError: Unknown or inactive budget
    DuplicateCategoryError: Active budget already exists for the category
    TransientStoreError: Store unavailable or too slow
    DispatchFailedError: Alert could not be delivered
"""

from __future__ import annotations

# Version - synchronized with pyproject.toml
__version__ = "1.0.0"

from budget_tracker.exceptions import (
    BudgetNotFoundError,
    BudgetTrackerError,
    ConnectionError,
    DispatchFailedError,
    DuplicateCategoryError,
    InvalidAmountError,
    InvalidDeltaError,
    InvalidThresholdError,
    StorageError,
    StoreValidationError,
    TransientStoreError,
    ValidationError,
)
from budget_tracker.types import AlertEvent, BudgetPeriod, BudgetRecord
from budget_tracker.connection import ConnectionManager
from budget_tracker.coordinator import AlertOutcome, BudgetCoordinator

__all__ = [
    # Version
    "__version__",
    # Core classes
    "BudgetCoordinator",
    "AlertOutcome",
    "ConnectionManager",
    # Types
    "AlertEvent",
    "BudgetPeriod",
    "BudgetRecord",
    # Exceptions
    "BudgetTrackerError",
    "ValidationError",
    "InvalidDeltaError",
    "InvalidAmountError",
    "InvalidThresholdError",
    "DuplicateCategoryError",
    "BudgetNotFoundError",
    "StorageError",
    "StoreValidationError",
    "TransientStoreError",
    "ConnectionError",
    "DispatchFailedError",
]
