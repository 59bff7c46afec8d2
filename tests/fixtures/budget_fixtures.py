"""
Shared test doubles and constants for budget tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from budget_service.external.base import AlertPublisher
from budget_service.utils.retry_logic import RetryPolicy

FIXED_NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
DLQ_ARN = "arn:aws:sqs:us-east-1:123456789012:budget-alerts-dlq"
TOPIC_ARN = "arn:aws:sns:us-east-1:123456789012:budget-alerts"

# Same attempt count as production, no waiting between attempts
NO_WAIT_POLICY = RetryPolicy(max_attempts=3, base_delay=0.0, multiplier=2.0, max_delay=0.0)


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakePublisher(AlertPublisher):
    """Records every publish attempt; raises queued failures first."""

    def __init__(self, failures: list[Exception] | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self.failures = list(failures or [])

    def publish(self, message, attributes, dead_letter_target, timeout=None):
        self.calls.append(
            {
                "message": message,
                "attributes": attributes,
                "dead_letter_target": dead_letter_target,
                "timeout": timeout,
            }
        )
        if self.failures:
            raise self.failures.pop(0)
        return f"msg-{len(self.calls)}"
