"""
Budget Alert Dispatcher

Formats a threshold alert and publishes it through a retrying publish call.

Delivery rules:
- At most `retry_policy.max_attempts` publish attempts (default 3), with
  exponential backoff between them (1s, 2s, capped at 5s)
- Every attempt is bounded by `publish_timeout`, enforced by the transport
  itself; an attempt is never abandoned while still in flight, so a slow
  publish that eventually succeeds is not duplicated by a retry
- Every publish request carries the dead-letter target, so the transport
  redirects the message itself on final failure; the dispatcher never
  republishes to the dead-letter destination
- When attempts are exhausted, DispatchFailedError is raised to the caller
"""

from __future__ import annotations

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from budget_tracker.exceptions import DispatchFailedError
from budget_tracker.types import AlertEvent
from budget_service.external.base import AlertPublisher
from budget_service.utils.retry_logic import (
    DEFAULT_PUBLISH_POLICY,
    RetryError,
    RetryPolicy,
    retry_with_backoff,
)

logger = logging.getLogger(__name__)

ALERT_TYPE = "BUDGET_ALERT"


def _fixed(value: Decimal, places: int) -> str:
    """Fixed-point rendering with half-up rounding (e.g. 2 places for currency)."""
    exponent = Decimal(1).scaleb(-places)
    return f"{value.quantize(exponent, rounding=ROUND_HALF_UP):.{places}f}"


def format_alert_message(event: AlertEvent) -> dict[str, Any]:
    """
    Build the structured alert payload.

    Currency fields use 2 decimal places, the percentage 1 decimal place.

    Example:
        >>> format_alert_message(event)["details"]["spentPercentage"]
        '90.0'
    """
    percentage = _fixed(event.spent_percentage, 1)
    return {
        "type": ALERT_TYPE,
        "title": f"Budget Alert: {event.category}",
        "message": f"You've spent {percentage}% of your {event.category} budget",
        "details": {
            "category": event.category,
            "spent": _fixed(event.spent, 2),
            "budgetAmount": _fixed(event.amount, 2),
            "remaining": _fixed(event.remaining, 2),
            "spentPercentage": percentage,
            "threshold": float(event.threshold),
            "period": event.period.value,
        },
        "timestamp": event.timestamp.isoformat(),
        "actionRef": event.budget_id,
    }


class AlertDispatcher:
    """
    Publishes budget alerts with bounded retries.

    Example:
        >>> dispatcher = AlertDispatcher(SnsPublisher(topic_arn), dead_letter_target=dlq_arn)
        >>> message_id = await dispatcher.dispatch(event)

    Attributes:
        publisher: Transport used for each attempt
        dead_letter_target: Attached to every publish request
        retry_policy: Backoff policy for publish attempts
        publish_timeout: Attempt deadline handed to the publisher
    """

    def __init__(
        self,
        publisher: AlertPublisher,
        dead_letter_target: str,
        retry_policy: RetryPolicy | None = None,
        publish_timeout: float = 5.0,
    ) -> None:
        if not dead_letter_target:
            raise ValueError("dead_letter_target is required")

        self.publisher = publisher
        self.dead_letter_target = dead_letter_target
        self.retry_policy = retry_policy or DEFAULT_PUBLISH_POLICY
        self.publish_timeout = publish_timeout

        self._publish_with_retry = retry_with_backoff(self.retry_policy)(self._publish_once)

    @classmethod
    def from_config(cls) -> AlertDispatcher:
        """
        Build a dispatcher from alerts.* configuration.

        Raises:
            ConfigurationError: If transport settings are missing
        """
        from budget_service.config import get_publish_settings, get_retry_policy

        settings = get_publish_settings()
        publisher: AlertPublisher
        if settings["transport"] == "webhook":
            from budget_service.external.webhook_client import WebhookPublisher

            publisher = WebhookPublisher(settings["topic"], timeout=settings["timeout"])
        else:
            from budget_service.external.sns_client import SnsPublisher

            publisher = SnsPublisher(
                settings["topic"], region=settings["region"], timeout=settings["timeout"]
            )

        return cls(
            publisher,
            dead_letter_target=settings["dead_letter_target"],
            retry_policy=get_retry_policy(),
            publish_timeout=settings["timeout"],
        )

    async def _publish_once(self, message: dict[str, Any], attributes: dict[str, str]) -> str:
        # boto3 and requests block; keep the event loop free
        return await asyncio.to_thread(
            self.publisher.publish,
            message,
            attributes,
            self.dead_letter_target,
            self.publish_timeout,
        )

    async def dispatch(self, event: AlertEvent) -> str:
        """
        Publish an alert for event.

        Returns:
            Transport message id

        Raises:
            DispatchFailedError: If every attempt failed (or a non-retryable error occurred)
        """
        message = format_alert_message(event)
        attributes = event.message_attributes()

        try:
            message_id = await self._publish_with_retry(message, attributes)
        except RetryError as e:
            logger.error(
                f"Budget alert dispatch failed: budget={event.budget_id}, "
                f"attempts={e.attempts}, error={type(e.last_error).__name__}: {e.last_error}"
            )
            raise DispatchFailedError(event.budget_id, e.attempts, e.last_error) from e

        logger.info(
            f"Budget alert published: budget={event.budget_id}, "
            f"category={event.category}, spent_pct={event.spent_percentage}, "
            f"message_id={message_id}"
        )
        return message_id
