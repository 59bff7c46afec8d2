"""
Pub/sub publisher interface used by the alert dispatcher.
"""

from __future__ import annotations

import abc
from typing import Any


class PublishError(Exception):
    """
    Raised by a publisher when one publish attempt fails.

    Attributes:
        retryable: Whether another attempt may succeed (throttling, 5xx, timeouts)
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)


def split_deadline(timeout: float) -> tuple[float, float]:
    """
    Split one attempt's deadline into (connect, read) socket timeouts.

    connect + read never exceeds timeout, so a transport honouring both
    gives up within the attempt's deadline.
    """
    half = timeout / 2
    return half, half


class AlertPublisher(abc.ABC):
    """
    One publish attempt against a pub/sub transport.

    Implementations must not retry internally; retries belong to the
    dispatcher's backoff policy. The attempt deadline is enforced here,
    by the transport's own timeouts: the dispatcher never abandons an
    attempt that is still in flight.
    """

    @abc.abstractmethod
    def publish(
        self,
        message: dict[str, Any],
        attributes: dict[str, str],
        dead_letter_target: str,
        timeout: float | None = None,
    ) -> str:
        """
        Publish message with routing attributes.

        Args:
            message: JSON-serializable message body
            attributes: Key/value metadata carried outside the body
            dead_letter_target: Destination the transport redirects to on final failure
            timeout: Seconds this attempt may take (None = publisher default)

        Returns:
            Transport message id

        Raises:
            PublishError: If the attempt failed, including a transport timeout
        """
