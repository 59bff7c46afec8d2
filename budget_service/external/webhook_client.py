"""
HTTP push publisher for budget alerts.

For pub/sub gateways that accept publishes over HTTP. The request body is an
envelope that keeps routing attributes and the dead-letter target next to,
not inside, the alert message. Attributes are repeated as X-Attr-* headers.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from budget_service.external.base import AlertPublisher, PublishError, split_deadline

logger = logging.getLogger(__name__)


class WebhookPublisher(AlertPublisher):
    """
    Publishes alert messages by POSTing to a push endpoint.

    Attributes:
        url: Publish endpoint
        timeout: Default attempt deadline in seconds, sent to requests as a
            (connect, read) pair whose sum stays within it
    """

    def __init__(self, url: str, timeout: float = 5.0) -> None:
        if not url:
            raise ValueError("url is required")
        self.url = url
        self.timeout = timeout

    @staticmethod
    def _headers(attributes: dict[str, str]) -> dict[str, str]:
        # Gateways that filter on headers never need to parse the body
        headers = {"Content-Type": "application/json"}
        for key, value in attributes.items():
            headers[f"X-Attr-{key}"] = str(value)
        return headers

    def publish(
        self,
        message: dict[str, Any],
        attributes: dict[str, str],
        dead_letter_target: str,
        timeout: float | None = None,
    ) -> str:
        envelope = {
            "message": message,
            "attributes": dict(attributes),
            "deadLetterTarget": dead_letter_target,
        }

        try:
            response = requests.post(
                self.url,
                json=envelope,
                headers=self._headers(attributes),
                timeout=split_deadline(timeout or self.timeout),
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise PublishError(f"Publish endpoint unreachable: {e}", retryable=True) from e
        except requests.RequestException as e:
            raise PublishError(f"Publish request failed: {e}", retryable=False) from e

        if not 200 <= response.status_code < 300:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise PublishError(
                f"Publish endpoint returned status {response.status_code}: {response.text}",
                retryable=retryable,
            )

        try:
            body = response.json()
        except ValueError:
            body = {}

        message_id = str(body.get("messageId", "")) if isinstance(body, dict) else ""
        logger.debug(f"Webhook message published: id={message_id or 'n/a'}")
        return message_id
