"""
AWS SNS publisher for budget alerts.

Message attributes are sent as SNS String attributes so subscription filter
policies can route on userId/budgetId/category without parsing the body.
The dead-letter target travels with every publish request as the
`deadLetterTargetArn` attribute.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from budget_service.external.base import AlertPublisher, PublishError, split_deadline

logger = logging.getLogger(__name__)

DEAD_LETTER_ATTRIBUTE = "deadLetterTargetArn"

RETRYABLE_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "InternalError",
    "InternalFailure",
    "ServiceUnavailable",
    "KMSThrottlingException",
}


def _string_attribute(value: str) -> dict[str, str]:
    return {"DataType": "String", "StringValue": value}


class SnsPublisher(AlertPublisher):
    """
    Publishes alert messages to an SNS topic.

    The attempt deadline is split into botocore connect/read timeouts whose
    sum stays within it. botocore has no per-request timeout, so a publish
    with a non-default timeout uses a client built for that deadline
    (cached per value).

    Example:
        >>> publisher = SnsPublisher("arn:aws:sns:us-east-1:123456789012:budget-alerts")
        >>> publisher.publish(message, {"userId": "u1"}, dlq_arn)
        'b1f0...'

    Attributes:
        topic_arn: Destination topic
        timeout: Default attempt deadline in seconds
    """

    def __init__(
        self,
        topic_arn: str,
        region: str | None = None,
        timeout: float = 5.0,
        client: Any | None = None,
    ) -> None:
        if not topic_arn:
            raise ValueError("topic_arn is required")

        self.topic_arn = topic_arn
        self.region = region
        self.timeout = timeout

        # An injected client is used for every deadline
        self._fixed_client = client is not None
        self._clients: dict[float, Any] = {}
        self._clients_lock = threading.Lock()
        self._client = client if client is not None else self._build_client(timeout)

        logger.info(f"SnsPublisher initialized (region: {region or 'default'})")

    def _build_client(self, timeout: float) -> Any:
        connect_timeout, read_timeout = split_deadline(timeout)
        # SDK retries off: the dispatcher owns the attempt budget
        return boto3.client(
            "sns",
            region_name=self.region,
            config=Config(
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"total_max_attempts": 1},
            ),
        )

    def _client_for(self, timeout: float | None) -> Any:
        if self._fixed_client or timeout is None or timeout == self.timeout:
            return self._client
        with self._clients_lock:
            client = self._clients.get(timeout)
            if client is None:
                client = self._clients[timeout] = self._build_client(timeout)
        return client

    def publish(
        self,
        message: dict[str, Any],
        attributes: dict[str, str],
        dead_letter_target: str,
        timeout: float | None = None,
    ) -> str:
        message_attributes = {
            key: _string_attribute(str(value)) for key, value in attributes.items()
        }
        message_attributes[DEAD_LETTER_ATTRIBUTE] = _string_attribute(dead_letter_target)

        try:
            response = self._client_for(timeout).publish(
                TopicArn=self.topic_arn,
                Message=json.dumps(message),
                MessageAttributes=message_attributes,
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            raise PublishError(
                f"SNS publish failed ({code}): {e}",
                retryable=code in RETRYABLE_ERROR_CODES,
            ) from e
        except (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as e:
            raise PublishError(f"SNS unreachable: {e}", retryable=True) from e
        except BotoCoreError as e:
            raise PublishError(f"SNS client error: {e}", retryable=False) from e

        message_id = response.get("MessageId", "")
        logger.debug(f"SNS message published: id={message_id}")
        return message_id
