"""
[P0] Budget Alert Dispatcher Tests

Message formatting, routing attributes, dead-letter metadata and the
retry/exhaustion contract of AlertDispatcher.
"""

import asyncio
import time
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from budget_tracker.exceptions import DispatchFailedError
from budget_tracker.records import build_alert_event
from budget_service.alerts.dispatcher import AlertDispatcher, format_alert_message
from budget_service.external.base import AlertPublisher, PublishError
from budget_service.external.sns_client import SnsPublisher
from budget_service.external.webhook_client import WebhookPublisher
from budget_service.utils.retry_logic import RetryPolicy
from tests.fixtures.budget_fixtures import (
    DLQ_ARN,
    FIXED_NOW,
    NO_WAIT_POLICY,
    TOPIC_ARN,
    FakePublisher,
)


@pytest.fixture
def event(make_record):
    return build_alert_event(make_record(spent=Decimal("450")), FIXED_NOW)


@pytest.mark.P0
class TestFormatAlertMessage:
    def test_structured_payload(self, event):
        message = format_alert_message(event)

        assert message["type"] == "BUDGET_ALERT"
        assert message["title"] == "Budget Alert: Groceries"
        assert message["message"] == "You've spent 90.0% of your Groceries budget"
        assert message["timestamp"] == FIXED_NOW.isoformat()
        assert message["actionRef"] == event.budget_id
        assert message["details"] == {
            "category": "Groceries",
            "spent": "450.00",
            "budgetAmount": "500.00",
            "remaining": "50.00",
            "spentPercentage": "90.0",
            "threshold": 80.0,
            "period": "MONTHLY",
        }

    def test_percentage_rounds_half_up_to_one_place(self, make_record):
        # 1/3 -> 33.33% -> 33.3; 2/3 -> 66.67% -> 66.7
        third = build_alert_event(
            make_record(spent=Decimal("1"), amount=Decimal("3"), alert_threshold=Decimal("10")),
            FIXED_NOW,
        )
        two_thirds = build_alert_event(
            make_record(spent=Decimal("2"), amount=Decimal("3"), alert_threshold=Decimal("10")),
            FIXED_NOW,
        )

        assert format_alert_message(third)["details"]["spentPercentage"] == "33.3"
        assert format_alert_message(two_thirds)["details"]["spentPercentage"] == "66.7"

    def test_attributes_are_not_only_in_body(self, event):
        message = format_alert_message(event)

        assert "userId" not in message
        assert event.message_attributes()["userId"] == "user-1"


@pytest.mark.P0
class TestDispatch:
    @pytest.mark.asyncio
    async def test_publishes_once_with_attributes_and_dead_letter(self, dispatcher, publisher, event):
        message_id = await dispatcher.dispatch(event)

        assert message_id == "msg-1"
        assert len(publisher.calls) == 1
        call = publisher.calls[0]
        assert call["attributes"] == {
            "userId": "user-1",
            "budgetId": event.budget_id,
            "category": "Groceries",
        }
        assert call["dead_letter_target"] == DLQ_ARN
        assert call["timeout"] == 1.0
        assert call["message"]["type"] == "BUDGET_ALERT"

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, dispatcher, publisher, event):
        publisher.failures = [
            PublishError("Throttling", retryable=True),
            PublishError("503", retryable=True),
        ]

        message_id = await dispatcher.dispatch(event)

        assert message_id == "msg-3"
        assert len(publisher.calls) == 3

    @pytest.mark.asyncio
    async def test_exhaustion_raises_dispatch_failed(self, dispatcher, publisher, event):
        """
        GIVEN: the transport fails every attempt
        WHEN: dispatching
        THEN: exactly 3 attempts, each carrying the dead-letter target,
              and DispatchFailedError with attempts=3
        """
        publisher.failures = [PublishError(f"503 #{n}", retryable=True) for n in range(5)]

        with pytest.raises(DispatchFailedError) as exc_info:
            await dispatcher.dispatch(event)

        assert exc_info.value.attempts == 3
        assert exc_info.value.budget_id == event.budget_id
        assert str(exc_info.value.last_error) == "503 #2"
        assert len(publisher.calls) == 3
        assert all(c["dead_letter_target"] == DLQ_ARN for c in publisher.calls)

    @pytest.mark.asyncio
    async def test_non_retryable_failure_stops_after_one_attempt(self, dispatcher, publisher, event):
        publisher.failures = [PublishError("AuthorizationError", retryable=False)]

        with pytest.raises(DispatchFailedError) as exc_info:
            await dispatcher.dispatch(event)

        assert exc_info.value.attempts == 1
        assert len(publisher.calls) == 1

    @pytest.mark.asyncio
    async def test_slow_publish_past_deadline_is_delivered_once(self, event):
        """
        GIVEN: a transport whose first publish outlasts publish_timeout, then succeeds
        WHEN: dispatching
        THEN: the slow attempt is awaited, not retried, so the alert goes out once
        """

        class SlowPublisher(AlertPublisher):
            def __init__(self):
                self.delivered = []

            def publish(self, message, attributes, dead_letter_target, timeout=None):
                if not self.delivered:
                    time.sleep(0.3)
                self.delivered.append(timeout)
                return f"msg-{len(self.delivered)}"

        publisher = SlowPublisher()
        dispatcher = AlertDispatcher(
            publisher,
            dead_letter_target=DLQ_ARN,
            retry_policy=NO_WAIT_POLICY,
            publish_timeout=0.1,
        )

        message_id = await dispatcher.dispatch(event)
        await asyncio.sleep(0.5)

        assert message_id == "msg-1"
        assert publisher.delivered == [0.1]

    @pytest.mark.asyncio
    async def test_default_policy_waits_between_attempts(self, event):
        publisher = FakePublisher([PublishError("503", retryable=True)] * 3)
        dispatcher = AlertDispatcher(publisher, dead_letter_target=DLQ_ARN)

        with patch("budget_service.utils.retry_logic.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(DispatchFailedError):
                await dispatcher.dispatch(event)

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    def test_dead_letter_target_required(self, publisher):
        with pytest.raises(ValueError):
            AlertDispatcher(publisher, dead_letter_target="")


@pytest.mark.P1
class TestFromConfig:
    def test_builds_sns_publisher(self):
        settings = {
            "transport": "sns",
            "topic": TOPIC_ARN,
            "dead_letter_target": DLQ_ARN,
            "region": "eu-west-1",
            "timeout": 3.0,
        }
        policy = RetryPolicy(max_attempts=4)

        with patch("budget_service.config.get_publish_settings", return_value=settings), patch(
            "budget_service.config.get_retry_policy", return_value=policy
        ), patch("budget_service.external.sns_client.boto3.client") as boto_client:
            dispatcher = AlertDispatcher.from_config()

        assert isinstance(dispatcher.publisher, SnsPublisher)
        assert dispatcher.publisher.topic_arn == TOPIC_ARN
        assert dispatcher.retry_policy is policy
        assert dispatcher.publish_timeout == 3.0
        assert boto_client.call_args.kwargs["region_name"] == "eu-west-1"

    def test_builds_webhook_publisher(self):
        settings = {
            "transport": "webhook",
            "topic": "https://alerts.example.com/publish",
            "dead_letter_target": DLQ_ARN,
            "region": "us-east-1",
            "timeout": 5.0,
        }

        with patch("budget_service.config.get_publish_settings", return_value=settings), patch(
            "budget_service.config.get_retry_policy", return_value=RetryPolicy()
        ):
            dispatcher = AlertDispatcher.from_config()

        assert isinstance(dispatcher.publisher, WebhookPublisher)
        assert dispatcher.publisher.url == "https://alerts.example.com/publish"
