"""
[P0] Retry Logic Tests

Backoff schedule, attempt budget, run-to-completion attempts and the
retryable/non-retryable split for publish calls.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from budget_service.external.base import PublishError
from budget_service.utils.retry_logic import (
    RetryError,
    RetryPolicy,
    _is_retryable_error,
    retry_with_backoff,
)


@pytest.mark.P0
class TestRetryPolicy:
    def test_default_schedule_is_capped(self):
        policy = RetryPolicy()

        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_stays_within_cap(self):
        policy = RetryPolicy(jitter=True)

        for _ in range(50):
            assert 0.8 <= policy.delay_for(1) <= 1.2
            assert policy.delay_for(4) <= 5.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"base_delay": -1}, {"multiplier": 0.5}],
    )
    def test_invalid_policy_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


@pytest.mark.P0
class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_three_attempts_then_gives_up(self):
        """
        GIVEN: a call that always fails with a retryable error
        WHEN: it runs under the default policy
        THEN: 3 attempts, sleeps of 1s and 2s, RetryError chained to the last error
        """
        calls = []

        @retry_with_backoff()
        async def publish():
            calls.append(1)
            raise PublishError("503 Service Unavailable", retryable=True)

        with patch("budget_service.utils.retry_logic.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(RetryError) as exc_info:
                await publish()

        assert len(calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, PublishError)
        assert exc_info.value.__cause__ is exc_info.value.last_error

    @pytest.mark.asyncio
    async def test_recovers_on_second_attempt(self):
        attempts = {"count": 0}

        @retry_with_backoff()
        async def publish():
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise ConnectionError("connection reset")
            return "msg-1"

        with patch("budget_service.utils.retry_logic.asyncio.sleep", new_callable=AsyncMock):
            result = await publish()

        assert result == "msg-1"
        assert attempts["count"] == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_immediately(self):
        calls = []

        @retry_with_backoff()
        async def publish():
            calls.append(1)
            raise PublishError("AuthorizationError", retryable=False)

        with patch("budget_service.utils.retry_logic.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(RetryError) as exc_info:
                await publish()

        assert len(calls) == 1
        assert exc_info.value.attempts == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slow_attempt_runs_to_completion(self):
        """
        GIVEN: an attempt that takes a while and then succeeds
        WHEN: it runs under the retry decorator
        THEN: it is awaited to completion and never started a second time
        """
        calls = []

        @retry_with_backoff(RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0))
        async def publish():
            calls.append(1)
            await asyncio.sleep(0.05)
            return "msg-1"

        assert await publish() == "msg-1"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_timeout_counts_as_failed_attempt(self):
        calls = []
        policy = RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0)

        @retry_with_backoff(policy)
        async def publish():
            calls.append(1)
            raise TimeoutError("read timed out")

        with pytest.raises(RetryError) as exc_info:
            await publish()

        assert len(calls) == 2
        assert isinstance(exc_info.value.last_error, TimeoutError)

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self):
        calls = []

        @retry_with_backoff()
        async def publish():
            calls.append(1)
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await publish()

        assert len(calls) == 1


@pytest.mark.P1
class TestIsRetryableError:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (PublishError("anything", retryable=True), True),
            (PublishError("503 from upstream", retryable=False), False),
            (TimeoutError(), True),
            (asyncio.TimeoutError(), True),
            (ConnectionError("refused"), True),
            (Exception("HTTP 429 Too Many Requests"), True),
            (Exception("upstream returned 502"), True),
            (Exception("Rate exceeded: throttled"), True),
            (Exception("request timed out"), True),
            (ValueError("invalid parameter"), False),
        ],
    )
    def test_classification(self, error, expected):
        assert _is_retryable_error(error) is expected
