"""
Backoff policy and retry decorator for outbound publish calls.

Behaviour:
- Exponential backoff delays: base 1s, multiplier 2, capped at 5s -> [1s, 2s]
- Max 3 attempts total (initial attempt + 2 retries)
- Optional jitter: ±20% randomization, still capped at max_delay
- Attempts run to completion; the wrapped call bounds its own duration and a
  timeout it raises counts as a failed attempt
- Retry conditions: timeouts, connection errors, throttling and 5xx responses
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


@dataclass(frozen=True)
class RetryPolicy:
    """
    Declarative backoff policy.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay after the first failed attempt, in seconds
        multiplier: Growth factor between consecutive delays
        max_delay: Upper bound for any single delay, in seconds
        jitter: Apply ±20% randomization to each delay
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 5.0
    jitter: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for(self, failed_attempt: int) -> float:
        """
        Delay to wait after the given failed attempt (1-based).

        Example:
            >>> policy = RetryPolicy()
            >>> [policy.delay_for(n) for n in (1, 2, 3, 4)]
            [1.0, 2.0, 4.0, 5.0]
        """
        delay = self.base_delay * (self.multiplier ** (failed_attempt - 1))
        if self.jitter:
            delay *= random.uniform(0.8, 1.2)
        return min(delay, self.max_delay)


DEFAULT_PUBLISH_POLICY = RetryPolicy()


class RetryError(Exception):
    """
    Raised when a retried call gives up.

    Attributes:
        attempts: Number of attempts actually made
        last_error: Exception raised by the final attempt
    """

    def __init__(self, func_name: str, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{func_name} failed after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )


def retry_with_backoff(policy: RetryPolicy | None = None) -> Callable[[F], F]:
    """
    Retry an async callable according to policy.

    Args:
        policy: Backoff policy (default: DEFAULT_PUBLISH_POLICY)

    The wrapped callable raises RetryError, chained to the last exception,
    once it stops retrying. Cancellation is never retried.

    Attempts are never abandoned here: each one runs to completion, so the
    wrapped call must bound its own duration (transport timeouts).

    Example:
        >>> @retry_with_backoff(RetryPolicy(max_attempts=3))
        ... async def publish():
        ...     ...
    """
    policy = policy or DEFAULT_PUBLISH_POLICY

    def decorator(func: F) -> F:
        name = func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 1
            while True:
                try:
                    result = await func(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    reason = f"{type(e).__name__}: {e}"
                    if not _is_retryable_error(e):
                        logger.error(f"{name} gave up on attempt {attempt} (not retryable) - {reason}")
                        raise RetryError(name, attempt, e) from e
                    if attempt >= policy.max_attempts:
                        logger.error(f"{name} exhausted {attempt} attempts - {reason}")
                        raise RetryError(name, attempt, e) from e

                    delay = policy.delay_for(attempt)
                    logger.warning(
                        f"{name} attempt {attempt}/{policy.max_attempts} failed ({reason}); "
                        f"next try in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 1:
                    logger.info(f"{name} succeeded on attempt {attempt}")
                return result

        return wrapper  # type: ignore

    return decorator


# Exception class names raised by asyncio, requests and botocore for
# conditions that usually clear up on their own
RETRYABLE_ERROR_NAMES = frozenset(
    {
        "EndpointConnectionError",
        "ConnectTimeoutError",
        "ReadTimeoutError",
        "Throttling",
        "ThrottlingException",
    }
)
RETRYABLE_MESSAGE_MARKERS = (
    "429", "500", "502", "503", "504",
    "timeout", "timed out", "connection reset", "throttl",
)


def _is_retryable_error(error: Exception) -> bool:
    """
    Classify a failed attempt.

    A `retryable` bool on the exception (PublishError) decides outright.
    Otherwise timeouts, connection failures, throttling and 5xx responses
    are retried, recognised by type, class name or message text.
    """
    explicit = getattr(error, "retryable", None)
    if isinstance(explicit, bool):
        return explicit

    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True
    if type(error).__name__ in RETRYABLE_ERROR_NAMES:
        return True

    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)
