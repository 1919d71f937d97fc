"""
Bounded retry for coroutines.

A retry is a plain for-loop over attempts with a sleep in between; nothing
re-enters itself, so at most max_attempts calls and max_attempts - 1 sleeps
happen per invocation.

Which failures get another attempt is decided by error category:
transient, auth and unknown failures are retried; permanent ones only when
the policy opts in with retry_permanent (the collector endpoint, for
example, where any non-200 answer is worth another try).
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from core.errors.exceptions import CollectorError, wrap_exception
from core.types import ErrorCategory

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[CollectorError, int, float], None]


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RetryPolicy:
    """
    How many attempts, and how long to wait between them.

    The wait after attempt n (0-indexed) is
    ``delay_seconds * backoff_factor ** n`` capped at max_delay_seconds.
    The default backoff_factor of 1.0 gives a constant delay.
    """

    max_attempts: int = 3
    delay_seconds: float = 1.0
    backoff_factor: float = 1.0
    max_delay_seconds: float = 30.0
    jitter: bool = False
    retry_permanent: bool = False

    def __post_init__(self):
        # Values may arrive as strings from YAML or the environment
        self.max_attempts = int(self.max_attempts)
        self.delay_seconds = float(self.delay_seconds)
        self.backoff_factor = float(self.backoff_factor)
        self.max_delay_seconds = float(self.max_delay_seconds)
        self.jitter = _flag(self.jitter)
        self.retry_permanent = _flag(self.retry_permanent)

        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {self.delay_seconds}")

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after 0-indexed attempt failed."""
        delay = min(self.delay_seconds * self.backoff_factor**attempt, self.max_delay_seconds)
        if self.jitter:
            delay = random.uniform(delay / 2, delay)
        return delay

    def allows_retry(self, error: CollectorError, attempt: int) -> bool:
        """True if attempt was not the last one and error is worth repeating."""
        if attempt + 1 >= self.max_attempts:
            return False
        return self.retry_permanent or error.category != ErrorCategory.PERMANENT


DEFAULT_POLICY = RetryPolicy()
DELIVERY_POLICY = RetryPolicy(retry_permanent=True)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    operation: str | None = None,
    on_retry: OnRetry | None = None,
) -> T:
    """
    Await func() until it succeeds or policy runs out of attempts.

    Args:
        func: Zero-argument coroutine factory, called once per attempt
        policy: Attempt budget and delays (DEFAULT_POLICY when omitted)
        operation: Name for log records (func.__name__ when omitted)
        on_retry: Called as (error, attempt, delay) before each sleep

    Returns:
        Result of the first successful attempt

    Raises:
        CollectorError: the last failure; untyped exceptions are wrapped
    """
    policy = policy or DEFAULT_POLICY
    name = operation or getattr(func, "__name__", "operation")

    for attempt in range(policy.max_attempts):
        try:
            result = await func()
        except Exception as e:
            error = wrap_exception(e)
            fields = {
                "operation": name,
                "attempt": attempt + 1,
                "max_attempts": policy.max_attempts,
                "error_category": error.category.value,
                "error_message": str(e)[:200],
            }

            if not policy.allows_retry(error, attempt):
                logger.error("%s failed after %d attempt(s)", name, attempt + 1, extra=fields)
                if error is e:
                    raise
                raise error from e

            delay = policy.delay_after(attempt)
            logger.warning("%s failed, retrying in %.1fs", name, delay, extra={**fields, "delay_seconds": delay})

            if on_retry is not None:
                try:
                    on_retry(error, attempt, delay)
                except Exception as cb_err:
                    logger.warning(
                        "on_retry callback for %s raised",
                        name,
                        extra={"operation": name, "callback_error": str(cb_err)[:100]},
                    )

            await asyncio.sleep(delay)
        else:
            if attempt:
                logger.info(
                    "%s succeeded on attempt %d",
                    name,
                    attempt + 1,
                    extra={"operation": name, "attempt": attempt + 1, "total_attempts": policy.max_attempts},
                )
            return result

    # Unreachable: the last attempt either returned or raised
    raise CollectorError(f"{name} exhausted retries")


__all__ = [
    "RetryPolicy",
    "retry_async",
    "DEFAULT_POLICY",
    "DELIVERY_POLICY",
]
