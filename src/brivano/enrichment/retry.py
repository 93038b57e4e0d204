"""Retry with exponential backoff for provider calls."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .errors import DefinitiveProviderError, ProviderHTTPError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit and backoff schedule for one provider call.

    The delay after failed attempt ``n`` (0-based) is
    ``base_delay * 2 ** n``; no delay follows the last attempt.
    """

    max_attempts: int = 3
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must not be negative, got {self.base_delay}")

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)


@dataclass
class RetryOutcome(Generic[T]):
    """Result of a retried call.

    Attributes:
        value: Return value of the successful attempt.
        error: Final error when every attempt failed or the failure was
            definitive.
        attempts: Number of attempts made.
        total_delay: Seconds spent sleeping between attempts.
    """

    value: Optional[T] = None
    error: Optional[Exception] = None
    attempts: int = 0
    total_delay: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str = "call",
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> RetryOutcome[T]:
    """Await ``func`` until it succeeds, fails definitively or runs out of attempts.

    Client errors (4xx) are returned as ``DefinitiveProviderError`` after a
    single attempt. Server errors, timeouts and network failures are
    retried. Any other exception is returned without retrying.

    Args:
        func: Zero-argument coroutine function performing one attempt.
        policy: Attempt limit and backoff schedule.
        label: Name used in log messages.
        sleep: Awaitable sleep, defaults to ``asyncio.sleep``.

    Returns:
        RetryOutcome with either the value or the final error.
    """
    sleep = sleep or asyncio.sleep
    total_delay = 0.0
    last_error: Optional[Exception] = None

    for attempt in range(policy.max_attempts):
        try:
            value = await func()
            return RetryOutcome(value=value, attempts=attempt + 1, total_delay=total_delay)
        except Exception as e:
            if isinstance(e, ProviderHTTPError) and e.is_client_error:
                logger.info("%s returned %d, not retrying", label, e.status_code)
                return RetryOutcome(
                    error=DefinitiveProviderError(e),
                    attempts=attempt + 1,
                    total_delay=total_delay,
                )
            if not is_retryable(e):
                logger.warning("%s failed with a non-retryable error: %s", label, e)
                return RetryOutcome(error=e, attempts=attempt + 1, total_delay=total_delay)

            if attempt < policy.max_attempts - 1:
                delay = policy.delay_for(attempt)
                logger.warning(
                    "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
                    label,
                    attempt + 1,
                    policy.max_attempts,
                    str(e),
                    delay,
                )
                await sleep(delay)
                total_delay += delay
            last_error = e

    logger.error(
        "%s: all %d attempts failed. Last error: %s",
        label,
        policy.max_attempts,
        str(last_error),
    )
    return RetryOutcome(
        error=last_error, attempts=policy.max_attempts, total_delay=total_delay
    )
