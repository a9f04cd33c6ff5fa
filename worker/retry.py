"""
Retry policy for AniList writes.

A RetryPolicy bundles the attempt budget, the backoff schedule and the
predicate deciding which failures are worth another attempt. It is kept
separate from the HTTP code so the retry loop can be exercised with fault
injection (see tests/worker/test_retry.py).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Spaced to AniList's rate-limit cool-down rather than sub-second retries
DEFAULT_BACKOFF = (30.0, 60.0)


class TransientError(Exception):
    """Retry-able errors (network, timeout, 5xx, 429)"""
    pass


class PermanentError(Exception):
    """Non-retry-able errors (auth, validation, not found)"""
    pass


def is_transient(exc: Exception) -> bool:
    """Default retry predicate: defer to the central error classification."""
    # Lazy import to avoid circular import with validation module
    from validation.errors import classify_exception
    return classify_exception(exc) is TransientError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with a fixed backoff schedule.

    Args:
        max_attempts: Total attempts including the first one (default: 3)
        backoff: Seconds to wait after failed attempt N (index N-1); the last
            value is reused if the schedule is shorter than max_attempts - 1
        is_retryable: Predicate deciding whether a failure may be retried

    Usage:
        policy = RetryPolicy()
        entry = await policy.run(lambda: client.update_entry(...), describe="update 42")
    """
    max_attempts: int = 3
    backoff: tuple[float, ...] = DEFAULT_BACKOFF
    is_retryable: Callable[[Exception], bool] = is_transient

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int, exc: Optional[Exception] = None) -> float:
        """
        Delay before the attempt following failed attempt *attempt* (1-based).

        A server-provided ``retry_after`` on the exception wins when longer.
        """
        if not self.backoff:
            delay = 0.0
        else:
            delay = self.backoff[min(attempt - 1, len(self.backoff) - 1)]
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            delay = max(delay, float(retry_after))
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        describe: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """
        Await *operation* until it succeeds, fails permanently, or the
        attempt budget is spent. The last exception is re-raised.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.is_retryable(exc):
                    raise
                delay = self.delay_for(attempt, exc)
                logger.warning(
                    f"{describe} failed (attempt {attempt}/{self.max_attempts}): {exc}; "
                    f"retrying in {delay:.0f}s",
                    extra={"attempt": attempt, "delay_s": delay},
                )
                await sleep(delay)
                attempt += 1


__all__ = ['RetryPolicy', 'TransientError', 'PermanentError', 'is_transient', 'DEFAULT_BACKOFF']
