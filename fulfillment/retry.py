"""
Retry policy for external calls.

The call site is a function of the attempt number, so tests can drive it
with a fake ``sleep`` and no real delays.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff."""

    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def backoff(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


async def run_with_retry(
    policy: RetryPolicy,
    action: Callable[[int], Awaitable[T]],
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run ``action(attempt)`` until it succeeds or the policy is exhausted.

    The last exception is re-raised unchanged once all attempts fail.
    """
    attempt = 1
    while True:
        try:
            return await action(attempt)
        except policy.retry_on as exc:
            if attempt >= policy.max_attempts:
                logger.error(
                    f"{description} failed after {attempt} attempt(s): {exc}"
                )
                raise
            delay = policy.backoff(attempt)
            logger.warning(
                f"{description} attempt {attempt}/{policy.max_attempts} failed: {exc}; "
                f"retrying in {delay:.2f}s"
            )
            await sleep(delay)
            attempt += 1
