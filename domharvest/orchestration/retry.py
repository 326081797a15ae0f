"""Bounded retry with backoff for harvest attempts.

The final error is re-raised verbatim: retry exhaustion is visible through
RetryState (attempt count and budget), not through a distinct error kind.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..core.errors import ErrorKind, HarvestError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_STRATEGIES = ("exponential", "linear")


@dataclass
class RetryPolicy:
    """Retry budget and backoff configuration.

    `retries` counts attempts beyond the first, so the operation runs at
    most retries + 1 times.
    """

    retries: int = 0
    backoff: str = "exponential"
    base_delay: float = 1.0
    max_backoff: float = 10.0
    retry_on: Optional[frozenset[ErrorKind]] = None  # None means every kind

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.backoff not in BACKOFF_STRATEGIES:
            raise ValueError(
                f"Unknown backoff: {self.backoff}. Available: {', '.join(BACKOFF_STRATEGIES)}"
            )
        if self.base_delay < 0 or self.max_backoff < 0:
            raise ValueError("base_delay and max_backoff must be >= 0")
        if self.retry_on is not None:
            self.retry_on = frozenset(ErrorKind.parse(kind) for kind in self.retry_on)

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        if self.backoff == "linear":
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay * (2 ** (attempt - 1))
        return min(delay, self.max_backoff)

    def should_retry(self, error: HarvestError) -> bool:
        """Check whether an error kind is eligible for retry."""
        return self.retry_on is None or error.kind in self.retry_on


@dataclass
class RetryState:
    """Bookkeeping for one request's attempt sequence."""

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    attempt: int = 0
    last_error: Optional[HarvestError] = None
    delays: list[float] = field(default_factory=list)

    @property
    def max_attempts(self) -> int:
        return self.policy.retries + 1

    @property
    def exhausted(self) -> bool:
        """True when the last failure used up the retry budget."""
        return self.last_error is not None and self.attempt >= self.max_attempts


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    state: Optional[RetryState] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run an operation with bounded retry.

    Args:
        operation: Zero-argument coroutine function performing one attempt.
        state: Retry state; its attempt counter is visible to the operation.
        sleep: Sleep function used for backoff delays.

    Returns:
        The first successful result.

    Raises:
        HarvestError: The error from the last attempt, unchanged.
    """
    state = state or RetryState()
    policy = state.policy

    while True:
        state.attempt += 1
        try:
            return await operation()
        except HarvestError as e:
            state.last_error = e

            if not policy.should_retry(e):
                logger.debug(f"{e.kind.value} is not retryable, giving up after attempt {state.attempt}")
                raise
            if state.attempt >= state.max_attempts:
                if policy.retries:
                    logger.info(f"Retries exhausted after {state.attempt} attempts: {e}")
                raise

            delay = policy.delay_for(state.attempt)
            state.delays.append(delay)
            logger.info(
                f"Attempt {state.attempt}/{state.max_attempts} failed with {e.kind.value}, "
                f"retrying in {delay:.2f}s"
            )
            await sleep(delay)
