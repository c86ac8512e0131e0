"""
Retry/backoff as an explicit state machine.

    IDLE -> ATTEMPTING -> SUCCEEDED
                       -> BACKOFF -> ATTEMPTING -> ...
                       -> FAILED

The machine only decides; run_with_retry() drives it and sleeps through an
injected Clock, so policies are testable without real delays.
"""

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

import httpx

from longbox.config import (
    RETRY_BACKOFF_FACTOR,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_SECONDS,
)
from longbox.models.failure import (
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
)
from longbox.sync.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class InvalidTransitionError(RuntimeError):
    """The retry machine was driven out of order."""


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff parameters.

    Attributes:
        base_delay: Delay after the first failure, in seconds
        factor: Multiplier applied per further failure
        max_delay: Cap on any single delay
        max_attempts: Total attempts including the first
        jitter: Fraction of the delay randomized in both directions (0 = none)
    """

    base_delay: float = RETRY_BASE_DELAY_SECONDS
    factor: float = RETRY_BACKOFF_FACTOR
    max_delay: float = RETRY_MAX_DELAY_SECONDS
    max_attempts: int = RETRY_MAX_ATTEMPTS
    jitter: float = 0.0

    def delay_for(self, failures: int, rng: random.Random | None = None) -> float:
        """Backoff delay after the given number of consecutive failures (1-based)."""
        delay = self.base_delay * (self.factor ** (failures - 1))
        if self.jitter:
            spread = delay * self.jitter
            delay += (rng or random).uniform(-spread, spread)
        return max(0.0, min(delay, self.max_delay))


def is_retryable(exc: BaseException) -> bool:
    """Transient failures worth another attempt. NotFound is terminal."""
    return isinstance(
        exc,
        RateLimitedError | ProviderUnavailableError | ProviderTimeoutError | httpx.TransportError,
    )


_ALLOWED: dict[RetryState, frozenset[RetryState]] = {
    RetryState.IDLE: frozenset({RetryState.ATTEMPTING}),
    RetryState.ATTEMPTING: frozenset(
        {RetryState.SUCCEEDED, RetryState.BACKOFF, RetryState.FAILED}
    ),
    RetryState.BACKOFF: frozenset({RetryState.ATTEMPTING}),
    RetryState.SUCCEEDED: frozenset(),
    RetryState.FAILED: frozenset(),
}


@dataclass
class RetryStateMachine:
    """Tracks one retried operation's attempts, delays and terminal outcome."""

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    classify: Callable[[BaseException], bool] = is_retryable
    rng: random.Random | None = None

    state: RetryState = RetryState.IDLE
    attempts: int = 0
    delays: list[float] = field(default_factory=list)
    history: list[RetryState] = field(default_factory=lambda: [RetryState.IDLE])
    last_error: BaseException | None = None

    def _move(self, target: RetryState) -> None:
        if target not in _ALLOWED[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    @property
    def done(self) -> bool:
        return self.state in (RetryState.SUCCEEDED, RetryState.FAILED)

    def start_attempt(self) -> None:
        self._move(RetryState.ATTEMPTING)
        self.attempts += 1

    def succeed(self) -> None:
        self._move(RetryState.SUCCEEDED)

    def fail(self, exc: BaseException, retry_after: float | None = None) -> float | None:
        """
        Record a failed attempt.

        Returns the delay before the next attempt, or None when the machine
        has moved to FAILED (terminal error or attempts exhausted).
        """
        self.last_error = exc
        if not self.classify(exc) or self.attempts >= self.policy.max_attempts:
            self._move(RetryState.FAILED)
            return None

        delay = self.policy.delay_for(self.attempts, self.rng)
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.policy.max_delay))
        self.delays.append(delay)
        self._move(RetryState.BACKOFF)
        return delay


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    clock: Clock | None = None,
    machine: RetryStateMachine | None = None,
    label: str = "",
) -> T:
    """
    Run `operation` until it succeeds, fails terminally, or runs out of attempts.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Backoff policy (ignored when `machine` is given)
        clock: Clock used for backoff sleeps
        machine: Pre-built state machine, for callers that inspect it afterwards
        label: Name used in log events

    Raises:
        The last error from `operation` once the machine reaches FAILED.
    """
    machine = machine or RetryStateMachine(policy=policy or RetryPolicy())
    clock = clock or SystemClock()

    while True:
        machine.start_attempt()
        try:
            result = await operation()
        except Exception as exc:
            delay = machine.fail(exc, retry_after=getattr(exc, "retry_after", None))
            if delay is None:
                if machine.attempts > 1:
                    logger.warning(
                        "RETRY_EXHAUSTED",
                        extra={
                            "operation": label,
                            "attempts": machine.attempts,
                            "error": type(exc).__name__,
                        },
                    )
                raise
            logger.info(
                "RETRY_BACKOFF",
                extra={
                    "operation": label,
                    "attempt": machine.attempts,
                    "delay": round(delay, 3),
                    "error": type(exc).__name__,
                },
            )
            await clock.sleep(delay)
            continue

        machine.succeed()
        return result
