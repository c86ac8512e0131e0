"""
Rate Limiter: Per-Provider Token Buckets.

Every outbound provider call acquires a permit here first. Each provider
has its own bucket (capacity C, refill R tokens/second) matching its
published limit, so a slow provider never throttles a fast one.

INVARIANTS:
- Refill is continuous (elapsed * R), never in discrete ticks
- Token consumption happens under the bucket's own lock; no over-draw
- acquire() waits at most `timeout` seconds, then raises
  AdmissionDeadlineError (local exhaustion, distinct from upstream 429s)
- No lock is shared between providers
"""

import asyncio
import logging
from dataclasses import dataclass

from longbox.models.failure import FailureKind, RateLimitedError
from longbox.sync.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

# Float slack for tokens accumulated by continuous refill
_TOKEN_EPSILON = 1e-9

DEFAULT_ADMISSION_TIMEOUT = 5.0


class AdmissionDeadlineError(RateLimitedError):
    """
    Local admission control could not grant a token before the deadline.

    Raised by the limiter, not by a provider: the provider was never called.
    """

    def __init__(self, provider_id: str, timeout: float, wait_needed: float):
        self.timeout = timeout
        self.wait_needed = wait_needed
        super().__init__(
            provider_id,
            kind=FailureKind.ADMISSION_DEADLINE,
            message=f"Local request budget for {provider_id} is exhausted.",
            detail=f"needed {wait_needed:.2f}s, deadline {timeout:.2f}s",
            status_code=429,
        )


@dataclass(frozen=True)
class Permit:
    """Proof of admission for one outbound call."""

    provider_id: str
    granted_at: float
    waited: float


class TokenBucket:
    """
    Continuously refilling token bucket.

    Starts full. Tokens may go negative after penalize(), which models a
    provider-imposed cooldown: the debt is repaid by normal refill.
    """

    def __init__(self, capacity: float, refill_rate: float, clock: Clock | None = None) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        if refill_rate <= 0:
            raise ValueError(f"refill_rate must be positive, got {refill_rate}")
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self._clock = clock or SystemClock()
        self._tokens = self.capacity
        self._updated = self._clock.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock.monotonic()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
            self._updated = now

    @property
    def available(self) -> float:
        """Tokens available right now (may be fractional or negative)."""
        self._refill()
        return self._tokens

    async def try_take(self) -> float:
        """
        Take one token if possible.

        Returns 0.0 on success, otherwise the seconds until one token
        will have accumulated.
        """
        async with self._lock:
            self._refill()
            if self._tokens >= 1 - _TOKEN_EPSILON:
                self._tokens -= 1
                return 0.0
            return (1 - self._tokens) / self.refill_rate

    def penalize(self, seconds: float) -> None:
        """Push the bucket into debt so no token is granted for `seconds`."""
        self._refill()
        self._tokens = min(self._tokens, -seconds * self.refill_rate)


class RateLimiter:
    """
    Registry of token buckets keyed by provider id.

    Injected into provider clients; tests pass a ManualClock.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        default_timeout: float = DEFAULT_ADMISSION_TIMEOUT,
    ) -> None:
        self._clock = clock or SystemClock()
        self._buckets: dict[str, TokenBucket] = {}
        self.default_timeout = default_timeout

    def configure(self, provider_id: str, capacity: float, refill_rate: float) -> TokenBucket:
        """Create (or replace) the bucket for a provider."""
        bucket = TokenBucket(capacity, refill_rate, self._clock)
        self._buckets[provider_id] = bucket
        logger.info(
            "RATE_LIMIT_CONFIGURED",
            extra={"provider": provider_id, "capacity": capacity, "refill_rate": refill_rate},
        )
        return bucket

    def bucket(self, provider_id: str) -> TokenBucket:
        try:
            return self._buckets[provider_id]
        except KeyError:
            raise ValueError(f"No rate limit configured for provider '{provider_id}'") from None

    def available(self, provider_id: str) -> float:
        return self.bucket(provider_id).available

    def penalize(self, provider_id: str, seconds: float) -> None:
        """Apply an upstream cooldown to a provider's bucket."""
        self.bucket(provider_id).penalize(seconds)
        logger.warning(
            "RATE_LIMIT_COOLDOWN",
            extra={"provider": provider_id, "cooldown_seconds": seconds},
        )

    async def acquire(self, provider_id: str, timeout: float | None = None) -> Permit:
        """
        Wait for a token from the provider's bucket.

        Args:
            provider_id: Which bucket to draw from
            timeout: Longest wait in seconds; defaults to default_timeout

        Returns:
            Permit describing the grant

        Raises:
            AdmissionDeadlineError: If no token can be granted in time
        """
        bucket = self.bucket(provider_id)
        limit = self.default_timeout if timeout is None else timeout
        start = self._clock.monotonic()
        deadline = start + limit

        while True:
            wait = await bucket.try_take()
            now = self._clock.monotonic()
            if wait == 0.0:
                return Permit(provider_id=provider_id, granted_at=now, waited=now - start)

            remaining = deadline - now
            if wait > remaining + _TOKEN_EPSILON:
                logger.warning(
                    "ADMISSION_DEADLINE",
                    extra={
                        "provider": provider_id,
                        "wait_needed": round(wait, 3),
                        "remaining": round(max(0.0, remaining), 3),
                    },
                )
                raise AdmissionDeadlineError(provider_id, limit, wait)

            logger.debug(
                "ADMISSION_WAIT",
                extra={"provider": provider_id, "wait_seconds": round(wait, 3)},
            )
            await self._clock.sleep(wait)
