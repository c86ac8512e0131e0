"""Tests for token-bucket admission control."""

import asyncio

import pytest

from longbox.sync.clock import ManualClock
from longbox.sync.rate_limiter import AdmissionDeadlineError, RateLimiter, TokenBucket


@pytest.fixture
def limiter(clock: ManualClock) -> RateLimiter:
    limiter = RateLimiter(clock=clock, default_timeout=100.0)
    limiter.configure("metron", capacity=3, refill_rate=1.0)
    return limiter


class TestTokenBucket:
    def test_starts_full(self, clock: ManualClock) -> None:
        """A new bucket holds its full capacity."""
        bucket = TokenBucket(5, 1.0, clock)

        assert bucket.available == 5

    def test_rejects_bad_parameters(self, clock: ManualClock) -> None:
        """Capacity below one or a non-positive refill rate is refused."""
        with pytest.raises(ValueError):
            TokenBucket(0, 1.0, clock)
        with pytest.raises(ValueError):
            TokenBucket(1, 0.0, clock)

    async def test_refill_is_capped_at_capacity(self, clock: ManualClock) -> None:
        """Idle time never accumulates more than capacity tokens."""
        bucket = TokenBucket(2, 1.0, clock)
        await bucket.try_take()
        await bucket.try_take()

        clock.advance(1000)

        assert bucket.available == 2

    async def test_try_take_reports_wait(self, clock: ManualClock) -> None:
        """An empty bucket reports how long until the next token."""
        bucket = TokenBucket(1, 0.5, clock)

        assert await bucket.try_take() == 0.0
        assert await bucket.try_take() == pytest.approx(2.0)


class TestRateLimiter:
    async def test_burst_up_to_capacity_without_waiting(
        self, limiter: RateLimiter, clock: ManualClock
    ) -> None:
        """The first C acquisitions are granted immediately."""
        permits = [await limiter.acquire("metron") for _ in range(3)]

        assert all(p.waited == 0 for p in permits)
        assert clock.sleeps == []

    async def test_waits_for_refill(self, limiter: RateLimiter, clock: ManualClock) -> None:
        """Beyond capacity, callers sleep until a token refills."""
        for _ in range(3):
            await limiter.acquire("metron")

        permit = await limiter.acquire("metron")

        assert clock.sleeps == [pytest.approx(1.0)]
        assert permit.waited == pytest.approx(1.0)

    async def test_never_admits_more_than_bucket_allows(
        self, limiter: RateLimiter, clock: ManualClock
    ) -> None:
        """By any time t, at most C + r*t grants have been issued."""
        permits = await asyncio.gather(*(limiter.acquire("metron") for _ in range(12)))

        grant_times = sorted(p.granted_at for p in permits)
        for i, granted_at in enumerate(grant_times):
            assert i + 1 <= 3 + 1.0 * granted_at + 1e-9

    async def test_deadline_exceeded_raises_without_sleeping(self, clock: ManualClock) -> None:
        """A wait longer than the deadline fails fast with AdmissionDeadlineError."""
        limiter = RateLimiter(clock=clock)
        limiter.configure("comicvine", capacity=1, refill_rate=0.1)
        await limiter.acquire("comicvine")

        with pytest.raises(AdmissionDeadlineError) as exc_info:
            await limiter.acquire("comicvine", timeout=2.0)

        assert exc_info.value.provider_id == "comicvine"
        assert exc_info.value.wait_needed == pytest.approx(10.0)
        assert exc_info.value.status_code == 429
        assert clock.sleeps == []

    async def test_penalize_imposes_cooldown(
        self, limiter: RateLimiter, clock: ManualClock
    ) -> None:
        """An upstream Retry-After empties the bucket for that long."""
        limiter.penalize("metron", 30)

        await limiter.acquire("metron")

        assert clock.sleeps == [pytest.approx(31.0)]

    async def test_buckets_are_independent(
        self, limiter: RateLimiter, clock: ManualClock
    ) -> None:
        """Draining one provider's bucket does not affect another's."""
        limiter.configure("comicvine", capacity=1, refill_rate=1.0)
        for _ in range(3):
            await limiter.acquire("metron")

        await limiter.acquire("comicvine")

        assert clock.sleeps == []
        assert limiter.available("metron") == pytest.approx(0.0)

    async def test_unknown_provider_rejected(self, limiter: RateLimiter) -> None:
        """Acquiring from an unconfigured provider is a programming error."""
        with pytest.raises(ValueError, match="gcd"):
            await limiter.acquire("gcd")
