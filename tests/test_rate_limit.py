"""
Tests for the sliding window rate limiter
"""

import pytest

from opsportal.core.errors import RateLimited
from opsportal.core.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return SlidingWindowRateLimiter(window_seconds=60, clock=clock)


async def test_allows_up_to_limit(limiter):
    for _ in range(3):
        await limiter.hit("session:a", 3)
    with pytest.raises(RateLimited):
        await limiter.hit("session:a", 3)


async def test_keys_are_independent(limiter):
    await limiter.hit("session:a", 1)
    await limiter.hit("session:b", 1)
    await limiter.hit("ip:203.0.113.9", 1)
    assert limiter.remaining("session:a", 1) == 0
    assert limiter.remaining("session:c", 1) == 1


async def test_window_slides(limiter, clock):
    await limiter.hit("k", 2)
    clock.now += 30
    await limiter.hit("k", 2)

    with pytest.raises(RateLimited) as exc_info:
        await limiter.hit("k", 2)
    assert exc_info.value.retry_after == 30

    clock.now += 30
    await limiter.hit("k", 2)
    assert limiter.remaining("k", 2) == 0


async def test_rejected_hits_are_not_counted(limiter, clock):
    await limiter.hit("k", 1)
    for _ in range(5):
        with pytest.raises(RateLimited):
            await limiter.hit("k", 1)
    clock.now += 60
    await limiter.hit("k", 1)


async def test_retry_after_is_at_least_one_second(limiter, clock):
    await limiter.hit("k", 1)
    clock.now += 59.9
    with pytest.raises(RateLimited) as exc_info:
        await limiter.hit("k", 1)
    assert exc_info.value.retry_after == 1
    assert exc_info.value.status_code == 429


async def test_reset(limiter):
    await limiter.hit("k", 1)
    limiter.reset()
    await limiter.hit("k", 1)


async def test_over_budget_key_charges_no_other_key(limiter):
    await limiter.hit_all([("session:a", 5), ("ip:203.0.113.9", 1)])
    with pytest.raises(RateLimited):
        await limiter.hit_all([("session:b", 5), ("ip:203.0.113.9", 1)])

    assert limiter.remaining("session:a", 5) == 4
    assert limiter.remaining("session:b", 5) == 5


async def test_idle_keys_are_dropped(limiter, clock):
    for n in range(1000):
        await limiter.hit(f"session:{n}", 30)
    assert len(limiter) == 1000

    clock.now += 10_000
    await limiter.hit("session:late", 30)
    assert len(limiter) == 1


async def test_remaining_does_not_track_keys(limiter, clock):
    assert limiter.remaining("session:never-seen", 3) == 3
    assert len(limiter) == 0

    await limiter.hit("k", 3)
    clock.now += 61
    assert limiter.remaining("k", 3) == 3
    assert len(limiter) == 0
