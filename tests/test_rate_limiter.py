"""Tests for the token bucket rate limiter."""

import pytest
from fastapi import HTTPException

from app.core.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_allows_burst_then_blocks():
    limiter = RateLimiter(requests_per_minute=60, burst_size=3, clock=FakeClock())

    for _ in range(3):
        assert limiter.check_limit("chat:user-a")

    with pytest.raises(HTTPException) as exc_info:
        limiter.check_limit("chat:user-a")

    assert exc_info.value.status_code == 429
    assert exc_info.value.headers["Retry-After"] == "2"


def test_tokens_refill_over_time():
    clock = FakeClock()
    limiter = RateLimiter(requests_per_minute=60, burst_size=1, clock=clock)
    limiter.check_limit("k")

    clock.advance(1.0)

    assert limiter.check_limit("k")


def test_refill_never_exceeds_burst():
    clock = FakeClock()
    limiter = RateLimiter(requests_per_minute=60, burst_size=2, clock=clock)
    limiter.check_limit("k")

    clock.advance(3600)

    assert limiter.get_stats("k")["tokens_remaining"] == 2


def test_keys_are_independent():
    limiter = RateLimiter(requests_per_minute=1, burst_size=1, clock=FakeClock())
    limiter.check_limit("chat:user-a")

    assert limiter.check_limit("chat:user-b")


def test_stats_and_reset():
    limiter = RateLimiter(requests_per_minute=10, burst_size=5, clock=FakeClock())
    limiter.check_limit("k")
    limiter.check_limit("k")

    stats = limiter.get_stats("k")
    assert stats == {"tokens_remaining": 3, "burst_size": 5, "requests_per_minute": 10, "total_requests": 2}

    limiter.reset("k")
    assert limiter.get_stats("k")["tokens_remaining"] == 5
    assert limiter.get_stats("k")["total_requests"] == 0


def test_rejects_non_positive_configuration():
    with pytest.raises(ValueError):
        RateLimiter(requests_per_minute=0)
