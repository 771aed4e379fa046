"""Simple in-memory rate limiter for API endpoints."""

import threading
import time
from functools import lru_cache
from typing import Any, Dict, Tuple

from fastapi import HTTPException

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Simple token bucket rate limiter.

    Tracks requests per key (e.g., user_id) and enforces limits.
    Uses in-memory storage, so limits are per process.
    """

    def __init__(self, requests_per_minute: int = 20, burst_size: int = 30, clock=time.monotonic):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Sustained rate limit
            burst_size: Maximum burst size
            clock: Monotonic time source (seconds)
        """
        if requests_per_minute <= 0 or burst_size <= 0:
            raise ValueError("requests_per_minute and burst_size must be positive")

        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.refill_rate = requests_per_minute / 60.0  # tokens per second
        self._clock = clock
        self._lock = threading.Lock()

        # Storage: key -> (tokens, last_refill_time)
        self._buckets: Dict[str, Tuple[float, float]] = {}

        # Track request counts for metrics
        self._request_counts: Dict[str, int] = {}

    def _refill_bucket(self, key: str) -> Tuple[float, float]:
        """Refill tokens in bucket based on elapsed time. Caller holds the lock."""
        now = self._clock()
        current_tokens, last_refill = self._buckets.get(key, (float(self.burst_size), now))

        elapsed = max(now - last_refill, 0.0)
        new_tokens = min(float(self.burst_size), current_tokens + elapsed * self.refill_rate)

        self._buckets[key] = (new_tokens, now)
        return new_tokens, now

    def check_limit(self, key: str, cost: float = 1.0) -> bool:
        """
        Check if request is allowed under rate limit.

        Args:
            key: Rate limit key (e.g., user_id)
            cost: Token cost for this request (default 1.0)

        Returns:
            True if allowed

        Raises:
            HTTPException: 429 if rate limited
        """
        with self._lock:
            current_tokens, last_refill = self._refill_bucket(key)

            if current_tokens >= cost:
                self._buckets[key] = (current_tokens - cost, last_refill)
                self._request_counts[key] = self._request_counts.get(key, 0) + 1
                return True

            retry_after = int((cost - current_tokens) / self.refill_rate) + 1

        logger.warning(
            f"Rate limit exceeded for key: {key}, "
            f"tokens: {current_tokens:.2f}/{self.burst_size}, "
            f"retry after: {retry_after}s"
        )

        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )

    def get_stats(self, key: str) -> Dict[str, Any]:
        """
        Get rate limit stats for a key.

        Args:
            key: Rate limit key

        Returns:
            Dictionary with stats
        """
        with self._lock:
            current_tokens, _ = self._refill_bucket(key)
            total = self._request_counts.get(key, 0)

        return {
            "tokens_remaining": int(current_tokens),
            "burst_size": self.burst_size,
            "requests_per_minute": self.requests_per_minute,
            "total_requests": total,
        }

    def reset(self, key: str) -> None:
        """
        Reset rate limit for a key.

        Args:
            key: Rate limit key
        """
        with self._lock:
            self._buckets.pop(key, None)
            self._request_counts.pop(key, None)

        logger.info(f"Rate limit reset for key: {key}")


@lru_cache(maxsize=1)
def get_chat_rate_limiter() -> RateLimiter:
    """Process-wide chat limiter sized from settings."""
    settings = get_settings()
    return RateLimiter(
        requests_per_minute=settings.CHAT_REQUESTS_PER_MINUTE,
        burst_size=settings.CHAT_BURST_SIZE,
    )


def check_chat_rate_limit(user_id: str) -> None:
    """
    Check rate limit for chat endpoint.

    Args:
        user_id: Caller's user id

    Raises:
        HTTPException: 429 if rate limited
    """
    get_chat_rate_limiter().check_limit(f"chat:{user_id}")


def get_chat_rate_limit_stats(user_id: str) -> Dict[str, Any]:
    """
    Get rate limit stats for chat endpoint.

    Args:
        user_id: Caller's user id

    Returns:
        Rate limit stats
    """
    return get_chat_rate_limiter().get_stats(f"chat:{user_id}")
