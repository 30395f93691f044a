"""Token bucket rate limiting and server rate-limit tracking."""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Any, Dict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

# Float slack when comparing refilled tokens against a whole token
_EPSILON = 1e-9


@dataclass
class RateLimiterConfig:
    """
    Configuration for the token bucket.

    ``requests_per_minute`` sets the refill rate, ``burst_size`` the bucket
    capacity. A ``requests_per_minute`` of 0 disables limiting. When
    ``refill_interval`` (seconds) is set, tokens are added in whole intervals
    instead of continuously.
    """

    requests_per_minute: int = 60
    burst_size: int = 10
    refill_interval: Optional[float] = None

    def __post_init__(self) -> None:
        if self.requests_per_minute < 0:
            raise ConfigurationError("requests_per_minute must be >= 0")
        if self.burst_size < 1:
            raise ConfigurationError("burst_size must be >= 1")
        if self.refill_interval is not None and self.refill_interval <= 0:
            raise ConfigurationError("refill_interval must be positive when set")

    @property
    def capacity(self) -> int:
        return self.burst_size

    @property
    def refill_rate(self) -> float:
        """Tokens per second."""
        return self.requests_per_minute / 60.0

    @property
    def is_unlimited(self) -> bool:
        return self.requests_per_minute == 0

    @classmethod
    def unlimited(cls) -> "RateLimiterConfig":
        return cls(requests_per_minute=0)

    @classmethod
    def high_throughput(cls) -> "RateLimiterConfig":
        return cls(requests_per_minute=300, burst_size=50)

    @classmethod
    def conservative(cls) -> "RateLimiterConfig":
        return cls(requests_per_minute=30, burst_size=5)


@dataclass
class TokenBucketState:
    """Mutable bucket contents. Never persisted."""

    tokens: float
    last_refill: float


class RateLimiter:
    """
    Token bucket limiter pacing outbound calls.

    Up to ``capacity`` calls proceed immediately from a full bucket; later
    calls wait for refill. Concurrent waiters race for refilled tokens, there
    is no FIFO ordering.
    """

    def __init__(self, config: Optional[RateLimiterConfig] = None, clock: Clock = time.monotonic):
        self.config = config or RateLimiterConfig()
        self._clock = clock
        self._bucket = TokenBucketState(tokens=float(self.config.capacity), last_refill=clock())
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        bucket = self._bucket
        elapsed = now - bucket.last_refill
        if elapsed <= 0:
            return

        interval = self.config.refill_interval
        if interval is None:
            bucket.tokens = min(float(self.config.capacity), bucket.tokens + elapsed * self.config.refill_rate)
            bucket.last_refill = now
            return

        steps = math.floor(elapsed / interval)
        if steps:
            added = steps * interval * self.config.refill_rate
            bucket.tokens = min(float(self.config.capacity), bucket.tokens + added)
            bucket.last_refill += steps * interval

    def _wait_time(self, now: float) -> float:
        """Seconds until one whole token is available."""
        missing = 1.0 - self._bucket.tokens
        wait = missing / self.config.refill_rate

        interval = self.config.refill_interval
        if interval is not None:
            # Round up to the interval boundary that delivers the token
            since_refill = now - self._bucket.last_refill
            steps = math.ceil(missing / (interval * self.config.refill_rate))
            wait = steps * interval - since_refill
        return max(0.0, wait)

    def _take(self) -> Optional[float]:
        """Consume a token, or return how long to wait for one."""
        with self._lock:
            now = self._clock()
            self._refill(now)
            if self._bucket.tokens + _EPSILON >= 1.0:
                self._bucket.tokens = max(0.0, self._bucket.tokens - 1.0)
                return None
            return self._wait_time(now)

    def try_acquire(self) -> bool:
        """Consume a token if one is available, without waiting."""
        if self.config.is_unlimited:
            return True
        return self._take() is None

    async def acquire(self) -> None:
        """Consume a token, suspending the caller until one is available."""
        if self.config.is_unlimited:
            return

        while True:
            wait = self._take()
            if wait is None:
                return
            logger.debug("Rate limited locally, waiting %.3fs for a token", wait)
            await asyncio.sleep(wait)

    @property
    def available_tokens(self) -> float:
        """Tokens currently in the bucket, after refill."""
        with self._lock:
            self._refill(self._clock())
            return self._bucket.tokens

    def reset(self) -> None:
        """Refill the bucket to capacity."""
        with self._lock:
            self._bucket = TokenBucketState(tokens=float(self.config.capacity), last_refill=self._clock())

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "requests_per_minute": self.config.requests_per_minute,
            "capacity": self.config.capacity,
            "available_tokens": None if self.config.is_unlimited else round(self.available_tokens, 3),
        }


class RateLimitTracker:
    """
    Tracks the rate limit a server advertises in its response headers.

    The local token bucket keeps us under our own budget; the tracker lets a
    client back off before the server starts rejecting requests.
    """

    LIMIT_HEADER = "x-ratelimit-limit"
    REMAINING_HEADER = "x-ratelimit-remaining"
    RESET_HEADER = "x-ratelimit-reset"

    def __init__(self, buffer_fraction: float = 0.1, clock: Clock = time.time):
        if not 0.0 <= buffer_fraction <= 1.0:
            raise ConfigurationError("buffer_fraction must be between 0.0 and 1.0")
        self.buffer_fraction = buffer_fraction
        self._clock = clock
        self.limit: Optional[int] = None
        self.remaining: Optional[int] = None
        self.reset_at: Optional[float] = None  # Unix timestamp
        self._lock = threading.Lock()

    def update(self, limit: Optional[int], remaining: Optional[int], reset_at: Optional[float]) -> None:
        with self._lock:
            if limit is not None:
                self.limit = limit
            if remaining is not None:
                self.remaining = remaining
            if reset_at is not None:
                self.reset_at = reset_at

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Record limits from response headers; missing or garbled values are ignored."""
        lowered = {k.lower(): v for k, v in headers.items()}

        def _int(name: str) -> Optional[int]:
            try:
                return int(float(lowered[name]))
            except (KeyError, ValueError):
                return None

        reset = lowered.get(self.RESET_HEADER)
        reset_at: Optional[float] = None
        if reset is not None:
            try:
                value = float(reset)
            except ValueError:
                value = None
            if value is not None:
                # Small values are seconds-until-reset, large ones epoch seconds
                reset_at = value if value > 1e9 else self._clock() + value

        self.update(_int(self.LIMIT_HEADER), _int(self.REMAINING_HEADER), reset_at)

    def should_throttle(self) -> bool:
        """True when the remaining budget is inside the safety buffer."""
        with self._lock:
            if self.limit is None or self.remaining is None:
                return False
            return self.remaining <= self.limit * self.buffer_fraction

    def wait_time(self) -> Optional[float]:
        """Seconds until the server budget resets, if it is exhausted."""
        with self._lock:
            if self.remaining is None or self.remaining > 0 or self.reset_at is None:
                return None
            wait = self.reset_at - self._clock()
            return wait if wait > 0 else None

    async def wait_if_needed(self) -> None:
        wait = self.wait_time()
        if wait is not None:
            logger.warning("Server rate limit exhausted, waiting %.1fs for reset", wait)
            await asyncio.sleep(wait)
