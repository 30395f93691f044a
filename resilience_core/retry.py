"""Exponential backoff with jitter for retry logic."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar, Optional, Any
from functools import wraps

from .errors import ConfigurationError, is_retryable, extract_retry_after

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, BaseException, float], None]


@dataclass
class RetryConfig:
    """Configuration for retry behavior. Durations are in seconds."""

    max_retries: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
    multiplier: float = 2.0
    jitter: float = 0.25  # Random jitter factor (0-1)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.initial_backoff < 0:
            raise ConfigurationError("initial_backoff must be >= 0")
        if self.initial_backoff > self.max_backoff:
            raise ConfigurationError("initial_backoff must not exceed max_backoff")
        if self.multiplier < 1.0:
            raise ConfigurationError("multiplier must be >= 1.0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ConfigurationError("jitter must be between 0.0 and 1.0")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        """Exactly one attempt."""
        return cls(max_retries=0)

    @classmethod
    def aggressive(cls) -> "RetryConfig":
        """More attempts, shorter waits."""
        return cls(max_retries=5, initial_backoff=0.5, max_backoff=30.0)

    @classmethod
    def conservative(cls) -> "RetryConfig":
        """Fewer attempts, more patience between them."""
        return cls(max_retries=2, initial_backoff=2.0, max_backoff=120.0)


class RetryState:
    """Tracks retry state across the attempts of one execution."""

    def __init__(self, config: RetryConfig):
        self.config = config
        self.attempt = 0
        self.last_exception: Optional[BaseException] = None
        self.total_delay = 0.0

    def should_retry(self, exception: BaseException) -> bool:
        """Determine if we should retry based on the error contract."""
        if self.attempt >= self.config.max_retries:
            return False
        return is_retryable(exception)

    def increment(self, exception: BaseException, delay: float) -> None:
        """Increment attempt counter and store exception."""
        self.attempt += 1
        self.last_exception = exception
        self.total_delay += delay


class RetryExecutor:
    """
    Runs an async operation up to ``max_retries + 1`` times.

    The operation may be invoked several times; it must be safe to repeat.
    A ``retry_after`` hint on the error is used verbatim as the next delay,
    otherwise the delay grows exponentially and is perturbed by jitter.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        on_retry: Optional[RetryCallback] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or RetryConfig()
        self.on_retry = on_retry
        self._rng = rng or random.Random()

    def calculate_backoff(self, attempt: int) -> float:
        """Backoff for a zero-based attempt, without jitter."""
        config = self.config
        if config.initial_backoff == 0 or config.multiplier == 1:
            return min(config.initial_backoff, config.max_backoff)
        try:
            delay = config.initial_backoff * (config.multiplier ** attempt)
        except OverflowError:
            # multiplier ** attempt left the float range; the cap applies
            return config.max_backoff
        return min(delay, config.max_backoff)

    def jittered(self, delay: float) -> float:
        """Apply jitter: uniform value within delay +/- (delay * jitter)."""
        jitter_range = delay * self.config.jitter
        delay = delay + self._rng.uniform(-jitter_range, jitter_range)
        return max(0.0, delay)

    def next_delay(self, attempt: int, exception: BaseException) -> float:
        """Delay before the next attempt; server hints take precedence."""
        retry_after = extract_retry_after(exception)
        if retry_after is not None:
            return max(0.0, retry_after)
        return self.jittered(self.calculate_backoff(attempt))

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Execute an async operation with retry logic.

        Args:
            operation: Zero-argument callable returning an awaitable

        Returns:
            Result from the first successful attempt

        Raises:
            The last error once retries are exhausted, or the first
            non-retryable error immediately.
        """
        state = RetryState(self.config)

        while True:
            try:
                return await operation()
            except Exception as e:
                if not state.should_retry(e):
                    if state.attempt:
                        logger.debug(
                            "Giving up after %d attempt(s): %s", state.attempt + 1, e
                        )
                    raise

                delay = self.next_delay(state.attempt, e)
                state.increment(e, delay)

                logger.debug(
                    "Retry %d/%d in %.3fs after error: %s",
                    state.attempt,
                    self.config.max_retries,
                    delay,
                    e,
                )
                if self.on_retry:
                    self.on_retry(state.attempt, e, delay)

                await asyncio.sleep(delay)


def with_retry(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[RetryCallback] = None,
):
    """
    Decorator for adding retry logic to async functions.

    Args:
        config: Retry configuration
        on_retry: Callback called before each retry (attempt, exception, delay)
    """
    executor = RetryExecutor(config, on_retry=on_retry)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await executor.execute(lambda: func(*args, **kwargs))

        wrapper._retry_executor = executor  # type: ignore
        return wrapper

    return decorator
