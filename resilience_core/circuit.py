"""Circuit breaker pattern for fault tolerance."""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Optional, Any, Dict, Union

from .errors import CircuitOpenError, ConfigurationError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CircuitStateKind(Enum):
    """Circuit breaker state names."""

    CLOSED = "closed"  # Normal operation, requests pass through
    OPEN = "open"  # Circuit tripped, requests fail fast
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass(frozen=True)
class Closed:
    failure_count: int = 0

    @property
    def kind(self) -> CircuitStateKind:
        return CircuitStateKind.CLOSED


@dataclass(frozen=True)
class Open:
    reopened_at: float
    reopens_at: float

    @property
    def kind(self) -> CircuitStateKind:
        return CircuitStateKind.OPEN


@dataclass(frozen=True)
class HalfOpen:
    success_count: int = 0

    @property
    def kind(self) -> CircuitStateKind:
        return CircuitStateKind.HALF_OPEN


CircuitState = Union[Closed, Open, HalfOpen]


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker. Durations are in seconds."""

    failure_threshold: int = 5  # Failures before opening
    success_threshold: int = 2  # Successes in half-open before closing
    open_timeout: float = 60.0  # Seconds before trying half-open
    failure_window: Optional[float] = None  # Rolling window; None counts consecutive failures

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigurationError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ConfigurationError("success_threshold must be >= 1")
        if self.open_timeout < 0:
            raise ConfigurationError("open_timeout must be >= 0")
        if self.failure_window is not None and self.failure_window <= 0:
            raise ConfigurationError("failure_window must be positive when set")

    @classmethod
    def sensitive(cls) -> "CircuitBreakerConfig":
        """Opens quickly."""
        return cls(failure_threshold=3, success_threshold=2, open_timeout=30.0, failure_window=60.0)

    @classmethod
    def lenient(cls) -> "CircuitBreakerConfig":
        """Tolerates more failures before opening."""
        return cls(failure_threshold=10, success_threshold=3, open_timeout=120.0, failure_window=300.0)


class CircuitBreaker:
    """
    Circuit breaker implementation.

    States:
    - Closed: Normal operation. Failures increment counter.
    - Open: All requests fail fast until ``reopens_at``.
    - HalfOpen: Trial requests allowed to test recovery.

    Open always passes through HalfOpen on the way back to Closed.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        name: str = "default",
        clock: Clock = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state: CircuitState = Closed()
        # Timestamps of recent failures, only used with a failure window
        self._failures: Deque[float] = deque()

        self._lock = threading.RLock()

    @property
    def state(self) -> CircuitState:
        """Snapshot of the current state. Never transitions."""
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        """Get current failure count."""
        state = self.state
        return state.failure_count if isinstance(state, Closed) else 0

    @property
    def is_closed(self) -> bool:
        return isinstance(self.state, Closed)

    @property
    def is_open(self) -> bool:
        return isinstance(self.state, Open)

    @property
    def is_half_open(self) -> bool:
        return isinstance(self.state, HalfOpen)

    @property
    def remaining_timeout(self) -> float:
        """Seconds until an open circuit lets a trial request through."""
        with self._lock:
            if isinstance(self._state, Open):
                return max(0.0, self._state.reopens_at - self._clock())
            return 0.0

    def _transition_to_open(self) -> None:
        now = self._clock()
        previous = self._state
        self._state = Open(reopened_at=now, reopens_at=now + self.config.open_timeout)
        self._failures.clear()
        logger.warning(
            "Circuit '%s' opened (was %s), probing again in %.1fs",
            self.name,
            previous.kind.value,
            self.config.open_timeout,
        )

    def _transition_to_half_open(self) -> None:
        self._state = HalfOpen()
        logger.info("Circuit '%s' half-open, allowing trial request", self.name)

    def _transition_to_closed(self) -> None:
        self._state = Closed()
        self._failures.clear()
        logger.info("Circuit '%s' closed", self.name)

    def _count_failure(self, now: float) -> int:
        """Count a failure in Closed and return the failures that still count."""
        window = self.config.failure_window
        if window is None:
            return self._state.failure_count + 1  # type: ignore[union-attr]

        self._failures.append(now)
        while self._failures and now - self._failures[0] > window:
            self._failures.popleft()
        return len(self._failures)

    def check(self) -> None:
        """
        Check whether a call may proceed.

        Raises:
            CircuitOpenError: If the circuit is open and the timeout has not elapsed
        """
        with self._lock:
            state = self._state
            if isinstance(state, Open):
                now = self._clock()
                if now < state.reopens_at:
                    raise CircuitOpenError(
                        f"Circuit '{self.name}' is open",
                        remaining_timeout=state.reopens_at - now,
                    )
                self._transition_to_half_open()

    def record_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            state = self._state
            if isinstance(state, HalfOpen):
                successes = state.success_count + 1
                logger.debug(
                    "Circuit '%s' half-open success (%d/%d)",
                    self.name,
                    successes,
                    self.config.success_threshold,
                )
                if successes >= self.config.success_threshold:
                    self._transition_to_closed()
                else:
                    self._state = HalfOpen(success_count=successes)

            elif isinstance(state, Closed):
                # Reset failure count on success
                self._failures.clear()
                if state.failure_count:
                    self._state = Closed()

    def record_failure(self) -> None:
        """Record a failed call."""
        with self._lock:
            state = self._state
            if isinstance(state, HalfOpen):
                self._transition_to_open()

            elif isinstance(state, Closed):
                failures = self._count_failure(self._clock())
                logger.debug(
                    "Circuit '%s' failure (%d/%d)",
                    self.name,
                    failures,
                    self.config.failure_threshold,
                )
                if failures >= self.config.failure_threshold:
                    self._transition_to_open()
                else:
                    self._state = Closed(failure_count=failures)

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        with self._lock:
            self._transition_to_closed()

    def trip(self) -> None:
        """Manually trip the circuit breaker to open state."""
        with self._lock:
            self._transition_to_open()

    def get_stats(self) -> Dict[str, Any]:
        """Get circuit breaker statistics."""
        with self._lock:
            state = self._state
            return {
                "name": self.name,
                "state": state.kind.value,
                "failure_count": state.failure_count if isinstance(state, Closed) else 0,
                "success_count": state.success_count if isinstance(state, HalfOpen) else 0,
                "remaining_timeout": self.remaining_timeout,
            }
