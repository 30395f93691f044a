"""Orchestrator composing rate limiting, circuit breaking and retries."""

import logging
import os
from dataclasses import dataclass, field, asdict
from functools import wraps
from typing import Awaitable, Callable, Optional, Any, Dict, TypeVar

from .circuit import CircuitBreaker, CircuitBreakerConfig
from .errors import ConfigurationError, is_retryable
from .rate_limit import RateLimiter, RateLimiterConfig
from .retry import RetryConfig, RetryExecutor, RetryCallback

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENV_PREFIX = "RESILIENCE_"


def _env(prefix: str, name: str, cast: Callable[[str], Any], default: Any) -> Any:
    raw = os.environ.get(f"{prefix}{name}")
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {prefix}{name}: {raw!r}") from e


def _env_window(prefix: str, name: str, default: Optional[float]) -> Optional[float]:
    """Like ``_env`` for an optional float; empty or ``none`` clears it."""
    raw = os.environ.get(f"{prefix}{name}")
    if raw is None:
        return default
    if raw.strip().lower() in ("", "none", "null"):
        return None
    return _env(prefix, name, float, default)


def _env_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(value)


@dataclass
class ResilienceConfig:
    """Configuration for the resilience orchestrator."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    rate_limiter: RateLimiterConfig = field(default_factory=RateLimiterConfig)

    enable_retry: bool = True
    enable_circuit_breaker: bool = True
    enable_rate_limiting: bool = True

    @classmethod
    def disabled(cls) -> "ResilienceConfig":
        """Passthrough: the operation is invoked once, nothing else."""
        return cls(
            retry=RetryConfig.no_retry(),
            rate_limiter=RateLimiterConfig.unlimited(),
            enable_retry=False,
            enable_circuit_breaker=False,
            enable_rate_limiting=False,
        )

    @classmethod
    def aggressive(cls) -> "ResilienceConfig":
        """More retries, a sensitive breaker and higher throughput."""
        return cls(
            retry=RetryConfig.aggressive(),
            circuit_breaker=CircuitBreakerConfig.sensitive(),
            rate_limiter=RateLimiterConfig.high_throughput(),
        )

    @classmethod
    def conservative(cls) -> "ResilienceConfig":
        """Patient retries, a lenient breaker and lower throughput."""
        return cls(
            retry=RetryConfig.conservative(),
            circuit_breaker=CircuitBreakerConfig.lenient(),
            rate_limiter=RateLimiterConfig.conservative(),
        )

    @classmethod
    def preset(cls, name: str) -> "ResilienceConfig":
        """Look up a preset by name ("default", "aggressive", "conservative", "disabled")."""
        presets = {
            "default": cls,
            "aggressive": cls.aggressive,
            "conservative": cls.conservative,
            "disabled": cls.disabled,
        }
        if name not in presets:
            raise ConfigurationError(f"Unknown preset: {name}")
        return presets[name]()

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, base: Optional["ResilienceConfig"] = None) -> "ResilienceConfig":
        """
        Build a configuration from environment variables.

        Unset variables keep the values of ``base`` (defaults when omitted),
        e.g. ``RESILIENCE_MAX_RETRIES=5`` or ``RESILIENCE_ENABLE_RETRY=false``.
        ``RESILIENCE_FAILURE_WINDOW=none`` switches back to consecutive counting.
        """
        base = base or cls()
        retry = RetryConfig(
            max_retries=_env(prefix, "MAX_RETRIES", int, base.retry.max_retries),
            initial_backoff=_env(prefix, "INITIAL_BACKOFF", float, base.retry.initial_backoff),
            max_backoff=_env(prefix, "MAX_BACKOFF", float, base.retry.max_backoff),
            multiplier=_env(prefix, "MULTIPLIER", float, base.retry.multiplier),
            jitter=_env(prefix, "JITTER", float, base.retry.jitter),
        )
        circuit = CircuitBreakerConfig(
            failure_threshold=_env(prefix, "FAILURE_THRESHOLD", int, base.circuit_breaker.failure_threshold),
            success_threshold=_env(prefix, "SUCCESS_THRESHOLD", int, base.circuit_breaker.success_threshold),
            open_timeout=_env(prefix, "OPEN_TIMEOUT", float, base.circuit_breaker.open_timeout),
            failure_window=_env_window(prefix, "FAILURE_WINDOW", base.circuit_breaker.failure_window),
        )
        limiter = RateLimiterConfig(
            requests_per_minute=_env(prefix, "REQUESTS_PER_MINUTE", int, base.rate_limiter.requests_per_minute),
            burst_size=_env(prefix, "BURST_SIZE", int, base.rate_limiter.burst_size),
            refill_interval=base.rate_limiter.refill_interval,
        )
        return cls(
            retry=retry,
            circuit_breaker=circuit,
            rate_limiter=limiter,
            enable_retry=_env(prefix, "ENABLE_RETRY", _env_bool, base.enable_retry),
            enable_circuit_breaker=_env(prefix, "ENABLE_CIRCUIT_BREAKER", _env_bool, base.enable_circuit_breaker),
            enable_rate_limiting=_env(prefix, "ENABLE_RATE_LIMITING", _env_bool, base.enable_rate_limiting),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ResilienceOrchestrator:
    """
    Runs remote calls behind a rate limiter, a circuit breaker and retries.

    Per call: acquire a token, consult the breaker, run the operation through
    the retry executor, then report the final outcome to the breaker. One
    breaker and one bucket are shared by every call on this instance; the
    ``name`` passed to :meth:`execute` only labels log records.

    Non-retryable failures (bad credentials, invalid requests) never count
    against the breaker.
    """

    def __init__(
        self,
        config: Optional[ResilienceConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        rate_limiter: Optional[RateLimiter] = None,
        on_retry: Optional[RetryCallback] = None,
    ):
        self.config = config or ResilienceConfig()
        self.retry = RetryExecutor(self.config.retry, on_retry=on_retry)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(self.config.circuit_breaker)
        self.rate_limiter = rate_limiter or RateLimiter(self.config.rate_limiter)

    async def _admit(self, name: str) -> None:
        if self.config.enable_rate_limiting:
            await self.rate_limiter.acquire()

        if self.config.enable_circuit_breaker:
            try:
                self.circuit_breaker.check()
            except Exception:
                logger.info("Rejected '%s': circuit breaker is open", name)
                raise

    def _record(self, name: str, error: Optional[BaseException]) -> None:
        if not self.config.enable_circuit_breaker:
            return
        if error is None:
            self.circuit_breaker.record_success()
        elif is_retryable(error):
            self.circuit_breaker.record_failure()
        else:
            logger.debug("'%s' failed with non-retryable error, breaker untouched: %s", name, error)

    async def _run(self, name: str, operation: Callable[[], Awaitable[T]], retry: bool) -> T:
        await self._admit(name)

        try:
            if retry:
                result = await self.retry.execute(operation)
            else:
                result = await operation()
        except Exception as e:
            self._record(name, e)
            raise

        self._record(name, None)
        return result

    async def execute(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Execute an operation with full resilience protection.

        Args:
            name: Label for logging
            operation: Zero-argument callable returning an awaitable; may be
                invoked more than once

        Returns:
            Result from the operation

        Raises:
            CircuitOpenError: If the breaker rejected the call (not attempted)
            Exception: The last error raised by the operation
        """
        return await self._run(name, operation, retry=self.config.enable_retry)

    async def execute_once(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Like :meth:`execute`, but never retries."""
        return await self._run(name, operation, retry=False)

    def reset(self) -> None:
        """Reset the breaker and refill the bucket."""
        self.circuit_breaker.reset()
        self.rate_limiter.reset()
        logger.info("Resilience orchestrator reset")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "retry_enabled": self.config.enable_retry,
            "circuit_breaker": self.circuit_breaker.get_stats() if self.config.enable_circuit_breaker else None,
            "rate_limiter": self.rate_limiter.get_stats() if self.config.enable_rate_limiting else None,
        }


def resilient(orchestrator: ResilienceOrchestrator, name: Optional[str] = None, once: bool = False):
    """
    Decorator routing an async function through an orchestrator.

    Args:
        orchestrator: Orchestrator to execute with
        name: Label for logging (defaults to the function name)
        once: Skip retries, as with ``execute_once``
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        label = name or func.__qualname__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            operation = lambda: func(*args, **kwargs)  # noqa: E731
            if once:
                return await orchestrator.execute_once(label, operation)
            return await orchestrator.execute(label, operation)

        wrapper._orchestrator = orchestrator  # type: ignore
        return wrapper

    return decorator
