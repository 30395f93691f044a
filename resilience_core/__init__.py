"""
resilience-core - Retry, circuit breaker and rate limiting for API clients.

This package wraps arbitrary async remote calls with:
- Exponential backoff with jitter, honoring server Retry-After hints
- A Closed/Open/HalfOpen circuit breaker that fails fast on unhealthy dependencies
- A token bucket rate limiter that paces outbound calls with bursting
- An orchestrator composing the three around one call

Basic usage:
    from resilience_core import ResilienceOrchestrator

    orchestrator = ResilienceOrchestrator()
    result = await orchestrator.execute("list-items", lambda: fetch_items())

With configuration:
    from resilience_core import ResilienceOrchestrator, ResilienceConfig, RetryConfig

    config = ResilienceConfig(
        retry=RetryConfig(max_retries=5),
        enable_rate_limiting=False,
    )
    orchestrator = ResilienceOrchestrator(config)

Errors passing through the core should implement ``is_retryable()`` and
optionally ``retry_after()``; see :mod:`resilience_core.errors`.
"""

__version__ = "0.1.0"

# Errors
from .errors import (
    ResilienceError,
    NetworkError,
    RequestTimeoutError,
    ServerError,
    ServiceUnavailableError,
    OverloadedError,
    RateLimitError,
    AuthenticationError,
    AuthorizationError,
    ValidationError,
    ConfigurationError,
    CircuitOpenError,
    is_retryable,
    extract_retry_after,
    parse_retry_after,
)

# Retry module
from .retry import (
    RetryConfig,
    RetryState,
    RetryExecutor,
    with_retry,
)

# Circuit breaker module
from .circuit import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitStateKind,
    Closed,
    Open,
    HalfOpen,
)

# Rate limiting module
from .rate_limit import (
    RateLimiter,
    RateLimiterConfig,
    RateLimitTracker,
    TokenBucketState,
)

# Orchestrator
from .orchestrator import (
    ResilienceConfig,
    ResilienceOrchestrator,
    resilient,
)

# HTTP adapter
from .transport import (
    ResilientHttpClient,
    error_from_response,
    error_from_exception,
)

__all__ = [
    # Version
    "__version__",
    # Errors
    "ResilienceError",
    "NetworkError",
    "RequestTimeoutError",
    "ServerError",
    "ServiceUnavailableError",
    "OverloadedError",
    "RateLimitError",
    "AuthenticationError",
    "AuthorizationError",
    "ValidationError",
    "ConfigurationError",
    "CircuitOpenError",
    "is_retryable",
    "extract_retry_after",
    "parse_retry_after",
    # Retry
    "RetryConfig",
    "RetryState",
    "RetryExecutor",
    "with_retry",
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitStateKind",
    "Closed",
    "Open",
    "HalfOpen",
    # Rate limiting
    "RateLimiter",
    "RateLimiterConfig",
    "RateLimitTracker",
    "TokenBucketState",
    # Orchestrator
    "ResilienceConfig",
    "ResilienceOrchestrator",
    "resilient",
    # HTTP adapter
    "ResilientHttpClient",
    "error_from_response",
    "error_from_exception",
]
