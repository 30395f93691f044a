"""Error contract and taxonomy for resilient calls."""

import time
from email.utils import parsedate_to_datetime
from typing import Optional, Any


class ResilienceError(Exception):
    """
    Base exception for errors flowing through the resilience core.

    Subclasses declare whether they are retryable. A dependency may attach
    a server-supplied retry delay (seconds) which overrides computed backoff.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        response: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self._retry_after = retry_after
        self.response = response

    def is_retryable(self) -> bool:
        """Whether another attempt could succeed."""
        return self.retryable

    def retry_after(self) -> Optional[float]:
        """Server-supplied delay in seconds, if any."""
        return self._retry_after


class NetworkError(ResilienceError):
    """Raised when the connection to the dependency fails."""

    retryable = True


class RequestTimeoutError(ResilienceError):
    """Raised when the dependency does not answer in time."""

    retryable = True


class ServerError(ResilienceError):
    """Raised when the dependency returns a server-side error."""

    retryable = True


class ServiceUnavailableError(ServerError):
    """Raised when the dependency reports it is temporarily unavailable."""

    pass


class OverloadedError(ServerError):
    """Raised when the dependency reports it is overloaded."""

    pass


class RateLimitError(ResilienceError):
    """Raised when the dependency throttles us."""

    retryable = True


class AuthenticationError(ResilienceError):
    """Raised when credentials are missing or rejected."""

    pass


class AuthorizationError(ResilienceError):
    """Raised when credentials lack permission for the request."""

    pass


class ValidationError(ResilienceError):
    """Raised when the request itself is invalid."""

    pass


class ConfigurationError(ResilienceError):
    """Raised when the client or the resilience core is misconfigured."""

    pass


class CircuitOpenError(ResilienceError):
    """
    Raised when the circuit breaker rejects a call.

    The wrapped operation was not attempted. This is never retryable and never
    counts as a dependency failure.
    """

    def __init__(self, message: str = "circuit breaker is open", remaining_timeout: float = 0):
        super().__init__(message)
        self.remaining_timeout = remaining_timeout


def is_retryable(error: BaseException) -> bool:
    """Classify any exception; unknown errors are not retried."""
    check = getattr(error, "is_retryable", None)
    if callable(check):
        return bool(check())
    return False


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header value.

    Accepts delta-seconds ("120", "1.5") or an HTTP date. Returns seconds
    from now, never negative, or None when the value cannot be parsed.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    return max(0.0, when.timestamp() - time.time())


def extract_retry_after(error: BaseException) -> Optional[float]:
    """Extract a retry delay from various exception types."""
    # Contract method first
    retry_after = getattr(error, "retry_after", None)
    if callable(retry_after):
        retry_after = retry_after()
    if retry_after is not None:
        try:
            return float(retry_after)
        except (TypeError, ValueError):
            return None

    # Fall back to a Retry-After header on an attached response
    response = getattr(error, "response", None)
    if response is not None and hasattr(response, "headers"):
        return parse_retry_after(response.headers.get("retry-after"))

    return None
