"""httpx adapter mapping HTTP failures onto the error contract."""

import logging
from typing import Optional, Dict, Any

import httpx

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
    parse_retry_after,
)
from .orchestrator import ResilienceOrchestrator
from .rate_limit import RateLimitTracker

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return response.text


def error_from_response(response: httpx.Response) -> ResilienceError:
    """Classify an unsuccessful response."""
    status_code = response.status_code
    message = _error_message(response)
    retry_after = parse_retry_after(response.headers.get("retry-after"))
    kwargs: Dict[str, Any] = {"status_code": status_code, "response": response}

    if status_code == 401:
        return AuthenticationError(f"Authentication failed: {message}", **kwargs)
    elif status_code == 403:
        return AuthorizationError(f"Permission denied: {message}", **kwargs)
    elif status_code == 408:
        return RequestTimeoutError(f"Request timed out: {message}", retry_after=retry_after, **kwargs)
    elif status_code == 429:
        return RateLimitError(f"Rate limit exceeded: {message}", retry_after=retry_after, **kwargs)
    elif status_code == 503:
        return ServiceUnavailableError(f"Service unavailable: {message}", retry_after=retry_after, **kwargs)
    elif status_code == 529:
        return OverloadedError(f"Service overloaded: {message}", retry_after=retry_after, **kwargs)
    elif status_code >= 500:
        return ServerError(f"Server error: {message}", retry_after=retry_after, **kwargs)
    return ValidationError(f"Invalid request: {message}", **kwargs)


def error_from_exception(exc: httpx.HTTPError) -> ResilienceError:
    """Classify a transport-level failure."""
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(f"Request timed out: {exc}")
    return NetworkError(f"Network error: {exc}")


class ResilientHttpClient:
    """
    Thin async HTTP client whose requests run through an orchestrator.

    Responses with status >= 400 are raised as classified errors so that
    retries and the circuit breaker see them. Server-advertised rate limits
    are tracked and honoured before each attempt.
    """

    def __init__(
        self,
        base_url: str = "",
        orchestrator: Optional[ResilienceOrchestrator] = None,
        tracker: Optional[RateLimitTracker] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.orchestrator = orchestrator or ResilienceOrchestrator()
        self.tracker = tracker or RateLimitTracker()
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        await self.tracker.wait_if_needed()
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise error_from_exception(e) from e

        self.tracker.update_from_headers(response.headers)
        if response.is_error:
            raise error_from_response(response)
        return response

    async def request(self, method: str, url: str, retry: bool = True, **kwargs: Any) -> httpx.Response:
        """
        Send a request with resilience protection.

        Args:
            method: HTTP method
            url: URL or path relative to ``base_url``
            retry: Set False for non-idempotent requests
            **kwargs: Passed to ``httpx.AsyncClient.request``

        Returns:
            The successful response
        """
        method = method.upper()
        name = f"{method} {httpx.URL(url).path or url}"

        async def operation() -> httpx.Response:
            return await self._send(method, url, **kwargs)

        if retry:
            return await self.orchestrator.execute(name, operation)
        return await self.orchestrator.execute_once(name, operation)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ResilientHttpClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
