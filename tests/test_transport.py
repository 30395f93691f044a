"""Tests for the httpx adapter."""

import httpx
import pytest

from resilience_core.errors import (
    AuthenticationError,
    AuthorizationError,
    CircuitOpenError,
    NetworkError,
    OverloadedError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    ServiceUnavailableError,
    ValidationError,
)
from resilience_core.orchestrator import ResilienceConfig, ResilienceOrchestrator
from resilience_core.circuit import CircuitBreakerConfig
from resilience_core.rate_limit import RateLimiterConfig
from resilience_core.retry import RetryConfig
from resilience_core.transport import ResilientHttpClient, error_from_exception, error_from_response

BASE_URL = "https://api.test"


def fast_orchestrator(max_retries=2, failure_threshold=5):
    return ResilienceOrchestrator(
        ResilienceConfig(
            retry=RetryConfig(max_retries=max_retries, initial_backoff=0.0, max_backoff=0.0),
            circuit_breaker=CircuitBreakerConfig(failure_threshold=failure_threshold),
            rate_limiter=RateLimiterConfig.unlimited(),
        )
    )


class ScriptedTransport:
    """Mock transport handler replaying responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses[min(len(self.requests), len(self.responses)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestErrorFromResponse:
    """Status code classification."""

    @pytest.mark.parametrize(
        "status,error_class",
        [
            (400, ValidationError),
            (404, ValidationError),
            (422, ValidationError),
            (401, AuthenticationError),
            (403, AuthorizationError),
            (408, RequestTimeoutError),
            (429, RateLimitError),
            (500, ServerError),
            (502, ServerError),
            (503, ServiceUnavailableError),
            (529, OverloadedError),
        ],
    )
    def test_status_mapping(self, status, error_class):
        error = error_from_response(httpx.Response(status, text="nope"))
        assert type(error) is error_class
        assert error.status_code == status

    def test_retry_after_header(self):
        response = httpx.Response(429, headers={"Retry-After": "5"}, json={"error": {"message": "slow down"}})
        error = error_from_response(response)
        assert error.retry_after() == 5.0
        assert "slow down" in str(error)
        assert error.response is response

    def test_message_variants(self):
        assert "quota" in str(error_from_response(httpx.Response(500, json={"error": "quota"})))
        assert "broken" in str(error_from_response(httpx.Response(500, json={"message": "broken"})))
        assert "plain text" in str(error_from_response(httpx.Response(500, text="plain text")))


class TestErrorFromException:
    """Transport failure classification."""

    def test_timeout(self):
        error = error_from_exception(httpx.ReadTimeout("slow"))
        assert isinstance(error, RequestTimeoutError)
        assert error.is_retryable()

    def test_connect_error(self):
        error = error_from_exception(httpx.ConnectError("refused"))
        assert isinstance(error, NetworkError)
        assert error.is_retryable()


class TestResilientHttpClient:
    """Requests through the orchestrator."""

    @pytest.mark.asyncio
    async def test_success(self):
        handler = ScriptedTransport(httpx.Response(200, json={"ok": True}))
        async with ResilientHttpClient(BASE_URL, orchestrator=fast_orchestrator(),
                                       transport=httpx.MockTransport(handler)) as client:
            response = await client.get("/health")
        assert response.json() == {"ok": True}
        assert str(handler.requests[0].url) == "https://api.test/health"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        handler = ScriptedTransport(
            httpx.Response(503, headers={"Retry-After": "0"}),
            httpx.Response(500),
            httpx.Response(200, text="finally"),
        )
        async with ResilientHttpClient(BASE_URL, orchestrator=fast_orchestrator(),
                                       transport=httpx.MockTransport(handler)) as client:
            response = await client.get("/items")
        assert response.text == "finally"
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_retries_network_errors(self):
        handler = ScriptedTransport(httpx.ConnectError("refused"), httpx.Response(200))
        async with ResilientHttpClient(BASE_URL, orchestrator=fast_orchestrator(),
                                       transport=httpx.MockTransport(handler)) as client:
            response = await client.get("/items")
        assert response.status_code == 200
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_authentication_not_retried(self):
        handler = ScriptedTransport(httpx.Response(401, json={"error": {"message": "bad key"}}))
        orchestrator = fast_orchestrator()
        async with ResilientHttpClient(BASE_URL, orchestrator=orchestrator,
                                       transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(AuthenticationError):
                await client.get("/me")
        assert len(handler.requests) == 1
        assert orchestrator.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_post_without_retry(self):
        handler = ScriptedTransport(httpx.Response(500))
        async with ResilientHttpClient(BASE_URL, orchestrator=fast_orchestrator(),
                                       transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ServerError):
                await client.post("/orders", json={"qty": 1}, retry=False)
        assert len(handler.requests) == 1
        assert handler.requests[0].method == "POST"

    @pytest.mark.asyncio
    async def test_circuit_opens_and_short_circuits(self):
        handler = ScriptedTransport(httpx.Response(500))
        orchestrator = fast_orchestrator(max_retries=0, failure_threshold=2)
        async with ResilientHttpClient(BASE_URL, orchestrator=orchestrator,
                                       transport=httpx.MockTransport(handler)) as client:
            for _ in range(2):
                with pytest.raises(ServerError):
                    await client.get("/items")
            with pytest.raises(CircuitOpenError):
                await client.get("/items")
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_tracks_server_rate_limits(self):
        handler = ScriptedTransport(
            httpx.Response(200, headers={"X-RateLimit-Limit": "100", "X-RateLimit-Remaining": "5"})
        )
        async with ResilientHttpClient(BASE_URL, orchestrator=fast_orchestrator(),
                                       transport=httpx.MockTransport(handler)) as client:
            await client.get("/items")
        assert client.tracker.limit == 100
        assert client.tracker.remaining == 5
        assert client.tracker.should_throttle()
