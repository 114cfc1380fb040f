"""
Unit tests for the remediation backend client.
"""

import json

import httpx
import pytest

from incident_intake.services.remediation_client import (
    RemediationBackendError,
    RemediationClient,
)
from incident_intake.utils.metrics import IngestionMetrics
from incident_intake.utils.resilience import CircuitBreaker, CircuitBreakerOpenError, CircuitState


def make_client(handler, failure_threshold: int = 5) -> RemediationClient:
    return RemediationClient(
        base_url="http://remediation.test/",
        timeout=5.0,
        circuit_breaker=CircuitBreaker(failure_threshold=failure_threshold, timeout=60, half_open_max_calls=1),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_request_fix_posts_incident():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"success": True, "status": "queued"})

    client = make_client(handler)
    metrics = IngestionMetrics()

    body = await client.request_fix("inc_1", "t1", metrics)
    await client.close()

    assert body == {"success": True, "status": "queued"}
    assert len(requests) == 1
    assert requests[0].method == "POST"
    assert str(requests[0].url) == "http://remediation.test/fix-error"
    assert json.loads(requests[0].content) == {"errorId": "inc_1", "organizationId": "t1"}
    assert metrics.api_calls == {"remediation_backend": 1}


@pytest.mark.asyncio
async def test_non_json_body_returns_empty_dict():
    client = make_client(lambda request: httpx.Response(202, text="accepted"))

    assert await client.request_fix("inc_1", "t1") == {}


@pytest.mark.asyncio
async def test_error_status_raises():
    client = make_client(lambda request: httpx.Response(503, json={"error": "busy"}))

    with pytest.raises(RemediationBackendError) as exc_info:
        await client.request_fix("inc_1", "t1")

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_transport_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)

    with pytest.raises(RemediationBackendError, match="ConnectError"):
        await client.request_fix("inc_1", "t1")


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    client = make_client(handler, failure_threshold=2)

    for _ in range(2):
        with pytest.raises(RemediationBackendError):
            await client.request_fix("inc_1", "t1")

    assert client.circuit_breaker.get_state() == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        await client.request_fix("inc_1", "t1")
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_close_is_idempotent():
    client = make_client(lambda request: httpx.Response(200, json={}))

    await client.close()
    await client.request_fix("inc_1", "t1")
    await client.close()
    await client.close()
