"""
Shared fixtures for unit tests.
"""

from typing import Any, AsyncGenerator, Callable, Dict

import fakeredis
import pytest

from incident_intake.models.error_report import ErrorReport
from incident_intake.services.redis_client import RedisClient


CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@pytest.fixture
def report_payload() -> Callable[..., Dict[str, Any]]:
    """Build a raw error report payload with overridable fields."""
    def _build(**overrides: Any) -> Dict[str, Any]:
        payload = {
            "error_type": "unhandled_exception",
            "message": "TypeError: x is undefined",
            "stack_trace": "TypeError: x is undefined\n    at render (app.js:42:7)",
            "source_file": "app.js",
            "line_number": 42,
            "column_number": 7,
            "url": "https://shop.example.com/checkout",
            "user_agent": CHROME_USER_AGENT,
            "organization_id": "t1",
            "assistant_id": "assistant_1",
            "session_id": "session_1",
            "error_source": {"origin": "client_website"},
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def make_report(report_payload) -> Callable[..., ErrorReport]:
    """Build a validated error report with overridable fields."""
    def _build(**overrides: Any) -> ErrorReport:
        return ErrorReport.model_validate(report_payload(**overrides))

    return _build


@pytest.fixture
async def redis_client() -> AsyncGenerator[RedisClient, None]:
    """Create Redis client with fakeredis for testing."""
    client = RedisClient(redis_url="redis://localhost:6379/0", retry_delay=0)

    # Replace the real Redis client with fakeredis
    fake_redis = fakeredis.FakeAsyncRedis(decode_responses=True)
    client._client = fake_redis

    yield client

    await fake_redis.flushdb()
    await fake_redis.aclose()
