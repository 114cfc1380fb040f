"""
Unit tests for error message normalization.
"""

import pytest

from incident_intake.analyzers.normalizer import normalize_message
from incident_intake.models.error_report import ErrorType


class TestMeasurements:
    """Durations and sizes in performance messages."""

    def test_duration_replaced_for_performance_issue(self):
        result = normalize_message("Long task detected: 73ms", ErrorType.PERFORMANCE_ISSUE)
        assert result == "Long task detected: Xms"

    def test_multiple_units_replaced(self):
        result = normalize_message(
            "Slow resource: 1.5s, size: 300KB",
            ErrorType.PERFORMANCE_ISSUE,
        )
        assert result == "Slow resource: Xs, size: XKB"

    def test_measurements_kept_for_other_categories(self):
        result = normalize_message("Request took: 73ms", ErrorType.CONSOLE_ERROR)
        assert result == "Request took: 73ms"

    def test_same_error_with_different_durations_converges(self):
        first = normalize_message("Long task detected: 73ms", "performance_issue")
        second = normalize_message("Long task detected: 1204ms", "performance_issue")
        assert first == second


class TestUrls:
    """Query strings in network error messages."""

    def test_query_string_removed_for_network_error(self):
        result = normalize_message(
            "Failed to fetch https://api.example.com/users?id=5&token=abc",
            ErrorType.NETWORK_ERROR,
        )
        assert result == "Failed to fetch https://api.example.com/users"

    def test_port_is_kept(self):
        result = normalize_message(
            "GET http://localhost:8080/api/items?page=2 failed",
            ErrorType.NETWORK_ERROR,
        )
        assert result == "GET http://localhost:8080/api/items failed"

    def test_bare_origin_gets_root_path(self):
        result = normalize_message("Cannot reach https://cdn.example.com?v=3", ErrorType.NETWORK_ERROR)
        assert result == "Cannot reach https://cdn.example.com/"

    def test_urls_kept_for_other_categories(self):
        message = "Script https://cdn.example.com/app.js?v=3 failed"
        assert normalize_message(message, ErrorType.RESOURCE_ERROR) == message


class TestVolatileTokens:
    """Timestamps and UUIDs apply to every category."""

    def test_timestamp_replaced(self):
        result = normalize_message("Job failed at 2024-01-15T10:30:00", ErrorType.CONSOLE_ERROR)
        assert result == "Job failed at TIMESTAMP"

    def test_space_separated_timestamp_replaced(self):
        result = normalize_message("Job failed at 2024-01-15 10:30:00", ErrorType.CONSOLE_ERROR)
        assert result == "Job failed at TIMESTAMP"

    def test_uuid_replaced(self):
        result = normalize_message(
            "Order 123e4567-e89b-12d3-a456-426614174000 missing",
            ErrorType.CONSOLE_ERROR,
        )
        assert result == "Order UUID missing"

    def test_uppercase_uuid_replaced(self):
        result = normalize_message(
            "Order 123E4567-E89B-12D3-A456-426614174000 missing",
            ErrorType.CONSOLE_ERROR,
        )
        assert result == "Order UUID missing"


def test_empty_message():
    assert normalize_message("", ErrorType.CONSOLE_ERROR) == ""


@pytest.mark.parametrize(
    "message,error_type",
    [
        ("Long task detected: 73ms at 2024-01-15T10:30:00", ErrorType.PERFORMANCE_ISSUE),
        ("Failed https://api.example.com/a?b=1 for 123e4567-e89b-12d3-a456-426614174000", ErrorType.NETWORK_ERROR),
        ("http://[::1]:3000/health?x=1 unreachable", ErrorType.NETWORK_ERROR),
        ("plain message", ErrorType.CONSOLE_LOG),
    ],
)
def test_normalization_is_idempotent(message, error_type):
    once = normalize_message(message, error_type)
    assert normalize_message(once, error_type) == once
