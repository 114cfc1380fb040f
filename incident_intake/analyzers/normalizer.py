"""
Error message normalizer.

Strips volatile substrings (durations and sizes, URL query strings,
timestamps, UUIDs) from an error message so that semantically identical
errors produce identical text before fingerprinting.
"""

import re
from typing import Match, Union
from urllib.parse import urlsplit

from incident_intake.models.error_report import ErrorType


# "Long task detected: 73ms" -> "Long task detected: Xms"
_MEASUREMENT_PATTERN = re.compile(r":\s*\d+(?:\.\d+)?(ms|s|bytes|MB|KB)", re.IGNORECASE)
_URL_PATTERN = re.compile(r"https?://\S+")
_TIMESTAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}[T\s]\d{2}:\d{2}:\d{2}")
_UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)


def _strip_query(match: Match[str]) -> str:
    """Reduce an absolute URL to its origin and path."""
    url = match.group(0)
    try:
        parts = urlsplit(url)
        if not parts.hostname:
            return url
        host = f"[{parts.hostname}]" if ":" in parts.hostname else parts.hostname
        origin = f"{parts.scheme}://{host}"
        if parts.port is not None:
            origin = f"{origin}:{parts.port}"
    except ValueError:
        return url
    return f"{origin}{parts.path or '/'}"


def normalize_message(message: str, error_type: Union[ErrorType, str]) -> str:
    """
    Normalize an error message for deduplication.

    Rules are applied in order: measurements (performance errors only),
    URL query strings (network errors only), timestamps, UUIDs. The result
    is stable under repeated application.

    Args:
        message: Raw error message
        error_type: Error category of the report

    Returns:
        Normalized message
    """
    if not message:
        return ""

    error_type = ErrorType(error_type)
    normalized = message

    if error_type == ErrorType.PERFORMANCE_ISSUE:
        normalized = _MEASUREMENT_PATTERN.sub(r": X\1", normalized)

    if error_type == ErrorType.NETWORK_ERROR:
        normalized = _URL_PATTERN.sub(_strip_query, normalized)

    normalized = _TIMESTAMP_PATTERN.sub("TIMESTAMP", normalized)
    normalized = _UUID_PATTERN.sub("UUID", normalized)

    return normalized
