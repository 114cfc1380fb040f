"""
Report sanitizer.

Redacts credential-shaped URL query parameters and sensitive metadata keys,
and truncates oversized text fields. Runs before fingerprinting and
persistence.
"""

import re
from typing import Any, Dict, Optional

from incident_intake.models.error_report import ErrorReport


TRUNCATION_MARKER = "..."
DEFAULT_MAX_MESSAGE_LENGTH = 2000
DEFAULT_MAX_STACK_TRACE_LENGTH = 10000

SENSITIVE_QUERY_PARAMS = ("token", "key", "password", "secret")
SENSITIVE_METADATA_KEYS = frozenset({"password", "token", "key", "secret", "auth"})

_SENSITIVE_PARAM_PATTERN = re.compile(
    r"(?<=[?&])(?:%s)=[^&#]*&?" % "|".join(SENSITIVE_QUERY_PARAMS),
    re.IGNORECASE,
)
# Separators left dangling after a parameter was removed
_DANGLING_SEPARATOR_PATTERN = re.compile(r"[?&]+(?=#|$)")


def strip_sensitive_params(url: Optional[str]) -> Optional[str]:
    """
    Remove token/key/password/secret query parameters from a URL.

    Args:
        url: URL or URL-like string

    Returns:
        URL without the sensitive parameters
    """
    if not url:
        return url
    stripped = _SENSITIVE_PARAM_PATTERN.sub("", url)
    return _DANGLING_SEPARATOR_PATTERN.sub("", stripped)


def truncate(value: Optional[str], max_length: int) -> Optional[str]:
    """Truncate a string to max_length characters, appending a marker."""
    if value is None or len(value) <= max_length:
        return value
    return value[:max_length] + TRUNCATION_MARKER


def redact_custom_data(custom_data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop sensitive keys from free-form custom data."""
    return {
        key: value
        for key, value in custom_data.items()
        if key.lower() not in SENSITIVE_METADATA_KEYS
    }


def sanitize_report(
    report: ErrorReport,
    max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
    max_stack_trace_length: int = DEFAULT_MAX_STACK_TRACE_LENGTH,
) -> ErrorReport:
    """
    Sanitize a report before it is fingerprinted or persisted.

    The input report is left untouched.

    Args:
        report: Validated error report
        max_message_length: Message length bound
        max_stack_trace_length: Stack trace length bound

    Returns:
        Sanitized copy of the report
    """
    metadata = report.metadata
    if metadata.custom_data:
        metadata = metadata.model_copy(
            update={"custom_data": redact_custom_data(metadata.custom_data)}
        )

    return report.model_copy(
        update={
            "url": strip_sensitive_params(report.url),
            "source_file": strip_sensitive_params(report.source_file),
            "message": truncate(report.message, max_message_length),
            "stack_trace": truncate(report.stack_trace, max_stack_trace_length),
            "metadata": metadata,
        }
    )
