"""
Severity classifier.

Maps an error category and message to one of four severity tiers by
evaluating an ordered rule table; the first matching rule wins and an
explicit override short-circuits the table.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple, Union

from incident_intake.models.error_report import ErrorType, Severity


@dataclass(frozen=True)
class SeverityRule:
    """A single classification rule matching on keywords or categories."""

    name: str
    severity: Severity
    keywords: Tuple[str, ...] = ()
    error_types: FrozenSet[ErrorType] = frozenset()

    def matches(self, message: str, error_type: ErrorType) -> bool:
        if self.keywords and any(keyword in message for keyword in self.keywords):
            return True
        return error_type in self.error_types


SEVERITY_RULES: Tuple[SeverityRule, ...] = (
    SeverityRule(
        name="critical-keywords",
        severity=Severity.CRITICAL,
        keywords=(
            "security",
            "vulnerability",
            "critical",
            "fatal",
            "crash",
            "memory leak",
            "out of memory",
        ),
    ),
    SeverityRule(
        name="uncaught-categories",
        severity=Severity.HIGH,
        error_types=frozenset({ErrorType.UNHANDLED_EXCEPTION, ErrorType.PROMISE_REJECTION}),
    ),
    SeverityRule(
        name="high-keywords",
        severity=Severity.HIGH,
        keywords=("unhandled", "exception", "uncaught", "failed", "timeout", "network error"),
    ),
    SeverityRule(
        name="error-categories",
        severity=Severity.MEDIUM,
        error_types=frozenset({
            ErrorType.CONSOLE_ERROR,
            ErrorType.RESOURCE_ERROR,
            ErrorType.PERFORMANCE_ISSUE,
        }),
    ),
    SeverityRule(
        name="warning-category",
        severity=Severity.LOW,
        error_types=frozenset({ErrorType.CONSOLE_WARN}),
    ),
    SeverityRule(
        name="low-keywords",
        severity=Severity.LOW,
        keywords=("warning", "deprecated", "info", "debug"),
    ),
)

DEFAULT_SEVERITY = Severity.MEDIUM


def determine_severity(
    message: Optional[str],
    error_type: Union[ErrorType, str],
    override: Optional[Union[Severity, str]] = None,
) -> Severity:
    """
    Classify an error into a severity tier.

    Args:
        message: Error message (matched case-insensitively)
        error_type: Error category
        override: Severity supplied by the client, wins when present

    Returns:
        Severity tier
    """
    if override:
        return Severity(override)

    lowered = (message or "").lower()
    category = ErrorType(error_type)

    for rule in SEVERITY_RULES:
        if rule.matches(lowered, category):
            return rule.severity

    return DEFAULT_SEVERITY
