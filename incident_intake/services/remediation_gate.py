"""
Remediation eligibility gate.

Decides whether a freshly ingested incident is sent to the remediation
backend. Checks run in a fixed order and the first failing check names the
skip reason. Report-level checks are separated out so callers can avoid a
configuration lookup when they already fail.
"""

from typing import Optional

from incident_intake.models.error_report import ErrorOrigin, ErrorReport, ErrorType
from incident_intake.models.incident import HANDLED_STATUSES, IngestResult
from incident_intake.models.remediation import (
    RemediationConfig,
    RemediationDecision,
    SkipReason,
)


def _skip(reason: SkipReason) -> RemediationDecision:
    return RemediationDecision(eligible=False, reason=reason)


def check_report_eligibility(result: IngestResult, report: ErrorReport) -> RemediationDecision:
    """
    Run the checks that depend only on the ingestion result and report.

    Args:
        result: Ingestion result for the report
        report: Sanitized report

    Returns:
        Decision; eligible means the tenant configuration still has to be checked
    """
    if result.is_duplicate:
        return _skip(SkipReason.DUPLICATE)

    if not report.organization_id:
        return _skip(SkipReason.MISSING_TENANT)

    if (
        not report.stack_trace
        and not report.source_file
        and report.error_type == ErrorType.PERFORMANCE_ISSUE
    ):
        return _skip(SkipReason.INSUFFICIENT_EVIDENCE)

    if report.origin != ErrorOrigin.MONITORED_SURFACE:
        return _skip(SkipReason.MONITORING_INFRASTRUCTURE)

    if result.status in HANDLED_STATUSES:
        return _skip(SkipReason.ALREADY_HANDLED)

    return RemediationDecision(eligible=True, reason=SkipReason.ELIGIBLE)


def check_config_eligibility(config: Optional[RemediationConfig]) -> RemediationDecision:
    """Run the checks on the tenant's remediation configuration."""
    if config is None:
        return _skip(SkipReason.NOT_CONFIGURED)

    if not config.auto_fix_enabled:
        return _skip(SkipReason.AUTO_FIX_DISABLED)

    if not config.wiring_present:
        return _skip(SkipReason.MISSING_WIRING)

    return RemediationDecision(eligible=True, reason=SkipReason.ELIGIBLE)


def evaluate_remediation_eligibility(
    result: IngestResult,
    report: ErrorReport,
    config: Optional[RemediationConfig],
) -> RemediationDecision:
    """
    Evaluate every eligibility check in order.

    Args:
        result: Ingestion result for the report
        report: Sanitized report
        config: Tenant remediation configuration, None if the tenant has none

    Returns:
        Decision carrying the reason of the first failing check
    """
    decision = check_report_eligibility(result, report)
    if not decision.eligible:
        return decision
    return check_config_eligibility(config)


def should_attempt_remediation(
    result: IngestResult,
    report: ErrorReport,
    config: Optional[RemediationConfig],
) -> bool:
    """Return True when the incident should be sent for remediation."""
    return evaluate_remediation_eligibility(result, report, config).eligible
