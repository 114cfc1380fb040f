"""Report analyzers: normalization, fingerprinting, severity and sanitization."""

from incident_intake.analyzers.fingerprint import fingerprint_report, generate_fingerprint
from incident_intake.analyzers.normalizer import normalize_message
from incident_intake.analyzers.sanitizer import sanitize_report, strip_sensitive_params
from incident_intake.analyzers.severity import SEVERITY_RULES, determine_severity
from incident_intake.analyzers.user_agent import (
    enrich_report_metadata,
    parse_browser_info,
    parse_device_info,
)

__all__ = [
    "normalize_message",
    "generate_fingerprint",
    "fingerprint_report",
    "determine_severity",
    "SEVERITY_RULES",
    "sanitize_report",
    "strip_sensitive_params",
    "enrich_report_metadata",
    "parse_browser_info",
    "parse_device_info",
]
