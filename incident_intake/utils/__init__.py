"""
Utility modules for the incident intake service.
"""

from incident_intake.utils.logging import (
    get_logger,
    setup_logging,
    ContextLoggerAdapter,
    log_ingestion,
    log_remediation_decision,
    log_api_call,
    log_error_with_context,
)
from incident_intake.utils.metrics import (
    IngestionMetrics,
    track_api_call,
    emit_metric,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "ContextLoggerAdapter",
    "log_ingestion",
    "log_remediation_decision",
    "log_api_call",
    "log_error_with_context",
    "IngestionMetrics",
    "track_api_call",
    "emit_metric",
]
