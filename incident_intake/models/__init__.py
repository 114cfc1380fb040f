"""Data models for the incident intake service."""

from .api_response import (
    BatchIngestResult,
    BatchResponse,
    DeleteResult,
    HealthResponse,
    ReportResponse,
    ResolutionRequest,
    StatusUpdate,
)
from .error import ItemFailure
from .error_report import (
    BatchReport,
    ErrorOrigin,
    ErrorReport,
    ErrorSource,
    ErrorType,
    ReportMetadata,
    Severity,
)
from .incident import (
    FixConfidence,
    HANDLED_STATUSES,
    Incident,
    IncidentStatus,
    IngestResult,
    OPERATOR_STATUSES,
    OUTCOME_SOURCE_STATUSES,
    OUTCOME_STATUSES,
    RemediationOutcome,
    TRIGGERABLE_STATUSES,
    UNRESOLVED_STATUSES,
)
from .remediation import (
    RemediationConfig,
    RemediationDecision,
    SkipReason,
    TriggerOutcome,
)

__all__ = [
    # Report models
    "ErrorType",
    "Severity",
    "ErrorOrigin",
    "ErrorSource",
    "ReportMetadata",
    "ErrorReport",
    "BatchReport",
    # Incident models
    "IncidentStatus",
    "HANDLED_STATUSES",
    "TRIGGERABLE_STATUSES",
    "OPERATOR_STATUSES",
    "OUTCOME_STATUSES",
    "OUTCOME_SOURCE_STATUSES",
    "UNRESOLVED_STATUSES",
    "FixConfidence",
    "RemediationOutcome",
    "Incident",
    "IngestResult",
    # Remediation models
    "RemediationConfig",
    "SkipReason",
    "RemediationDecision",
    "TriggerOutcome",
    # Error models
    "ItemFailure",
    # API response models
    "BatchIngestResult",
    "ReportResponse",
    "BatchResponse",
    "StatusUpdate",
    "ResolutionRequest",
    "DeleteResult",
    "HealthResponse",
]
