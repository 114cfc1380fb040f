"""Incident data models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

from .error_report import ErrorOrigin, ErrorType, Severity


class IncidentStatus(str, Enum):
    """Incident lifecycle status."""

    NEW = "new"
    PROCESSING = "processing"
    RESOLVED = "resolved"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    CARLA_FIXING = "carla_fixing"
    PR_CREATED = "pr_created"
    ISSUE_CREATED = "issue_created"
    FIX_FAILED = "fix_failed"


# Statuses meaning the incident is already being handled; never re-triggered
HANDLED_STATUSES = frozenset({
    IncidentStatus.CARLA_FIXING,
    IncidentStatus.PR_CREATED,
    IncidentStatus.ISSUE_CREATED,
    IncidentStatus.RESOLVED,
})

# Statuses from which a remediation run may start
TRIGGERABLE_STATUSES = frozenset({
    IncidentStatus.NEW,
    IncidentStatus.PROCESSING,
    IncidentStatus.FIX_FAILED,
})

# Statuses an operator may close an incident with
OPERATOR_STATUSES = frozenset({
    IncidentStatus.RESOLVED,
    IncidentStatus.IGNORED,
    IncidentStatus.DUPLICATE,
})

# Statuses the remediation backend reports out-of-band
OUTCOME_STATUSES = frozenset({
    IncidentStatus.PR_CREATED,
    IncidentStatus.ISSUE_CREATED,
    IncidentStatus.FIX_FAILED,
    IncidentStatus.RESOLVED,
})

# Statuses a backend outcome may be applied from; operator closes are final
OUTCOME_SOURCE_STATUSES = frozenset({
    IncidentStatus.NEW,
    IncidentStatus.PROCESSING,
    IncidentStatus.CARLA_FIXING,
    IncidentStatus.FIX_FAILED,
    IncidentStatus.PR_CREATED,
    IncidentStatus.ISSUE_CREATED,
})

# Resolved is terminal
UNRESOLVED_STATUSES = frozenset(IncidentStatus) - {IncidentStatus.RESOLVED}


class FixConfidence(str, Enum):
    """Confidence reported by the remediation backend."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RemediationOutcome(BaseModel):
    """Result of an automated remediation attempt."""

    attempted_at: Optional[datetime] = None
    can_fix: Optional[bool] = None
    confidence: Optional[FixConfidence] = None
    analysis: Optional[str] = None
    pr_url: Optional[str] = None
    issue_url: Optional[str] = None
    error_message: Optional[str] = None


class Incident(BaseModel):
    """Persisted, deduplicated error condition for one tenant."""

    id: str
    organization_id: str
    fingerprint: str
    error_type: ErrorType
    severity: Severity
    status: IncidentStatus = IncidentStatus.NEW

    message: str
    stack_trace: Optional[str] = None
    source_file: Optional[str] = None
    line_number: Optional[int] = None
    column_number: Optional[int] = None
    function_name: Optional[str] = None
    component_name: Optional[str] = None
    url: str
    user_agent: str

    assistant_id: str
    session_id: str
    origin: ErrorOrigin = ErrorOrigin.MONITORED_SURFACE
    metadata: Dict[str, Any] = {}
    performance_data: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    batch_id: Optional[str] = None

    first_seen: datetime
    last_seen: datetime
    updated_at: datetime
    occurrence_count: int = 1

    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    remediation: Optional[RemediationOutcome] = None


class IngestResult(BaseModel):
    """Outcome of ingesting one report."""

    incident_id: str
    status: IncidentStatus
    severity: Severity
    timestamp: datetime
    occurrence_count: int
    is_duplicate: bool
    index: Optional[int] = None
