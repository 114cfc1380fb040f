"""API response data models."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .error import ItemFailure
from .incident import IngestResult, IncidentStatus, RemediationOutcome


class BatchIngestResult(BaseModel):
    """Result of ingesting a batch of reports."""

    batch_id: str
    total: int
    processed: List[IngestResult] = []
    failed_count: int = 0
    failures: List[ItemFailure] = []


class ReportResponse(BaseModel):
    """Response to a single report submission."""

    success: bool
    data: Optional[IngestResult] = None
    errors: List[Dict[str, Any]] = []


class BatchResponse(BaseModel):
    """Response to a batch submission."""

    success: bool
    data: BatchIngestResult


class StatusUpdate(BaseModel):
    """Out-of-band remediation outcome reported by the backend."""

    status: IncidentStatus
    remediation: Optional[RemediationOutcome] = None


class ResolutionRequest(BaseModel):
    """Operator resolution of an incident."""

    status: IncidentStatus = IncidentStatus.RESOLVED
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None


class DeleteResult(BaseModel):
    """Result of deleting an incident group."""

    incident_id: str
    deleted_count: int


class HealthResponse(BaseModel):
    """Health check payload."""

    status: str
    version: str
    timestamp: Optional[datetime] = None
