"""
Error reporting REST API endpoints.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Response, status
from fastapi.responses import JSONResponse

from incident_intake.models.api_response import (
    BatchResponse,
    DeleteResult,
    ReportResponse,
    ResolutionRequest,
    StatusUpdate,
)
from incident_intake.models.error_report import BatchReport
from incident_intake.models.incident import Incident
from incident_intake.models.remediation import SkipReason, TriggerOutcome
from incident_intake.services.error_monitor import ErrorMonitor
from incident_intake.services.incident_ingestor import BatchValidationError, ReportValidationError
from incident_intake.services.redis_client import (
    IncidentConflictError,
    IncidentNotFoundError,
    IncidentStoreError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/performance-monitoring", tags=["performance-monitoring"])

# Initialize Error Monitor
error_monitor = ErrorMonitor()


@router.post("/errors", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def report_error(response: Response, payload: Dict[str, Any] = Body(...)):
    """
    Report a single client error.

    Returns 201 when a new incident was opened and 200 when the report was
    folded into an existing open incident.
    """
    try:
        result = await error_monitor.report_error(payload)
    except ReportValidationError as e:
        logger.warning(f"Rejected malformed error report: {e}")
        return JSONResponse(
            status_code=422,
            content={"success": False, "data": None, "errors": e.errors},
        )
    except IncidentStoreError as e:
        logger.error(f"Incident store unavailable: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Incident store unavailable")

    if result.is_duplicate:
        response.status_code = status.HTTP_200_OK
    return ReportResponse(success=True, data=result)


@router.post("/errors/batch", response_model=BatchResponse, status_code=status.HTTP_201_CREATED)
async def report_error_batch(batch: BatchReport) -> BatchResponse:
    """
    Report a batch of client errors.

    Malformed or failing items are listed in the result without failing the
    rest of the batch.
    """
    try:
        result = await error_monitor.report_batch(batch.errors, batch.batch_id)
    except BatchValidationError as e:
        logger.warning(f"Rejected error batch: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return BatchResponse(success=result.failed_count < result.total, data=result)


@router.get("/errors/{incident_id}", response_model=Incident)
async def get_incident(incident_id: str) -> Incident:
    """Get an incident by ID."""
    incident = await error_monitor.get_incident(incident_id)
    if incident is None:
        raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
    return incident


@router.post("/errors/{incident_id}/fix", response_model=TriggerOutcome, status_code=status.HTTP_202_ACCEPTED)
async def request_fix(incident_id: str):
    """
    Manually trigger remediation of an incident.

    Returns 409 when the incident is already being handled.
    """
    try:
        outcome = await error_monitor.request_fix(incident_id)
    except IncidentNotFoundError:
        raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")

    if outcome.triggered:
        return outcome

    if outcome.reason == SkipReason.CONFIG_UNAVAILABLE.value:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif outcome.reason in (SkipReason.NOT_CONFIGURED.value, SkipReason.MISSING_WIRING.value):
        status_code = status.HTTP_400_BAD_REQUEST
    else:
        status_code = status.HTTP_409_CONFLICT
    return JSONResponse(status_code=status_code, content=outcome.model_dump(mode="json"))


@router.put("/errors/{incident_id}/status", response_model=Incident)
async def update_status(incident_id: str, update: StatusUpdate) -> Incident:
    """
    Record a remediation outcome reported by the remediation backend.

    Returns 409 when the incident is resolved or was closed by an operator.
    """
    try:
        return await error_monitor.update_status(incident_id, update.status, update.remediation)
    except IncidentNotFoundError:
        raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
    except IncidentConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/errors/{incident_id}/resolve", response_model=Incident)
async def resolve_incident(incident_id: str, request: ResolutionRequest) -> Incident:
    """
    Resolve, ignore or mark an incident as duplicate.

    Returns 409 when the incident is already resolved.
    """
    try:
        return await error_monitor.resolve(
            incident_id,
            request.status,
            request.resolved_by,
            request.resolution_notes,
        )
    except IncidentNotFoundError:
        raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
    except IncidentConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/errors/{incident_id}", response_model=DeleteResult)
async def delete_incident(incident_id: str) -> DeleteResult:
    """Delete an incident and every incident sharing its fingerprint."""
    try:
        deleted = await error_monitor.delete(incident_id)
    except IncidentNotFoundError:
        raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")

    logger.info(f"Deleted {deleted} incidents for {incident_id}")
    return DeleteResult(incident_id=incident_id, deleted_count=deleted)
