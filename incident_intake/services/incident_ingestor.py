"""
Deduplicating incident ingestor.

Turns validated error reports into incidents: each report is sanitized,
enriched, fingerprinted and folded into the tenant's open incident for that
fingerprint, or opens a new one. Batches are processed concurrently with
per-item failure isolation.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from incident_intake.analyzers.fingerprint import fingerprint_report
from incident_intake.analyzers.sanitizer import sanitize_report
from incident_intake.analyzers.severity import determine_severity
from incident_intake.analyzers.user_agent import enrich_report_metadata
from incident_intake.models.api_response import BatchIngestResult
from incident_intake.models.error import ItemFailure
from incident_intake.models.error_report import ErrorReport
from incident_intake.models.incident import Incident, IncidentStatus, IngestResult
from incident_intake.services.redis_client import IncidentStoreError, RedisClient
from incident_intake.utils.logging import get_logger, log_ingestion
from incident_intake.utils.metrics import IngestionMetrics
from incident_intake.utils.resilience import ErrorRecoveryManager

logger = get_logger(__name__)


class ReportValidationError(Exception):
    """Raised when a single report fails validation."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class BatchValidationError(Exception):
    """Raised when a batch is rejected as a whole."""
    pass


def _summarize_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in detail['loc']) or 'report'}: {detail['msg']}"
        for detail in error.errors(include_url=False)
    )


def validate_report(data: Any) -> ErrorReport:
    """
    Validate raw report data.

    Args:
        data: Raw report payload or an already validated report

    Returns:
        Validated report

    Raises:
        ReportValidationError: If the payload is malformed
    """
    if isinstance(data, ErrorReport):
        return data
    try:
        return ErrorReport.model_validate(data)
    except ValidationError as e:
        raise ReportValidationError(
            _summarize_validation_error(e),
            errors=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e


class IncidentIngestor:
    """Ingests reports into deduplicated incidents."""

    def __init__(
        self,
        redis_client: RedisClient,
        max_batch_size: Optional[int] = None,
        max_message_length: Optional[int] = None,
        max_stack_trace_length: Optional[int] = None,
    ):
        """
        Initialize the ingestor.

        Args:
            redis_client: Incident store
            max_batch_size: Largest accepted batch. If None, will load from settings.
            max_message_length: Message truncation bound. If None, will load from settings.
            max_stack_trace_length: Stack trace truncation bound. If None, will load from settings.
        """
        from incident_intake.config import settings

        self.redis_client = redis_client
        self.max_batch_size = max_batch_size or settings.max_batch_size
        self.max_message_length = max_message_length or settings.max_message_length
        self.max_stack_trace_length = max_stack_trace_length or settings.max_stack_trace_length

    def prepare(self, report: ErrorReport) -> Tuple[ErrorReport, str]:
        """
        Sanitize, enrich and fingerprint a report.

        Args:
            report: Validated report

        Returns:
            Tuple of (prepared report, fingerprint)
        """
        sanitized = sanitize_report(
            report,
            max_message_length=self.max_message_length,
            max_stack_trace_length=self.max_stack_trace_length,
        )
        enriched = enrich_report_metadata(sanitized)
        return enriched, fingerprint_report(enriched)

    async def ingest(
        self,
        report: ErrorReport,
        batch_id: Optional[str] = None,
        metrics: Optional[IngestionMetrics] = None,
    ) -> IngestResult:
        """
        Ingest one report.

        Args:
            report: Validated report
            batch_id: Batch the report arrived in, if any
            metrics: Optional metrics collector

        Returns:
            Ingestion result; is_duplicate is True when an open incident
            absorbed the report

        Raises:
            IncidentStoreError: If the incident store fails
        """
        prepared, fingerprint = self.prepare(report)
        result = await self._upsert(prepared, fingerprint, batch_id)
        if metrics:
            metrics.record_ingestion(result.is_duplicate)
        return result

    async def ingest_batch(
        self,
        items: Sequence[Any],
        batch_id: Optional[str] = None,
        metrics: Optional[IngestionMetrics] = None,
    ) -> BatchIngestResult:
        """
        Ingest a batch of reports.

        Args:
            items: Raw report payloads or validated reports
            batch_id: Batch ID; a new one is generated when None
            metrics: Optional metrics collector

        Returns:
            Batch result with successes in input order and indexed failures

        Raises:
            BatchValidationError: If the batch is empty or too large
        """
        result, _ = await self.process_batch(items, batch_id, metrics)
        return result

    async def process_batch(
        self,
        items: Sequence[Any],
        batch_id: Optional[str] = None,
        metrics: Optional[IngestionMetrics] = None,
    ) -> Tuple[BatchIngestResult, Dict[int, ErrorReport]]:
        """
        Ingest a batch and also return the prepared report of every success.

        Returns:
            Tuple of (batch result, mapping of input index to prepared report)
        """
        if not items:
            raise BatchValidationError("Batch must contain at least one report")
        if len(items) > self.max_batch_size:
            raise BatchValidationError(
                f"Batch of {len(items)} reports exceeds the maximum of {self.max_batch_size}"
            )

        batch_id = batch_id or str(uuid.uuid4())
        batch_logger = logger.with_context(batch_id=batch_id)

        failures: List[ItemFailure] = []
        prepared: List[Tuple[int, ErrorReport, str]] = []

        for index, item in enumerate(items):
            try:
                report = validate_report(item)
            except ReportValidationError as e:
                organization_id = None
                if isinstance(item, dict):
                    organization_id = item.get("organization_id") or item.get("tenant_id")
                failures.append(ItemFailure(
                    index=index,
                    phase="validation",
                    error_type=type(e).__name__,
                    message=str(e),
                    organization_id=str(organization_id) if organization_id else None,
                ))
                continue

            prepared_report, fingerprint = self.prepare(report)
            prepared.append((index, prepared_report, fingerprint))

        open_ids: Dict[Tuple[str, str], str] = {}
        if prepared:
            try:
                open_ids = await self.redis_client.find_open_incident_ids(
                    (report.organization_id, fingerprint) for _, report, fingerprint in prepared
                )
            except IncidentStoreError as e:
                # Each item still goes through the atomic upsert
                batch_logger.warning(f"Bulk open-incident lookup failed, continuing without it: {e}")

        outcomes = await asyncio.gather(
            *(
                self._ingest_item(
                    report,
                    fingerprint,
                    batch_id,
                    index,
                    open_ids.get((report.organization_id, fingerprint)),
                )
                for index, report, fingerprint in prepared
            ),
            return_exceptions=True,
        )

        processed: List[IngestResult] = []
        reports: Dict[int, ErrorReport] = {}
        for (index, report, _), outcome in zip(prepared, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                batch_logger.error(
                    f"Failed to persist report {index} of batch: {outcome}",
                    extra={"organization_id": report.organization_id, "index": index},
                )
                failures.append(ItemFailure(
                    index=index,
                    phase="persistence",
                    error_type=type(outcome).__name__,
                    message=str(outcome),
                    organization_id=report.organization_id,
                ))
                continue
            processed.append(outcome)
            reports[index] = report
            if metrics:
                metrics.record_ingestion(outcome.is_duplicate)

        failures.sort(key=lambda failure: failure.index)
        if metrics and failures:
            metrics.record_failure(len(failures))

        ErrorRecoveryManager.handle_partial_failure(
            operation_name="ingest_batch",
            total_items=len(items),
            successful_items=len(processed),
            errors=[f"{failure.index}: {failure.message}" for failure in failures],
            context={"batch_id": batch_id},
        )

        return BatchIngestResult(
            batch_id=batch_id,
            total=len(items),
            processed=processed,
            failed_count=len(failures),
            failures=failures,
        ), reports

    async def _ingest_item(
        self,
        report: ErrorReport,
        fingerprint: str,
        batch_id: str,
        index: int,
        open_incident_id: Optional[str],
    ) -> IngestResult:
        """
        Ingest one prepared batch item.

        A known open incident is incremented directly; when it has vanished
        or been resolved in the meantime, the item falls back to the upsert.
        """
        if open_incident_id:
            occurrence = await self.redis_client.record_occurrence(open_incident_id)
            if occurrence is not None:
                log_ingestion(
                    logger,
                    incident_id=open_incident_id,
                    organization_id=report.organization_id,
                    fingerprint=fingerprint,
                    is_duplicate=True,
                    occurrence_count=occurrence["occurrence_count"],
                )
                return IngestResult(
                    incident_id=open_incident_id,
                    status=occurrence["status"],
                    severity=occurrence["severity"],
                    timestamp=datetime.now(timezone.utc),
                    occurrence_count=occurrence["occurrence_count"],
                    is_duplicate=True,
                    index=index,
                )

        return await self._upsert(report, fingerprint, batch_id, index)

    async def _upsert(
        self,
        report: ErrorReport,
        fingerprint: str,
        batch_id: Optional[str],
        index: Optional[int] = None,
    ) -> IngestResult:
        incident = self._build_incident(report, fingerprint, batch_id)
        stored = await self.redis_client.upsert_open_incident(incident)
        is_duplicate = not stored["created"]

        log_ingestion(
            logger,
            incident_id=stored["id"],
            organization_id=report.organization_id,
            fingerprint=fingerprint,
            is_duplicate=is_duplicate,
            occurrence_count=stored["occurrence_count"],
        )

        return IngestResult(
            incident_id=stored["id"],
            status=stored["status"],
            severity=stored["severity"],
            timestamp=datetime.now(timezone.utc),
            occurrence_count=stored["occurrence_count"],
            is_duplicate=is_duplicate,
            index=index,
        )

    def _build_incident(
        self,
        report: ErrorReport,
        fingerprint: str,
        batch_id: Optional[str],
    ) -> Incident:
        """
        Build the incident a report opens when no open incident exists.

        Args:
            report: Prepared report
            fingerprint: Report fingerprint
            batch_id: Batch the report arrived in, if any

        Returns:
            New incident with status 'new' and one occurrence
        """
        now = datetime.now(timezone.utc)
        return Incident(
            id=str(uuid.uuid4()),
            organization_id=report.organization_id,
            fingerprint=fingerprint,
            error_type=report.error_type,
            severity=determine_severity(report.message, report.error_type, report.severity),
            status=IncidentStatus.NEW,
            message=report.message,
            stack_trace=report.stack_trace,
            source_file=report.source_file,
            line_number=report.line_number,
            column_number=report.column_number,
            function_name=report.function_name,
            component_name=report.component_name,
            url=report.url,
            user_agent=report.user_agent,
            assistant_id=report.assistant_id,
            session_id=report.session_id,
            origin=report.origin,
            metadata=report.metadata.model_dump(mode="json", exclude_none=True),
            performance_data=report.performance_data,
            context=report.context,
            batch_id=batch_id or report.batch_id,
            first_seen=report.timestamp,
            last_seen=now,
            updated_at=now,
            occurrence_count=1,
        )
