"""
Error Monitor component.

Entry point for error reports from tenant websites: validates and ingests
reports, evaluates remediation eligibility for new incidents and hands
eligible ones to the remediation orchestrator. Also carries the operator
actions on incidents (resolve, delete, manual fix).
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from incident_intake.models.api_response import BatchIngestResult
from incident_intake.models.error_report import ErrorReport
from incident_intake.models.incident import (
    OPERATOR_STATUSES,
    Incident,
    IncidentStatus,
    IngestResult,
    RemediationOutcome,
)
from incident_intake.models.remediation import (
    RemediationConfig,
    RemediationDecision,
    SkipReason,
    TriggerOutcome,
)
from incident_intake.services.incident_ingestor import IncidentIngestor, validate_report
from incident_intake.services.redis_client import (
    IncidentNotFoundError,
    IncidentStoreError,
    RedisClient,
)
from incident_intake.services.remediation_client import RemediationClient
from incident_intake.services.remediation_config import RemediationConfigService
from incident_intake.services.remediation_gate import (
    check_config_eligibility,
    check_report_eligibility,
)
from incident_intake.services.remediation_orchestrator import RemediationOrchestrator
from incident_intake.utils.logging import (
    ContextLoggerAdapter,
    get_logger,
    log_error_with_context,
    log_remediation_decision,
)
from incident_intake.utils.metrics import IngestionMetrics

logger = get_logger(__name__)


class ErrorMonitor:
    """Ingests error reports and drives automated remediation."""

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        config_service: Optional[RemediationConfigService] = None,
        remediation_client: Optional[RemediationClient] = None,
    ):
        """
        Initialize the Error Monitor.

        Args:
            redis_client: Incident store. Created from settings if None.
            config_service: Tenant remediation config. Created from settings if None.
            remediation_client: Remediation backend client. Created from settings if None.
        """
        self.redis_client = redis_client or RedisClient()
        self.config_service = config_service or RemediationConfigService()
        self.remediation_client = remediation_client or RemediationClient()
        self.ingestor = IncidentIngestor(self.redis_client)
        self.orchestrator = RemediationOrchestrator(self.redis_client, self.remediation_client)

    async def initialize(self) -> None:
        """
        Open connections to the incident store and the config database.

        The incident store is required. When the config database is
        unreachable, ingestion still works and remediation is skipped.
        """
        await self.redis_client.initialize()
        try:
            await self.config_service.initialize()
        except Exception as e:
            log_error_with_context(
                logger,
                "Remediation config database unavailable; remediation disabled until restart",
                e,
            )

    async def close(self) -> None:
        """Wait for in-flight remediation calls and release connections."""
        await self.orchestrator.wait_for_pending()
        await self.remediation_client.close()
        await self.config_service.close()
        await self.redis_client.close()

    # ========== Ingestion ==========

    async def report_error(self, data: Union[ErrorReport, Dict[str, Any]]) -> IngestResult:
        """
        Ingest a single error report.

        Args:
            data: Raw report payload or validated report

        Returns:
            Ingestion result

        Raises:
            ReportValidationError: If the payload is malformed
            IncidentStoreError: If the incident store fails
        """
        report = validate_report(data)
        metrics = IngestionMetrics(organization_id=report.organization_id)
        metrics.start()

        request_logger = logger.with_context(organization_id=report.organization_id)
        result = await self.ingestor.ingest(report, metrics=metrics)
        await self._remediate([(result, report)], metrics, request_logger)

        metrics.complete()
        return result

    async def report_batch(
        self,
        items: Sequence[Any],
        batch_id: Optional[str] = None,
    ) -> BatchIngestResult:
        """
        Ingest a batch of error reports.

        Each item succeeds or fails on its own; remediation is evaluated
        independently for every newly created incident.

        Args:
            items: Raw report payloads
            batch_id: Batch ID; generated when None

        Returns:
            Batch result

        Raises:
            BatchValidationError: If the batch is empty or too large
        """
        metrics = IngestionMetrics(batch_id=batch_id)
        metrics.start()

        result, reports = await self.ingestor.process_batch(items, batch_id, metrics)
        metrics.batch_id = result.batch_id

        await self._remediate(
            [(processed, reports[processed.index]) for processed in result.processed],
            metrics,
            logger.with_context(batch_id=result.batch_id),
        )

        metrics.complete()
        return result

    # ========== Incident Operations ==========

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        """Get an incident by ID."""
        return await self.redis_client.get_incident(incident_id)

    async def resolve(
        self,
        incident_id: str,
        status: IncidentStatus = IncidentStatus.RESOLVED,
        resolved_by: Optional[str] = None,
        resolution_notes: Optional[str] = None,
    ) -> Incident:
        """
        Close an incident on behalf of an operator.

        Args:
            incident_id: Incident ID
            status: resolved, ignored or duplicate
            resolved_by: Operator identifier
            resolution_notes: Free-form notes

        Returns:
            Updated incident

        Raises:
            ValueError: If status is not an operator status
            IncidentNotFoundError: If the incident does not exist
            IncidentConflictError: If the incident is already resolved
        """
        if status not in OPERATOR_STATUSES:
            raise ValueError(f"{status.value} is not an operator resolution status")

        incident = await self.redis_client.resolve_incident(
            incident_id, status, resolved_by, resolution_notes
        )
        logger.info(
            f"Incident {incident_id} marked {status.value}",
            extra={"incident_id": incident_id, "resolved_by": resolved_by},
        )
        return incident

    async def delete(self, incident_id: str) -> int:
        """
        Delete an incident and every incident sharing its fingerprint.

        Returns:
            Number of incidents deleted

        Raises:
            IncidentNotFoundError: If the incident does not exist
        """
        deleted = await self.redis_client.delete_incident_group(incident_id)
        if deleted == 0:
            raise IncidentNotFoundError(f"Incident {incident_id} not found")
        return deleted

    async def update_status(
        self,
        incident_id: str,
        status: IncidentStatus,
        remediation: Optional[RemediationOutcome] = None,
    ) -> Incident:
        """
        Apply a remediation outcome reported by the backend.

        Raises:
            ValueError: If status is not an outcome status
            IncidentNotFoundError: If the incident does not exist
            IncidentConflictError: If the incident no longer accepts outcomes
        """
        return await self.orchestrator.record_outcome(incident_id, status, remediation)

    async def request_fix(self, incident_id: str) -> TriggerOutcome:
        """
        Manually trigger remediation of an incident.

        The tenant must have repository wiring configured; the auto-fix flag
        is not required for a manual request.

        Raises:
            IncidentNotFoundError: If the incident does not exist
        """
        incident = await self.redis_client.get_incident(incident_id)
        if incident is None:
            raise IncidentNotFoundError(f"Incident {incident_id} not found")

        available, config = await self._lookup_config(incident.organization_id)
        if not available:
            return TriggerOutcome(
                incident_id=incident_id,
                triggered=False,
                status=incident.status,
                reason=SkipReason.CONFIG_UNAVAILABLE.value,
            )
        if config is None:
            return TriggerOutcome(
                incident_id=incident_id,
                triggered=False,
                status=incident.status,
                reason=SkipReason.NOT_CONFIGURED.value,
            )
        if not config.wiring_present:
            return TriggerOutcome(
                incident_id=incident_id,
                triggered=False,
                status=incident.status,
                reason=SkipReason.MISSING_WIRING.value,
            )

        return await self.orchestrator.trigger(incident_id, incident.organization_id)

    # ========== Remediation ==========

    async def _lookup_config(self, organization_id: str) -> Tuple[bool, Optional[RemediationConfig]]:
        """
        Look up tenant configuration without letting failures escape.

        Returns:
            Tuple of (lookup succeeded, config or None)
        """
        try:
            return True, await self.config_service.get_config(organization_id)
        except Exception as e:
            log_error_with_context(
                logger,
                f"Remediation config lookup failed for organization {organization_id}",
                e,
                organization_id=organization_id,
            )
            return False, None

    async def _remediate(
        self,
        pairs: List[Tuple[IngestResult, ErrorReport]],
        metrics: IngestionMetrics,
        log: ContextLoggerAdapter = logger,
    ) -> None:
        """
        Evaluate eligibility and trigger remediation for ingested reports.

        Configuration is only looked up for reports that pass the
        report-level checks, once per tenant. Failures here never fail the
        ingestion.

        Args:
            pairs: Ingest results with the reports they came from
            metrics: Metrics collector
            log: Logger carrying the request's context
        """
        candidates = []
        for result, report in pairs:
            decision = check_report_eligibility(result, report)
            if decision.eligible:
                candidates.append((result, report))
            else:
                self._record_decision(result, report, decision, metrics, log)

        if not candidates:
            return

        organization_ids = list(dict.fromkeys(report.organization_id for _, report in candidates))
        lookups = await asyncio.gather(
            *(self._lookup_config(organization_id) for organization_id in organization_ids)
        )
        configs = dict(zip(organization_ids, lookups))

        for result, report in candidates:
            available, config = configs[report.organization_id]
            if available:
                decision = check_config_eligibility(config)
            else:
                decision = RemediationDecision(eligible=False, reason=SkipReason.CONFIG_UNAVAILABLE)

            if not decision.eligible:
                self._record_decision(result, report, decision, metrics, log)
                continue

            try:
                outcome = await self.orchestrator.trigger(
                    result.incident_id, report.organization_id, metrics
                )
            except IncidentStoreError as e:
                log_error_with_context(
                    log,
                    f"Failed to trigger remediation for incident {result.incident_id}",
                    e,
                    incident_id=result.incident_id,
                    organization_id=report.organization_id,
                )
                metrics.record_remediation(type(e).__name__, triggered=False)
                continue

            self._record_decision(
                result, report, decision, metrics, log, triggered=outcome.triggered
            )
            if outcome.triggered:
                result.status = IncidentStatus.CARLA_FIXING

    def _record_decision(
        self,
        result: IngestResult,
        report: ErrorReport,
        decision: RemediationDecision,
        metrics: IngestionMetrics,
        log: ContextLoggerAdapter,
        triggered: bool = False,
    ) -> None:
        log_remediation_decision(
            log,
            incident_id=result.incident_id,
            organization_id=report.organization_id,
            reason=decision.reason.value,
            eligible=decision.eligible,
        )
        metrics.record_remediation(decision.reason.value, triggered=triggered)
