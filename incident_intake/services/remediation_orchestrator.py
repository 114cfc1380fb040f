"""
Remediation Orchestrator component.

Moves incidents through the remediation state machine:

    new -> carla_fixing -> {pr_created | issue_created | resolved | fix_failed}

Resolved is terminal, and operator closes (ignored, duplicate) are never
overwritten by a late backend outcome.

The claim (``carla_fixing``) is persisted with a compare-and-set before the
backend is called, so concurrent triggers for one incident result in a
single backend call. Backend calls run as supervised background tasks and
failed calls roll the incident back to ``new``.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional, Set

from incident_intake.models.incident import (
    HANDLED_STATUSES,
    OUTCOME_SOURCE_STATUSES,
    OUTCOME_STATUSES,
    TRIGGERABLE_STATUSES,
    Incident,
    IncidentStatus,
    RemediationOutcome,
)
from incident_intake.models.remediation import TriggerOutcome
from incident_intake.services.redis_client import (
    IncidentConflictError,
    IncidentNotFoundError,
    IncidentStoreError,
    RedisClient,
)
from incident_intake.services.remediation_client import RemediationClient
from incident_intake.utils.logging import get_logger, log_error_with_context
from incident_intake.utils.metrics import IngestionMetrics, emit_metric

logger = get_logger(__name__)


class RemediationOrchestrator:
    """Orchestrates remediation attempts and their outcomes."""

    def __init__(
        self,
        redis_client: RedisClient,
        remediation_client: RemediationClient,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize the Remediation Orchestrator.

        Args:
            redis_client: Incident store
            remediation_client: Remediation backend client
            timeout_seconds: Upper bound on one backend call. If None, uses
                the client's timeout.
        """
        self.redis_client = redis_client
        self.remediation_client = remediation_client
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else remediation_client.timeout
        )
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def trigger(
        self,
        incident_id: str,
        organization_id: str,
        metrics: Optional[IngestionMetrics] = None,
    ) -> TriggerOutcome:
        """
        Claim an incident for remediation and dispatch the backend call.

        Args:
            incident_id: Incident identifier
            organization_id: Tenant ID
            metrics: Optional metrics collector

        Returns:
            Outcome saying whether this call started a remediation attempt

        Raises:
            IncidentNotFoundError: If the incident does not exist
            IncidentStoreError: If the claim could not be persisted
        """
        attempted_at = datetime.now(timezone.utc)
        applied, status = await self.redis_client.merge_remediation(
            incident_id,
            IncidentStatus.CARLA_FIXING,
            TRIGGERABLE_STATUSES,
            {"attempted_at": attempted_at.isoformat()},
        )

        if not applied:
            reason = "already_handled" if status in HANDLED_STATUSES else "not_triggerable"
            logger.info(
                f"Remediation not triggered for incident {incident_id}: status is {status.value}",
                extra={"incident_id": incident_id, "organization_id": organization_id, "reason": reason},
            )
            return TriggerOutcome(incident_id=incident_id, triggered=False, status=status, reason=reason)

        task = asyncio.create_task(
            self._dispatch(incident_id, organization_id, attempted_at, metrics)
        )
        self._pending.add(task)
        task.add_done_callback(self._on_dispatch_done)

        logger.info(
            f"Remediation triggered for incident {incident_id}",
            extra={"incident_id": incident_id, "organization_id": organization_id},
        )
        return TriggerOutcome(
            incident_id=incident_id,
            triggered=True,
            status=IncidentStatus.CARLA_FIXING,
        )

    async def record_outcome(
        self,
        incident_id: str,
        status: IncidentStatus,
        outcome: Optional[RemediationOutcome] = None,
    ) -> Incident:
        """
        Apply a remediation outcome reported by the backend.

        Outcomes are only applied to incidents the backend still owns; an
        incident an operator has closed keeps its status.

        Args:
            incident_id: Incident identifier
            status: Outcome status (pr_created, issue_created, fix_failed, resolved)
            outcome: Details merged into the incident's remediation record

        Returns:
            Updated incident

        Raises:
            ValueError: If status is not an outcome status
            IncidentNotFoundError: If the incident does not exist
            IncidentConflictError: If the incident is resolved or closed by an operator
        """
        if status not in OUTCOME_STATUSES:
            raise ValueError(f"{status.value} is not a remediation outcome status")

        details = outcome.model_dump(mode="json", exclude_none=True) if outcome else {}

        fields = {}
        if status == IncidentStatus.RESOLVED:
            fields["resolved_at"] = datetime.now(timezone.utc)
            fields["resolved_by"] = "remediation_backend"

        applied, current = await self.redis_client.merge_remediation(
            incident_id, status, OUTCOME_SOURCE_STATUSES, details, fields
        )
        if not applied:
            logger.warning(
                f"Outcome {status.value} rejected for incident {incident_id}: status is {current.value}",
                extra={"incident_id": incident_id, "status": current.value},
            )
            raise IncidentConflictError(
                f"Incident {incident_id} is {current.value} and no longer accepts outcomes",
                status=current,
            )

        emit_metric("remediation.outcome", 1, status=status.value)

        updated = await self.redis_client.get_incident(incident_id)
        if updated is None:
            raise IncidentNotFoundError(f"Incident {incident_id} not found")
        return updated

    async def wait_for_pending(self) -> None:
        """Wait for all in-flight backend calls to settle."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _dispatch(
        self,
        incident_id: str,
        organization_id: str,
        attempted_at: datetime,
        metrics: Optional[IngestionMetrics],
    ) -> None:
        """
        Call the backend with a bounded timeout, rolling back on failure.

        Args:
            incident_id: Incident identifier
            organization_id: Tenant ID
            attempted_at: When the claim was made
            metrics: Optional metrics collector
        """
        try:
            await asyncio.wait_for(
                self.remediation_client.request_fix(incident_id, organization_id, metrics),
                timeout=self.timeout_seconds,
            )
            logger.info(
                f"Remediation backend accepted incident {incident_id}",
                extra={"incident_id": incident_id, "organization_id": organization_id},
            )

        except asyncio.TimeoutError:
            logger.error(
                f"Remediation backend call for incident {incident_id} exceeded timeout of {self.timeout_seconds}s",
                extra={"incident_id": incident_id, "organization_id": organization_id},
            )
            await self._rollback(incident_id, attempted_at, f"Timed out after {self.timeout_seconds}s")

        except Exception as e:
            log_error_with_context(
                logger,
                f"Remediation backend call for incident {incident_id} failed: {e}",
                e,
                incident_id=incident_id,
                organization_id=organization_id,
            )
            await self._rollback(incident_id, attempted_at, f"{type(e).__name__}: {e}")

    async def _rollback(self, incident_id: str, attempted_at: datetime, reason: str) -> None:
        """
        Return a claimed incident to 'new' so a later report can retry.

        Only applies while the incident is still 'carla_fixing', so an
        outcome reported in the meantime is kept.
        """
        try:
            applied, status = await self.redis_client.merge_remediation(
                incident_id,
                IncidentStatus.NEW,
                [IncidentStatus.CARLA_FIXING],
                {"attempted_at": attempted_at.isoformat(), "error_message": reason},
            )
        except IncidentStoreError as e:
            log_error_with_context(
                logger,
                f"Failed to roll back incident {incident_id}",
                e,
                incident_id=incident_id,
            )
            return

        emit_metric("remediation.rollback", 1, applied=applied)
        if applied:
            logger.warning(
                f"Incident {incident_id} rolled back to new",
                extra={"incident_id": incident_id, "reason": reason},
            )
        else:
            logger.info(
                f"Rollback skipped for incident {incident_id}: status is {status.value}",
                extra={"incident_id": incident_id},
            )

    def _on_dispatch_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Remediation dispatch task cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Remediation dispatch task crashed: {error}", exc_info=error)
