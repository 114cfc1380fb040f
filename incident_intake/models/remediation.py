"""Remediation configuration and decision models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .incident import IncidentStatus


class RemediationConfig(BaseModel):
    """Per-tenant auto-fix configuration (read-only)."""

    organization_id: str
    auto_fix_enabled: bool = False
    installation_id: Optional[str] = None
    repo_full_name: Optional[str] = None

    @property
    def wiring_present(self) -> bool:
        return bool(self.installation_id and self.repo_full_name)


class SkipReason(str, Enum):
    """Why an incident was or was not sent for remediation."""

    ELIGIBLE = "eligible"
    DUPLICATE = "duplicate"
    MISSING_TENANT = "missing_tenant"
    INSUFFICIENT_EVIDENCE = "insufficient_evidence"
    MONITORING_INFRASTRUCTURE = "monitoring_infrastructure"
    ALREADY_HANDLED = "already_handled"
    NOT_CONFIGURED = "not_configured"
    AUTO_FIX_DISABLED = "auto_fix_disabled"
    MISSING_WIRING = "missing_wiring"
    CONFIG_UNAVAILABLE = "config_unavailable"


class RemediationDecision(BaseModel):
    """Gate decision with the reason code of the first failing check."""

    eligible: bool
    reason: SkipReason

    def __bool__(self) -> bool:
        return self.eligible


class TriggerOutcome(BaseModel):
    """Result of a remediation trigger attempt."""

    incident_id: str
    triggered: bool
    status: Optional[IncidentStatus] = None
    reason: Optional[str] = None
