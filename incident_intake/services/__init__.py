"""Business logic services package."""

from incident_intake.services.redis_client import (
    RedisClient,
    IncidentStoreError,
    RedisConnectionError,
    IncidentNotFoundError,
    get_redis_client
)
from incident_intake.services.remediation_config import (
    RemediationConfigService,
    get_remediation_config_service
)
from incident_intake.services.remediation_client import (
    RemediationClient,
    RemediationBackendError
)
from incident_intake.services.remediation_gate import (
    check_report_eligibility,
    evaluate_remediation_eligibility,
    should_attempt_remediation
)
from incident_intake.services.remediation_orchestrator import RemediationOrchestrator
from incident_intake.services.incident_ingestor import (
    IncidentIngestor,
    ReportValidationError,
    BatchValidationError,
    validate_report
)
from incident_intake.services.error_monitor import ErrorMonitor

__all__ = [
    'RedisClient',
    'IncidentStoreError',
    'RedisConnectionError',
    'IncidentNotFoundError',
    'get_redis_client',
    'RemediationConfigService',
    'get_remediation_config_service',
    'RemediationClient',
    'RemediationBackendError',
    'check_report_eligibility',
    'evaluate_remediation_eligibility',
    'should_attempt_remediation',
    'RemediationOrchestrator',
    'IncidentIngestor',
    'ReportValidationError',
    'BatchValidationError',
    'validate_report',
    'ErrorMonitor'
]
