"""Inbound error report data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ErrorType(str, Enum):
    """Category of a client-reported error."""

    CONSOLE_ERROR = "console_error"
    CONSOLE_WARN = "console_warn"
    CONSOLE_LOG = "console_log"
    UNHANDLED_EXCEPTION = "unhandled_exception"
    PROMISE_REJECTION = "promise_rejection"
    RESOURCE_ERROR = "resource_error"
    PERFORMANCE_ISSUE = "performance_issue"
    NETWORK_ERROR = "network_error"


class Severity(str, Enum):
    """Severity tier of an incident."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorOrigin(str, Enum):
    """Where the error was raised."""

    MONITORING_INFRASTRUCTURE = "interworky_plugin"
    MONITORED_SURFACE = "client_website"


class ErrorSource(BaseModel):
    """Error source detection details sent by the collector."""

    model_config = ConfigDict(extra="allow")

    origin: ErrorOrigin = ErrorOrigin.MONITORED_SURFACE
    detected_at: Optional[str] = Field(default=None, max_length=100)
    detection_method: Optional[str] = Field(default=None, max_length=100)


class ReportMetadata(BaseModel):
    """Free-form metadata attached to a report."""

    model_config = ConfigDict(extra="allow")

    browser_info: Optional[Dict[str, Any]] = None
    device_info: Optional[Dict[str, Any]] = None
    custom_data: Optional[Dict[str, Any]] = None
    stack_frames: Optional[List[Dict[str, Any]]] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorReport(BaseModel):
    """Single error report from a tenant website."""

    error_type: ErrorType = Field(validation_alias=AliasChoices("error_type", "category"))
    severity: Optional[Severity] = None

    # Oversized message and stack trace are truncated by the sanitizer
    message: str = Field(min_length=1)
    stack_trace: Optional[str] = None
    source_file: Optional[str] = Field(default=None, max_length=500)
    line_number: Optional[int] = Field(default=None, ge=0)
    column_number: Optional[int] = Field(default=None, ge=0)
    function_name: Optional[str] = Field(default=None, max_length=200)
    component_name: Optional[str] = Field(default=None, max_length=200)

    url: str = Field(max_length=2000)
    user_agent: str = Field(max_length=1000)
    timestamp: datetime = Field(default_factory=_utcnow)

    organization_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("organization_id", "tenant_id"),
    )
    assistant_id: str
    session_id: str

    error_source: ErrorSource = ErrorSource()
    metadata: ReportMetadata = ReportMetadata()
    performance_data: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None

    batch_id: Optional[str] = None

    @field_validator("error_source", "metadata", mode="before")
    @classmethod
    def _default_when_null(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def origin(self) -> ErrorOrigin:
        return self.error_source.origin


class BatchReport(BaseModel):
    """Batch envelope; items are validated one by one by the ingestor."""

    errors: List[Any]
    batch_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
