"""
Metrics collection and emission for observability.

This module provides metrics tracking for:
- Incidents created vs. folded into existing incidents
- Per-item ingestion failures
- Remediation triggers and skip reasons
- Remediation backend call latency
"""

import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager

from incident_intake.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


class IngestionMetrics:
    """
    Collects counters for one ingestion (single report or batch).

    Tracks:
    - Created, duplicate and failed item counts
    - Remediation triggers and skip reasons
    - API call counts and latency
    """

    def __init__(self, organization_id: Optional[str] = None, batch_id: Optional[str] = None):
        self.organization_id = organization_id
        self.batch_id = batch_id

        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.duration_ms: Optional[int] = None

        self.created_count: int = 0
        self.duplicate_count: int = 0
        self.failed_count: int = 0

        self.remediation_triggered: int = 0
        self.skip_reasons: Dict[str, int] = {}

        self.api_calls: Dict[str, int] = {}
        self.api_latencies: Dict[str, list[float]] = {}

    def start(self) -> None:
        """Mark ingestion start."""
        self.start_time = datetime.now(timezone.utc)

    def complete(self) -> None:
        """Mark ingestion completion and log the summary."""
        self.end_time = datetime.now(timezone.utc)
        if self.start_time:
            duration = (self.end_time - self.start_time).total_seconds()
            self.duration_ms = int(duration * 1000)

        logger.info(
            "Ingestion metrics",
            extra={
                "organization_id": self.organization_id,
                "batch_id": self.batch_id,
                "duration_ms": self.duration_ms,
                "created_count": self.created_count,
                "duplicate_count": self.duplicate_count,
                "failed_count": self.failed_count,
                "remediation_triggered": self.remediation_triggered,
            }
        )

    def record_ingestion(self, is_duplicate: bool) -> None:
        if is_duplicate:
            self.duplicate_count += 1
        else:
            self.created_count += 1

    def record_failure(self, count: int = 1) -> None:
        self.failed_count += count

    def record_remediation(self, reason: str, triggered: bool) -> None:
        """
        Record a remediation decision.

        Args:
            reason: Skip reason code, or 'eligible'
            triggered: Whether a remediation attempt was started
        """
        if triggered:
            self.remediation_triggered += 1
        else:
            self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1

    def record_api_call(self, service: str, duration_ms: float) -> None:
        """
        Record API call and latency.

        Args:
            service: Service name (e.g., 'remediation_backend')
            duration_ms: Call duration in milliseconds
        """
        self.api_calls[service] = self.api_calls.get(service, 0) + 1

        if service not in self.api_latencies:
            self.api_latencies[service] = []
        self.api_latencies[service].append(duration_ms)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """
        Get summary of collected metrics.

        Returns:
            Dictionary of metrics
        """
        summary = {
            "organization_id": self.organization_id,
            "batch_id": self.batch_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "created_count": self.created_count,
            "duplicate_count": self.duplicate_count,
            "failed_count": self.failed_count,
            "remediation_triggered": self.remediation_triggered,
            "skip_reasons": dict(self.skip_reasons),
            "api_calls": self.api_calls,
        }

        if self.api_latencies:
            latency_stats = {}
            for service, latencies in self.api_latencies.items():
                if latencies:
                    latency_stats[service] = {
                        "count": len(latencies),
                        "min_ms": round(min(latencies), 2),
                        "max_ms": round(max(latencies), 2),
                        "avg_ms": round(sum(latencies) / len(latencies), 2),
                    }
            summary["api_latencies"] = latency_stats

        return summary


@asynccontextmanager
async def track_api_call(
    metrics_collector: Optional[IngestionMetrics],
    service: str,
    logger_adapter,
    endpoint: str = "",
    method: str = "",
):
    """
    Context manager to track API call timing.

    Usage:
        async with track_api_call(metrics, "remediation_backend", logger, "/fix-error", "POST"):
            response = await client.post(url, json=payload)

    Args:
        metrics_collector: Metrics collector (optional)
        service: Service name
        logger_adapter: Logger for logging API calls
        endpoint: Endpoint being called
        method: HTTP method
    """
    start_time = time.time()
    error = None

    try:
        yield
    except Exception as e:
        error = e
        raise
    finally:
        duration_ms = (time.time() - start_time) * 1000

        if metrics_collector:
            metrics_collector.record_api_call(service, duration_ms)

        log_api_call(
            logger_adapter,
            service=service,
            endpoint=endpoint,
            method=method,
            duration_ms=duration_ms,
            error=(str(error) or type(error).__name__) if error else None
        )


def emit_metric(metric_name: str, value: float, **tags: Any) -> None:
    """
    Emit a metric as a structured log record.

    Args:
        metric_name: Metric name
        value: Metric value
        **tags: Metric tags/labels
    """
    logger.info(
        f"Metric: {metric_name}",
        extra={
            "metric_name": metric_name,
            "metric_value": value,
            "metric_tags": tags,
        }
    )
