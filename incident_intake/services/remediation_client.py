"""
HTTP client for the remediation backend.

The backend accepts ``POST /fix-error`` with the incident and tenant IDs and
reports its outcome later through the status endpoint.
"""

from typing import Any, Dict, Optional

import httpx

from incident_intake.utils.logging import get_logger
from incident_intake.utils.metrics import IngestionMetrics, track_api_call
from incident_intake.utils.resilience import CircuitBreaker, create_remediation_circuit_breaker


logger = get_logger(__name__)

FIX_ERROR_PATH = "/fix-error"


class RemediationBackendError(Exception):
    """Raised when the remediation backend rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemediationClient:
    """
    Async client for the remediation backend with circuit breaker protection.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the remediation client.

        Args:
            base_url: Backend base URL. If None, will load from settings.
            timeout: Request timeout in seconds. If None, will load from settings.
            circuit_breaker: Circuit breaker guarding backend calls
            transport: Optional httpx transport (used by tests)
        """
        if base_url is None or timeout is None or circuit_breaker is None:
            from incident_intake.config import settings
            base_url = base_url or settings.remediation_backend_url
            timeout = timeout if timeout is not None else settings.remediation_timeout_seconds
            circuit_breaker = circuit_breaker or create_remediation_circuit_breaker(
                failure_threshold=settings.remediation_failure_threshold,
                recovery_seconds=settings.remediation_recovery_seconds,
            )

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.circuit_breaker = circuit_breaker
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request_fix(
        self,
        incident_id: str,
        organization_id: str,
        metrics: Optional[IngestionMetrics] = None,
    ) -> Dict[str, Any]:
        """
        Ask the backend to start remediating an incident.

        Args:
            incident_id: Incident ID
            organization_id: Tenant ID
            metrics: Optional metrics collector for call latency

        Returns:
            Backend response body (empty dict when not JSON)

        Raises:
            RemediationBackendError: On HTTP error status or transport failure
            CircuitBreakerOpenError: If the backend circuit is open
        """
        payload = {"errorId": incident_id, "organizationId": organization_id}
        call_logger = logger.with_context(incident_id=incident_id, organization_id=organization_id)

        async def _post() -> httpx.Response:
            try:
                response = await self._get_client().post(FIX_ERROR_PATH, json=payload)
            except httpx.HTTPError as e:
                raise RemediationBackendError(
                    f"Remediation backend request failed: {type(e).__name__}: {e}"
                ) from e

            if response.is_error:
                raise RemediationBackendError(
                    f"Remediation backend returned {response.status_code}",
                    status_code=response.status_code,
                )
            return response

        async with track_api_call(metrics, "remediation_backend", call_logger, FIX_ERROR_PATH, "POST"):
            response = await self.circuit_breaker.call(_post)

        try:
            return response.json()
        except ValueError:
            return {}
