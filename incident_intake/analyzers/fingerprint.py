"""
Fingerprinting for incident deduplication.

A fingerprint is the MD5 hex digest of the JSON-encoded error category,
normalized message, source location and tenant. Fingerprints are only ever compared
within a tenant, so the tenant id is part of the hashed input.
"""

import hashlib
import json
import logging
import uuid
from typing import Optional, Union

from incident_intake.analyzers.normalizer import normalize_message
from incident_intake.models.error_report import ErrorReport, ErrorType

logger = logging.getLogger(__name__)


def generate_fingerprint(
    error_type: Union[ErrorType, str],
    normalized_message: str,
    source_file: Optional[str],
    line_number: Optional[int],
    organization_id: str,
) -> str:
    """
    Derive the deduplication key for an error.

    Args:
        error_type: Error category
        normalized_message: Message already passed through the normalizer
        source_file: Source file reported by the client, if any
        line_number: Source line reported by the client, if any
        organization_id: Tenant the error belongs to

    Returns:
        32 character hex digest. If hashing fails a random value of the
        same width is returned so the report is still stored, undeduplicated.
    """
    try:
        category = ErrorType(error_type).value
        line = "" if line_number is None else str(line_number)
        hash_input = json.dumps([
            category,
            normalized_message,
            source_file or "",
            line,
            organization_id,
        ])
        return hashlib.md5(hash_input.encode("utf-8")).hexdigest()
    except Exception as e:
        logger.error(
            f"Failed to generate fingerprint, falling back to a unique value: {e}",
            extra={"organization_id": organization_id},
            exc_info=True,
        )
        return uuid.uuid4().hex


def fingerprint_report(report: ErrorReport) -> str:
    """
    Normalize and fingerprint a validated report.

    Args:
        report: Sanitized error report

    Returns:
        Fingerprint of the report
    """
    normalized = normalize_message(report.message, report.error_type)
    return generate_fingerprint(
        report.error_type,
        normalized,
        report.source_file,
        report.line_number,
        report.organization_id,
    )
