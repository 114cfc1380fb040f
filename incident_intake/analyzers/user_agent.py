"""User agent parsing for browser and device enrichment."""

import re
from typing import Dict

from incident_intake.models.error_report import ErrorReport


_VERSION_PATTERNS = {
    "Chrome": re.compile(r"Chrome/(\d+\.\d+)"),
    "Firefox": re.compile(r"Firefox/(\d+\.\d+)"),
    "Safari": re.compile(r"Version/(\d+\.\d+)"),
    "Edge": re.compile(r"Edge?/(\d+\.\d+)"),
}

_PLATFORMS = (
    ("Windows", "Windows"),
    ("Android", "Android"),
    ("iPhone", "iOS"),
    ("iPad", "iOS"),
    ("Mac OS", "macOS"),
    ("Linux", "Linux"),
)


def _browser_name(user_agent: str) -> str:
    if "Edg/" in user_agent or "Edge/" in user_agent:
        return "Edge"
    if "Chrome" in user_agent:
        return "Chrome"
    if "Firefox" in user_agent:
        return "Firefox"
    if "Safari" in user_agent:
        return "Safari"
    return "Unknown"


def parse_browser_info(user_agent: str) -> Dict[str, str]:
    """
    Extract browser name, version and platform from a user agent string.

    Args:
        user_agent: Raw user agent header

    Returns:
        Dictionary with name, version and platform ('Unknown' when undetected)
    """
    name = _browser_name(user_agent)
    version = "Unknown"
    pattern = _VERSION_PATTERNS.get(name)
    if pattern:
        match = pattern.search(user_agent)
        if match:
            version = match.group(1)

    platform = "Unknown"
    for marker, platform_name in _PLATFORMS:
        if marker in user_agent:
            platform = platform_name
            break

    return {"name": name, "version": version, "platform": platform}


def parse_device_info(user_agent: str) -> Dict[str, str]:
    """Classify the device as mobile, tablet or desktop."""
    if "Tablet" in user_agent or "iPad" in user_agent:
        device_type = "tablet"
    elif "Mobile" in user_agent or "Android" in user_agent:
        device_type = "mobile"
    else:
        device_type = "desktop"
    return {"type": device_type}


def enrich_report_metadata(report: ErrorReport) -> ErrorReport:
    """Fill missing browser/device metadata from the report's user agent."""
    metadata = report.metadata
    update = {}
    if not metadata.browser_info:
        update["browser_info"] = parse_browser_info(report.user_agent)
    if not metadata.device_info:
        update["device_info"] = parse_device_info(report.user_agent)
    if not update:
        return report
    return report.model_copy(update={"metadata": metadata.model_copy(update=update)})
