"""OSV vulnerability database client."""

import logging
from dataclasses import dataclass
from typing import Any

from core.errors import PipelineError
from registry_sync.clients.http import BaseApiClient

logger = logging.getLogger(__name__)


@dataclass
class VulnerabilityCounts:
    total: int = 0
    critical: int = 0
    high: int = 0
    moderate: int = 0
    low: int = 0


def _severity_from_score(score: str) -> str | None:
    try:
        value = float(score)
    except (TypeError, ValueError):
        # CVSS vectors ("CVSS:3.1/AV:N/...") carry no numeric score
        return None
    if value >= 9.0:
        return "critical"
    if value >= 7.0:
        return "high"
    if value >= 4.0:
        return "moderate"
    return "low"


def get_severity(vuln: dict[str, Any]) -> str:
    """Severity of one OSV entry from its CVSS score, else the database label."""
    for entry in vuln.get("severity") or []:
        if isinstance(entry, dict) and entry.get("type") in ("CVSS_V3", "CVSS_V2"):
            severity = _severity_from_score(entry.get("score"))
            if severity:
                return severity
            break

    label = (vuln.get("database_specific") or {}).get("severity")
    if isinstance(label, str):
        label = label.lower()
        if label == "medium":
            return "moderate"
        if label in ("critical", "high", "moderate", "low"):
            return label
    return "unknown"


def count_vulnerabilities(vulns: list[dict[str, Any]]) -> VulnerabilityCounts:
    counts = VulnerabilityCounts(total=len(vulns))
    for vuln in vulns:
        severity = get_severity(vuln)
        if severity != "unknown":
            setattr(counts, severity, getattr(counts, severity) + 1)
    return counts


class OsvClient(BaseApiClient):
    """``POST {osv}/v1/query`` for one npm package version."""

    service_name = "osv"

    def __init__(self, base_url: str = "https://api.osv.dev", **kwargs):
        super().__init__(base_url, **kwargs)

    async def fetch_vulnerabilities(self, name: str, version: str) -> VulnerabilityCounts | None:
        """Counts by severity, or None if the lookup failed."""
        try:
            data = await self._request(
                "POST",
                self.url("v1/query"),
                json_body={"package": {"name": name, "ecosystem": "npm"}, "version": version},
            )
        except PipelineError as e:
            logger.warning(
                "Vulnerability lookup failed",
                extra={"package": name, "version": version, "error_message": str(e)[:200]},
            )
            return None

        vulns = data.get("vulns") if isinstance(data, dict) else None
        return count_vulnerabilities([v for v in vulns or [] if isinstance(v, dict)])


__all__ = ["OsvClient", "VulnerabilityCounts", "count_vulnerabilities", "get_severity"]
