"""npm registry metadata client."""

import logging
from typing import Any
from urllib.parse import quote

from core.resilience.circuit_breaker import REGISTRY_CIRCUIT_CONFIG
from core.resilience.rate_limiter import REGISTRY_API_RATE_CONFIG
from registry_sync.clients.http import BaseApiClient

logger = logging.getLogger(__name__)


def encode_package_name(name: str) -> str:
    """Percent-encode a package name as one path segment (``@a/b`` -> ``%40a%2Fb``)."""
    return quote(name, safe="")


class RegistryClient(BaseApiClient):
    """Reads package documents from ``GET {registry}/{encoded name}``."""

    service_name = "registry"

    def __init__(self, base_url: str = "https://registry.npmjs.org", **kwargs):
        kwargs.setdefault("circuit_config", REGISTRY_CIRCUIT_CONFIG)
        kwargs.setdefault("rate_config", REGISTRY_API_RATE_CONFIG)
        super().__init__(base_url, **kwargs)

    async def fetch_package_metadata(self, name: str) -> dict[str, Any] | None:
        """
        Fetch the full registry document for a package.

        Returns:
            Parsed JSON, or None when the registry answers 404

        Raises:
            ApiError: Any other non-2xx status or transport failure
        """
        data = await self._request(
            "GET", self.url(encode_package_name(name)), not_found_ok=True
        )
        if data is None:
            logger.debug("Package not found in registry", extra={"package": name})
            return None
        if not isinstance(data, dict):
            logger.warning(
                "Unexpected registry payload type",
                extra={"package": name, "payload_type": type(data).__name__},
            )
            return None
        return data
