"""Typesense HTTP client for collection admin and document writes."""

import json
import logging
from typing import Any
from urllib.parse import quote

from core.errors import ConfigurationError
from core.resilience.circuit_breaker import SEARCH_INDEX_CIRCUIT_CONFIG
from core.resilience.rate_limiter import SEARCH_INDEX_RATE_CONFIG
from registry_sync.clients.http import BaseApiClient

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-TYPESENSE-API-KEY"


class SearchIndexClient(BaseApiClient):
    """
    Thin wrapper over the Typesense REST API.

    Example:
        client = SearchIndexClient("http://localhost:8108", api_key="xyz")
        results = await client.import_documents("packages", docs)
    """

    service_name = "search_index"

    def __init__(self, base_url: str, api_key: str, **kwargs):
        if not api_key:
            raise ConfigurationError("Search index sync requires TYPESENSE_API_KEY")
        kwargs.setdefault("circuit_config", SEARCH_INDEX_CIRCUIT_CONFIG)
        kwargs.setdefault("rate_config", SEARCH_INDEX_RATE_CONFIG)
        kwargs["headers"] = {API_KEY_HEADER: api_key, **kwargs.get("headers", {})}
        super().__init__(base_url, **kwargs)

    def _collection_url(self, collection: str, *parts: str) -> str:
        segments = ["collections", quote(collection, safe="")]
        segments.extend(quote(p, safe="") for p in parts)
        return self.url("/".join(segments))

    async def retrieve_collection(self, collection: str) -> dict[str, Any] | None:
        return await self._request("GET", self._collection_url(collection), not_found_ok=True)

    async def create_collection(self, schema: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", self.url("collections"), json_body=schema)

    async def update_collection(self, collection: str, fields: list[dict[str, Any]]) -> dict[str, Any]:
        return await self._request(
            "PATCH", self._collection_url(collection), json_body={"fields": fields}
        )

    async def import_documents(
        self, collection: str, documents: list[dict[str, Any]], action: str = "upsert"
    ) -> list[dict[str, Any]]:
        """
        Batch import as JSON lines; returns one result dict per document.

        Per-document failures come back as ``{"success": false, ...}`` entries,
        not as an HTTP error.
        """
        body = "\n".join(json.dumps(doc, separators=(",", ":")) for doc in documents)
        text = await self._request(
            "POST",
            self._collection_url(collection, "documents", "import"),
            params={"action": action},
            data=body.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
            parse="text",
        )
        results = []
        for line in (text or "").splitlines():
            if not line.strip():
                continue
            try:
                results.append(json.loads(line))
            except json.JSONDecodeError:
                results.append({"success": False, "error": f"unparseable result: {line[:200]}"})
        return results

    async def delete_document(self, collection: str, document_id: str) -> dict[str, Any] | None:
        return await self._request(
            "DELETE",
            self._collection_url(collection, "documents", document_id),
            not_found_ok=True,
        )

    async def retrieve_document(self, collection: str, document_id: str) -> dict[str, Any] | None:
        return await self._request(
            "GET",
            self._collection_url(collection, "documents", document_id),
            not_found_ok=True,
        )


__all__ = ["API_KEY_HEADER", "SearchIndexClient"]
