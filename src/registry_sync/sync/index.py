"""Search index synchronizer: additive schema evolution and idempotent writes."""

import logging
from typing import Any

from core.errors import PipelineError
from registry_sync.clients.search_index import SearchIndexClient
from registry_sync.metrics import index_deletes_counter, index_upserts_counter
from registry_sync.schemas.documents import PackageDocument
from registry_sync.sync.schema import missing_fields, package_collection_schema

logger = logging.getLogger(__name__)

FAILURE_LOG_LIMIT = 5


class SearchIndexSynchronizer:
    def __init__(self, client: SearchIndexClient, collection: str = "packages"):
        self.client = client
        self.collection = collection

    async def ensure_collection(self) -> list[str]:
        """
        Create the collection, or add any desired fields it lacks.

        Fields are added one update at a time and never removed; a failed
        field is logged and skipped.

        Returns:
            Names of fields created or added
        """
        existing = await self.client.retrieve_collection(self.collection)
        if existing is None:
            schema = package_collection_schema(self.collection)
            logger.info("Creating search collection", extra={"collection": self.collection})
            await self.client.create_collection(schema)
            return [f["name"] for f in schema["fields"]]

        new_fields = missing_fields(existing)
        if not new_fields:
            logger.info("Search collection up to date", extra={"collection": self.collection})
            return []

        logger.info(
            "Adding %d new fields to collection",
            len(new_fields),
            extra={"collection": self.collection},
        )
        added = []
        for field in new_fields:
            try:
                await self.client.update_collection(self.collection, [field])
            except PipelineError as e:
                logger.warning(
                    "Could not add field %s",
                    field["name"],
                    extra={"collection": self.collection, "error": str(e)[:200]},
                )
                continue
            added.append(field["name"])
        return added

    async def upsert(self, documents: list[PackageDocument]) -> list[dict[str, Any]]:
        """
        Batch upsert. Partial success is not rolled back; the first few
        failing entries are logged.
        """
        if not documents:
            return []

        results = await self.client.import_documents(
            self.collection, [doc.to_index_dict() for doc in documents], action="upsert"
        )
        failed = [r for r in results if not r.get("success")]
        index_upserts_counter.labels(success="true").inc(len(results) - len(failed))
        if failed:
            index_upserts_counter.labels(success="false").inc(len(failed))
            logger.error(
                "Failed to upsert %d of %d documents",
                len(failed),
                len(documents),
                extra={
                    "collection": self.collection,
                    "failures": [
                        {"error": r.get("error"), "document": str(r.get("document", ""))[:200]}
                        for r in failed[:FAILURE_LOG_LIMIT]
                    ],
                },
            )
        return results

    async def delete(self, name: str) -> bool:
        """
        Delete by id; returns False when the document was already gone.

        Raises:
            ApiError: Any other non-2xx or transport failure, so the job is retried
        """
        result = await self.client.delete_document(self.collection, name)
        if result is None:
            logger.debug("Document already absent", extra={"package": name})
            return False
        index_deletes_counter.inc()
        return True

    async def get_document(self, name: str) -> dict[str, Any] | None:
        try:
            return await self.client.retrieve_document(self.collection, name)
        except PipelineError as e:
            logger.debug("Document lookup failed", extra={"package": name, "error": str(e)[:200]})
            return None


__all__ = ["SearchIndexSynchronizer"]
