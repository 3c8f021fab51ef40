"""
Registry catalog listing for the backfill.

Walks ``{replicate}/_changes?since=<seq>&limit=10000`` from the beginning of
the feed, collecting unique package ids. Design documents and deleted rows
are skipped. A page shorter than the limit ends the walk.
"""

import logging
from collections.abc import Callable
from typing import Any

from core.resilience import CATALOG_RETRY, with_retry_async
from registry_sync.clients.http import BaseApiClient

logger = logging.getLogger(__name__)

CATALOG_PAGE_LIMIT = 10000


class CatalogClient(BaseApiClient):
    service_name = "catalog"

    def __init__(
        self,
        base_url: str = "https://replicate.npmjs.com/registry",
        page_limit: int = CATALOG_PAGE_LIMIT,
        **kwargs,
    ):
        kwargs.setdefault("timeout_seconds", 120)
        super().__init__(base_url, **kwargs)
        self.page_limit = page_limit

    @with_retry_async(config=CATALOG_RETRY)
    async def fetch_page(self, since: str) -> dict[str, Any]:
        data = await self._request(
            "GET",
            self.url("_changes"),
            params={"since": since, "limit": str(self.page_limit)},
        )
        return data if isinstance(data, dict) else {}

    async def get_all_packages(
        self, on_progress: Callable[[int], None] | None = None
    ) -> list[str]:
        """Every live package id in the registry, in first-seen order."""
        logger.info("Fetching all package names from the registry")
        packages: dict[str, None] = {}
        since = "0"
        iteration = 0

        while True:
            iteration += 1
            page = await self.fetch_page(since)
            results = page.get("results") or []

            for row in results:
                if not isinstance(row, dict):
                    continue
                package_id = row.get("id")
                if not isinstance(package_id, str) or package_id.startswith("_design/"):
                    continue
                if row.get("deleted"):
                    continue
                packages[package_id] = None

            done = len(results) < self.page_limit
            if iteration % 10 == 0 or done:
                logger.info(
                    "Fetched %s unique packages",
                    f"{len(packages):,}",
                    extra={"last_seq": since},
                )
            if on_progress:
                on_progress(len(packages))
            if done:
                break

            last_seq = page.get("last_seq")
            if last_seq is None or str(last_seq) == since:
                break
            since = str(last_seq)

        logger.info("Catalog total: %s packages", f"{len(packages):,}")
        return list(packages)


__all__ = ["CATALOG_PAGE_LIMIT", "CatalogClient"]
