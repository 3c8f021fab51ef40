"""
npm downloads API client.

Bulk lookups are comma-joined, at most 128 names per call. The bulk endpoint
does not accept scoped names, so ``@scope/name`` packages are fetched one by
one with at most 20 requests in flight.
"""

import asyncio
import logging

from core.errors import PipelineError
from registry_sync.cache import MISSING, TTLCache
from registry_sync.clients.http import BaseApiClient
from registry_sync.clients.registry import encode_package_name

logger = logging.getLogger(__name__)

BULK_MAX_NAMES = 128
SCOPED_MAX_CONCURRENT = 20
PERIOD = "last-week"


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def split_scoped(names: list[str]) -> tuple[list[str], list[str]]:
    """Split names into (regular, scoped), preserving order."""
    regular = [n for n in names if not n.startswith("@")]
    scoped = [n for n in names if n.startswith("@")]
    return regular, scoped


class DownloadsClient(BaseApiClient):
    """Weekly download counts with an optional TTL cache in front."""

    service_name = "downloads"

    def __init__(
        self,
        base_url: str = "https://api.npmjs.org/downloads",
        cache: TTLCache | None = None,
        cache_ttl_seconds: float = 3600,
        **kwargs,
    ):
        super().__init__(base_url, **kwargs)
        self._cache = cache
        self._cache_ttl_seconds = cache_ttl_seconds

    def _cache_key(self, name: str) -> str:
        return f"downloads:{PERIOD}:{name}"

    def _remember(self, counts: dict[str, int]) -> None:
        if self._cache is None:
            return
        for name, count in counts.items():
            self._cache.set(self._cache_key(name), count, ttl=self._cache_ttl_seconds)

    async def fetch_downloads(self, name: str) -> int | None:
        """Weekly downloads for one package; None when the API has no data."""
        if self._cache is not None:
            cached = self._cache.get(self._cache_key(name))
            if cached is not MISSING:
                return cached

        data = await self._request(
            "GET",
            self.url(f"point/{PERIOD}/{encode_package_name(name)}"),
            not_found_ok=True,
        )
        if not isinstance(data, dict) or not isinstance(data.get("downloads"), int):
            return None
        count = data["downloads"]
        self._remember({name: count})
        return count

    async def _fetch_bulk(self, names: list[str]) -> dict[str, int]:
        if len(names) == 1:
            count = await self.fetch_downloads(names[0])
            return {names[0]: count} if count is not None else {}

        data = await self._request(
            "GET", self.url(f"point/{PERIOD}/{','.join(names)}"), not_found_ok=True
        )
        counts: dict[str, int] = {}
        if isinstance(data, dict):
            for pkg, info in data.items():
                if isinstance(info, dict) and isinstance(info.get("downloads"), int):
                    counts[pkg] = info["downloads"]
        self._remember(counts)
        return counts

    async def _fetch_scoped(self, names: list[str]) -> dict[str, int]:
        semaphore = asyncio.Semaphore(SCOPED_MAX_CONCURRENT)
        counts: dict[str, int] = {}

        async def fetch_one(name: str) -> None:
            async with semaphore:
                try:
                    count = await self.fetch_downloads(name)
                except PipelineError as e:
                    logger.warning(
                        "Download count lookup failed",
                        extra={"package": name, "error_message": str(e)[:200]},
                    )
                    return
            if count is not None:
                counts[name] = count

        await asyncio.gather(*(fetch_one(name) for name in names))
        return counts

    async def fetch_downloads_batch(self, names: list[str]) -> dict[str, int]:
        """
        Weekly downloads for many packages.

        Names missing from the result had no data or failed to resolve;
        callers treat them as 0.
        """
        downloads: dict[str, int] = {}
        pending: list[str] = []
        for name in dict.fromkeys(names):
            cached = self._cache.get(self._cache_key(name)) if self._cache is not None else MISSING
            if cached is MISSING:
                pending.append(name)
            else:
                downloads[name] = cached

        regular, scoped = split_scoped(pending)
        for chunk in _chunks(regular, BULK_MAX_NAMES):
            try:
                downloads.update(await self._fetch_bulk(chunk))
            except PipelineError as e:
                logger.warning(
                    "Bulk download lookup failed",
                    extra={"batch_size": len(chunk), "error_message": str(e)[:200]},
                )

        if scoped:
            downloads.update(await self._fetch_scoped(scoped))
        return downloads


__all__ = [
    "BULK_MAX_NAMES",
    "DownloadsClient",
    "SCOPED_MAX_CONCURRENT",
    "split_scoped",
]
