"""Tests for the registry catalog walk used by the backfill."""

from unittest.mock import AsyncMock, patch

import pytest

from registry_sync.backfill.catalog import CatalogClient
from registry_sync.clients.http import ApiError


def rows(*ids, deleted=()):
    return [{"id": i, "seq": n, "deleted": i in deleted} for n, i in enumerate(ids)]


class TestCatalogClient:
    @pytest.mark.asyncio
    async def test_walks_pages_until_short_page(self):
        client = CatalogClient("https://replicate.example/registry", page_limit=3)
        pages = [
            {"results": rows("a", "b", "_design/app"), "last_seq": "3"},
            {"results": rows("c", "a", "gone", deleted=("gone",)), "last_seq": "6"},
            {"results": rows("d"), "last_seq": "7"},
        ]
        fetch = AsyncMock(side_effect=pages)
        progress = []

        with patch.object(client, "fetch_page", fetch):
            packages = await client.get_all_packages(on_progress=progress.append)

        assert packages == ["a", "b", "c", "d"]
        assert [call.args[0] for call in fetch.await_args_list] == ["0", "3", "6"]
        assert progress == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_stops_when_last_seq_does_not_advance(self):
        client = CatalogClient("https://replicate.example/registry", page_limit=1)
        fetch = AsyncMock(return_value={"results": rows("a"), "last_seq": "0"})

        with patch.object(client, "fetch_page", fetch):
            packages = await client.get_all_packages()

        assert packages == ["a"]
        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_fetch_page_retries_transient_errors(self):
        client = CatalogClient("https://replicate.example/registry")
        request = AsyncMock(
            side_effect=[ApiError("Server error (503)"), {"results": [], "last_seq": "0"}]
        )
        with patch.object(client, "_request", request), patch(
            "core.resilience.retry.asyncio.sleep", AsyncMock()
        ):
            page = await client.fetch_page("0")

        assert page == {"results": [], "last_seq": "0"}
        assert request.await_count == 2
        assert request.await_args.kwargs["params"] == {"since": "0", "limit": "10000"}
