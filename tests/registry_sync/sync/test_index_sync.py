"""Tests for search collection schema evolution and document writes."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from registry_sync.clients.http import ApiError
from registry_sync.schemas.documents import PackageDocument
from registry_sync.sync.index import SearchIndexSynchronizer
from registry_sync.sync.schema import PACKAGE_FIELDS, missing_fields, package_collection_schema

NOW_MS = int(datetime(2024, 7, 1, tzinfo=UTC).timestamp() * 1000)


def doc(name):
    return PackageDocument(id=name, name=name, version="1.0.0", updated=NOW_MS, created=NOW_MS)


@pytest.fixture
def client():
    fake = MagicMock()
    fake.retrieve_collection = AsyncMock(return_value=None)
    fake.create_collection = AsyncMock(return_value={})
    fake.update_collection = AsyncMock(return_value={})
    fake.import_documents = AsyncMock(side_effect=lambda c, docs, action: [{"success": True}] * len(docs))
    fake.delete_document = AsyncMock(return_value={"id": "a"})
    fake.retrieve_document = AsyncMock(return_value={"id": "a"})
    return fake


class TestSchema:
    def test_collection_schema(self):
        schema = package_collection_schema("packages")

        assert schema["name"] == "packages"
        assert schema["default_sorting_field"] == "downloads"
        assert len(schema["fields"]) == len(PACKAGE_FIELDS)

    def test_missing_fields_in_declaration_order(self):
        existing = {"fields": [{"name": f["name"]} for f in PACKAGE_FIELDS[:-2]]}

        assert [f["name"] for f in missing_fields(existing)] == [
            PACKAGE_FIELDS[-2]["name"],
            PACKAGE_FIELDS[-1]["name"],
        ]


class TestEnsureCollection:
    @pytest.mark.asyncio
    async def test_creates_missing_collection(self, client):
        sync = SearchIndexSynchronizer(client)

        created = await sync.ensure_collection()

        client.create_collection.assert_awaited_once()
        assert "downloads" in created

    @pytest.mark.asyncio
    async def test_up_to_date_collection_is_untouched(self, client):
        client.retrieve_collection = AsyncMock(return_value=package_collection_schema("packages"))

        assert await SearchIndexSynchronizer(client).ensure_collection() == []
        client.update_collection.assert_not_awaited()
        client.create_collection.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_adds_fields_one_at_a_time_and_skips_failures(self, client):
        existing = {"fields": [{"name": f["name"]} for f in PACKAGE_FIELDS[:-3]]}
        client.retrieve_collection = AsyncMock(return_value=existing)
        failing = PACKAGE_FIELDS[-2]["name"]

        async def update(collection, fields):
            if fields[0]["name"] == failing:
                raise ApiError("Unprocessable (422)")
            return {}

        client.update_collection = AsyncMock(side_effect=update)

        added = await SearchIndexSynchronizer(client).ensure_collection()

        assert client.update_collection.await_count == 3
        assert added == [PACKAGE_FIELDS[-3]["name"], PACKAGE_FIELDS[-1]["name"]]


class TestDocumentWrites:
    @pytest.mark.asyncio
    async def test_upsert_sends_wire_form(self, client):
        results = await SearchIndexSynchronizer(client).upsert([doc("a"), doc("b")])

        assert len(results) == 2
        collection, payload = client.import_documents.await_args.args
        assert collection == "packages"
        assert client.import_documents.await_args.kwargs["action"] == "upsert"
        assert payload[0]["hasTypes"] is False
        assert "description" not in payload[0]

    @pytest.mark.asyncio
    async def test_empty_upsert_makes_no_call(self, client):
        assert await SearchIndexSynchronizer(client).upsert([]) == []
        client.import_documents.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_partial_failure_is_returned_not_raised(self, client, caplog):
        client.import_documents = AsyncMock(
            return_value=[{"success": True}, {"success": False, "error": "bad field"}]
        )

        results = await SearchIndexSynchronizer(client).upsert([doc("a"), doc("b")])

        assert [r["success"] for r in results] == [True, False]
        assert "Failed to upsert 1 of 2 documents" in caplog.text

    @pytest.mark.asyncio
    async def test_delete_missing_document(self, client):
        client.delete_document = AsyncMock(return_value=None)

        assert await SearchIndexSynchronizer(client).delete("ghost") is False

    @pytest.mark.asyncio
    async def test_delete_server_error_propagates(self, client):
        client.delete_document = AsyncMock(
            side_effect=ApiError("Server error (503)", status_code=503)
        )

        with pytest.raises(ApiError):
            await SearchIndexSynchronizer(client).delete("a")

    @pytest.mark.asyncio
    async def test_delete_existing_document(self, client):
        assert await SearchIndexSynchronizer(client).delete("a") is True

    @pytest.mark.asyncio
    async def test_get_document(self, client):
        assert await SearchIndexSynchronizer(client).get_document("a") == {"id": "a"}
