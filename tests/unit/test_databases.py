"""
Unit tests for database administration.
"""

import httpx
import pytest

from couchbind_sdk import CouchClient, Settings
from couchbind_sdk.databases import SYSTEM_DATABASES
from couchbind_sdk.errors import DatabaseError, UnsupportedStatusError

from tests.entities import ALL_ENTITIES, Comment, Note, Task, registry


class TestDatabaseService:
    """Tests for DatabaseService."""

    @pytest.mark.asyncio
    async def test_create_get_delete(self, couch):
        await couch.db.create("inventory")

        info = await couch.db.get("inventory")
        assert info.db_name == "inventory"
        assert info.doc_count == 0
        assert await couch.db.exists("inventory")

        await couch.db.delete("inventory")

        assert await couch.db.get("inventory") is None
        assert not await couch.db.exists("inventory")

    @pytest.mark.asyncio
    async def test_create_existing_raises(self, couch):
        await couch.db.create("inventory")

        with pytest.raises(DatabaseError) as exc_info:
            await couch.db.create("inventory")

        assert exc_info.value.status == 412
        assert "already exists" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_name_raises(self, couch):
        with pytest.raises(DatabaseError) as exc_info:
            await couch.db.create("1test1")

        assert exc_info.value.status == 400

    @pytest.mark.asyncio
    async def test_delete_missing_raises(self, couch):
        with pytest.raises(DatabaseError) as exc_info:
            await couch.db.delete("never-created")

        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_list_all_includes_system_databases(self, couch):
        await couch.db.create("inventory")

        names = await couch.db.list_all()

        assert "inventory" in names
        assert set(SYSTEM_DATABASES) <= set(names)

    @pytest.mark.asyncio
    async def test_create_sends_cluster_parameters(self):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            return httpx.Response(201, json={"ok": True})

        transport = httpx.MockTransport(handler)
        async with CouchClient(Settings(), registry=registry, transport=transport) as couch:
            await couch.db.create("sharded", q=8, n=3, partitioned=True)

        assert seen == [{"q": "8", "n": "3", "partitioned": "true"}]

    @pytest.mark.asyncio
    async def test_unsupported_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="oops"))
        async with CouchClient(Settings(), registry=registry, transport=transport) as couch:
            with pytest.raises(UnsupportedStatusError):
                await couch.db.create("x")
            with pytest.raises(UnsupportedStatusError):
                await couch.db.list_all()


class TestEntityDatabases:
    """Creating the databases entity types route to."""

    @pytest.mark.asyncio
    async def test_create_for_entity(self, couch, server):
        assert await couch.db.create_for_entity(Note) == "note"
        assert "note" in server.databases

    @pytest.mark.asyncio
    async def test_shared_database_created_once(self, couch):
        """Task and Comment share "tasks"."""
        assert await couch.db.create_for_entities([Task, Comment]) == ["tasks"]

    @pytest.mark.asyncio
    async def test_create_if_not_exists(self, couch):
        await couch.db.create("note")

        created = await couch.db.create_for_entities_if_not_exists(ALL_ENTITIES)
        again = await couch.db.create_for_entities_if_not_exists(ALL_ENTITIES)

        assert created == ["tasks"]
        assert again == []
