"""
End-to-end tests against a real CouchDB server.

Tests cover:
- Document lifecycle and conflicts
- JavaScript views
- Continuous change feed
"""

import asyncio

import pytest

from couchbind_sdk import ChangesRequest, DesignDocument, View, ViewRequest
from couchbind_sdk.errors import DocumentError

from tests.entities import Note, Task

pytestmark = pytest.mark.asyncio

BY_LABEL = "function (doc) { if (doc.class__ === 'note') emit(doc.label, null); }"


class TestCouchDB:
    async def test_document_lifecycle(self, e2e_client, database):
        inserted = (await e2e_client.doc.insert(Note(id="a", label="x"), db=database)).entity
        updated = (
            await e2e_client.doc.update(inserted.model_copy(update={"label": "y"}), db=database)
        ).entity

        assert updated.revision != inserted.revision
        assert (await e2e_client.doc.get(Note, "a", db=database)) == updated

        with pytest.raises(DocumentError) as exc_info:
            await e2e_client.doc.update(inserted, db=database)
        assert exc_info.value.status == 409

        assert (await e2e_client.doc.delete("a", updated.revision, database)).ok
        assert await e2e_client.doc.get(Note, "a", db=database) is None
        assert (await e2e_client.doc.delete("a", updated.revision, database)).not_found

    async def test_view(self, e2e_client, database):
        await e2e_client.design.upsert(
            DesignDocument(id="notes", views={"by_label": View(map=BY_LABEL)}), db=database
        )
        for label in ["b", "a", "c"]:
            await e2e_client.doc.insert(Note(id=label, label=label), db=database)

        result = await e2e_client.design.get_view(
            "notes", "by_label", db=database, key_type=str, request=ViewRequest(descending=True)
        )

        assert [row.key for row in result.rows] == ["c", "b", "a"]
        assert result.values == [None, None, None]

    async def test_change_feed(self, e2e_client, database):
        received = []
        subscription = e2e_client.changes.subscribe(
            database, ChangesRequest(include_docs=True), [Task], received.append
        )
        await e2e_client.doc.insert(Note(id="n", label="skipped"), db=database)
        task = (await e2e_client.doc.insert(Task(id="t", title="seen"), db=database)).entity

        for _ in range(100):
            if received:
                break
            await asyncio.sleep(0.05)
        await subscription.cancel()

        assert [event.entity for event in received] == [task]
