"""
Shared fixtures: an in-memory CouchDB and clients connected to it.
"""

import pytest
import pytest_asyncio

from couchbind_sdk import CouchClient, Settings
from couchbind_sdk.testing import InMemoryCouchServer

from tests.entities import registry


@pytest.fixture
def server():
    """Fresh in-memory server with the system databases."""
    return InMemoryCouchServer(admin_name="admin", admin_password="secret")


@pytest.fixture
def settings():
    """Settings with fast change feed reconnection."""
    return Settings(
        admin_password="secret",
        changes_heartbeat_ms=50,
        changes_max_retries=3,
        changes_initial_backoff=0.01,
        changes_max_backoff=0.05,
    )


@pytest_asyncio.fixture
async def couch(server, settings):
    """Client wired to the in-memory server."""
    client = CouchClient(settings, registry=registry, transport=server.transport)
    yield client
    await client.close()
