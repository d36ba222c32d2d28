"""
E2E test fixtures for couchbind.

These tests require a running CouchDB reachable through the COUCHBIND_*
settings, e.g.:

    docker run -d -p 5984:5984 -e COUCHDB_USER=admin -e COUCHDB_PASSWORD=secret couchdb:3
    COUCHBIND_E2E_TESTS=1 COUCHBIND_ADMIN_PASSWORD=secret pytest tests/e2e
"""

import os
import socket
import time
import uuid

import pytest
import pytest_asyncio

from couchbind_sdk import CouchClient, Settings

from tests.entities import registry

# Skip E2E tests if not in E2E mode
E2E_ENABLED = os.environ.get("COUCHBIND_E2E_TESTS", "0") == "1"

pytestmark = pytest.mark.skipif(
    not E2E_ENABLED,
    reason="E2E tests disabled. Set COUCHBIND_E2E_TESTS=1 to enable."
)


def wait_for_service(host: str, port: int, timeout: int = 60) -> bool:
    """Wait for a service to become available."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            time.sleep(1)
    return False


@pytest.fixture(scope="session")
def e2e_settings() -> Settings:
    """Settings from the environment, with a short heartbeat."""
    if not E2E_ENABLED:
        pytest.skip("E2E tests disabled")
    settings = Settings(changes_heartbeat_ms=1000, changes_initial_backoff=0.1)
    assert wait_for_service(settings.host, settings.port, timeout=60), "CouchDB not ready"
    return settings


@pytest_asyncio.fixture
async def e2e_client(e2e_settings):
    client = CouchClient(e2e_settings, registry=registry)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def database(e2e_client) -> str:
    """Unique database, deleted after the test."""
    name = f"couchbind_e2e_{uuid.uuid4().hex[:8]}"
    await e2e_client.db.create(name)
    yield name
    await e2e_client.db.delete(name)
