"""
Client for the couchbind SDK.

CouchClient wires one shared transport, metadata resolver and codec into the
four services:
- db: database administration
- doc: entity CRUD
- design: design documents and views
- changes: continuous change feed

Example:
    >>> async with CouchClient(Settings(admin_password="secret")) as couch:
    ...     await couch.db.create_for_entity(Task)
    ...     result = await couch.doc.insert(Task(id="task-1", title="Write docs"))
    ...     task = await couch.doc.get(Task, "task-1")

Invariants:
    - The routing policy is fixed for the lifetime of a client
    - All services share one connection pool, closed with the client
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .changes import ChangesFeed
from .codec import DocumentCodec
from .config import Settings
from .databases import DatabaseService
from .design import DesignService
from .documents import DocumentService
from .registry import EntityRegistry, MetadataResolver, get_registry
from .transport import HttpTransport

logger = logging.getLogger(__name__)


class CouchClient:
    """Typed client over a CouchDB server.

    Attributes:
        settings: Client configuration
        resolver: Entity type -> database/class name resolution
        codec: Document encoding rules
        db: DatabaseService
        doc: DocumentService
        design: DesignService
        changes: ChangesFeed
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: EntityRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Configuration (loaded from COUCHBIND_* variables if not provided)
            registry: Entity registry (the global registry if not provided)
            transport: Optional httpx transport, e.g. an in-memory server in tests
        """
        self.settings = settings or Settings()
        self.registry = registry or get_registry()
        self.resolver = MetadataResolver(self.registry, self.settings)
        self.codec = DocumentCodec(strict_system_json=self.settings.strict_system_json)
        self.transport = HttpTransport(self.settings, transport=transport)

        self.db = DatabaseService(self.transport, self.resolver)
        self.doc = DocumentService(self.transport, self.resolver, self.codec)
        self.design = DesignService(self.transport, self.resolver, self.codec)
        self.changes = ChangesFeed(
            self.transport,
            self.resolver,
            self.codec,
            policy=self.settings.retry_policy(),
            heartbeat_ms=self.settings.changes_heartbeat_ms,
        )

    async def close(self) -> None:
        await self.transport.close()
        logger.debug("Client closed", extra={"base_url": self.settings.base_url})

    async def __aenter__(self) -> CouchClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
