"""
Database administration for the couchbind SDK.

Create, inspect, list and delete databases, and create the databases that
registered entity types route to.

Status mapping:
    create: 201/202 -> ok, 400/401/403/412 -> DatabaseError
    delete: 200/202 -> ok, 400/401/403/404 -> DatabaseError
    get:    200 -> DatabaseInfo, 404 -> None
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .documents import parse_json
from .entity import Entity
from .errors import DatabaseError, UnsupportedStatusError
from .models import DatabaseInfo
from .registry import MetadataResolver
from .transport import HttpTransport, Response, path_for

logger = logging.getLogger(__name__)

PRECONDITION_FAILED = 412

# Created by the server itself; never touched by entity routing
SYSTEM_DATABASES = ("_users", "_replicator", "_global_changes")


def _database_error(response: Response, message: str) -> DatabaseError:
    logger.warning(message, extra={"status": response.status, "body": response.text[:500]})
    return DatabaseError(response.status, response.text, message=message)


class DatabaseService:
    """Database administration calls."""

    def __init__(self, transport: HttpTransport, resolver: MetadataResolver) -> None:
        self.transport = transport
        self.resolver = resolver

    async def create(
        self,
        name: str,
        q: int | None = None,
        n: int | None = None,
        partitioned: bool | None = None,
    ) -> None:
        """Create a database.

        Args:
            name: Database name
            q: Number of shards
            n: Number of replicas
            partitioned: Create a partitioned database

        Raises:
            DatabaseError: If the name is invalid, the database exists, or auth fails
        """
        params: dict[str, str] = {}
        if q is not None:
            params["q"] = str(q)
        if n is not None:
            params["n"] = str(n)
        if partitioned is not None:
            params["partitioned"] = "true" if partitioned else "false"

        response = await self.transport.send("PUT", path_for(name), params=params)
        if response.status in (201, 202):
            logger.info("Database created", extra={"database": name})
            return
        if response.status == PRECONDITION_FAILED:
            raise _database_error(response, f"Database '{name}' already exists")
        if response.status in (400, 401, 403):
            raise _database_error(response, f"Cannot create database '{name}'")
        raise UnsupportedStatusError(response.status, response.text)

    async def delete(self, name: str) -> None:
        """Delete a database.

        Raises:
            DatabaseError: If the database does not exist or auth fails
        """
        response = await self.transport.send("DELETE", path_for(name))
        if response.status in (200, 202):
            logger.info("Database deleted", extra={"database": name})
            return
        if response.status in (400, 401, 403, 404):
            raise _database_error(response, f"Cannot delete database '{name}'")
        raise UnsupportedStatusError(response.status, response.text)

    async def get(self, name: str) -> DatabaseInfo | None:
        """Database information, or None if it does not exist."""
        response = await self.transport.send("GET", path_for(name))
        if response.status == 200:
            return DatabaseInfo.model_validate(parse_json(response))
        if response.status == 404:
            return None
        if response.status in (400, 401, 403):
            raise _database_error(response, f"Cannot read database '{name}'")
        raise UnsupportedStatusError(response.status, response.text)

    async def exists(self, name: str) -> bool:
        response = await self.transport.send("HEAD", path_for(name))
        if response.status == 200:
            return True
        if response.status == 404:
            return False
        if response.status in (400, 401, 403):
            raise _database_error(response, f"Cannot check database '{name}'")
        raise UnsupportedStatusError(response.status, response.text)

    async def list_all(self) -> list[str]:
        """Names of all databases, system databases included."""
        response = await self.transport.send("GET", "/_all_dbs")
        if response.status == 200:
            return list(parse_json(response))
        if response.status in (401, 403):
            raise _database_error(response, "Cannot list databases")
        raise UnsupportedStatusError(response.status, response.text)

    async def create_for_entity(self, entity_type: type[Entity]) -> str:
        """Create the database an entity type routes to.

        Returns:
            The database name
        """
        name = self.resolver.database_for(entity_type)
        await self.create(name)
        return name

    async def create_for_entities(self, entity_types: Iterable[type[Entity]]) -> list[str]:
        """Create the databases of several entity types.

        Types sharing a database (e.g. under the predefined naming policy)
        create it once.
        """
        names = self._distinct_databases(entity_types)
        for name in names:
            await self.create(name)
        return names

    async def create_for_entities_if_not_exists(
        self, entity_types: Iterable[type[Entity]]
    ) -> list[str]:
        """Create the missing databases of several entity types.

        Returns:
            Names of the databases that were created
        """
        existing = set(await self.list_all())
        created = []
        for name in self._distinct_databases(entity_types):
            if name not in existing:
                await self.create(name)
                created.append(name)
        return created

    def _distinct_databases(self, entity_types: Iterable[type[Entity]]) -> list[str]:
        names: list[str] = []
        for entity_type in entity_types:
            name = self.resolver.database_for(entity_type)
            if name not in names:
                names.append(name)
        return names
