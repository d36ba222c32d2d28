"""
Document service for the couchbind SDK.

Generic CRUD over typed entities:
- get / get_with_envelope: read, None when not found
- insert / update: precondition-checked writes delegating to upsert
- upsert: revision-gated write returning a PutResult
- delete: revision-keyed delete, idempotent on not-found

Invariants:
    - Preconditions are checked before any request is sent
    - A successful write always yields a revision, or InvariantViolation
    - Not-found is None on reads and a tolerated acknowledgement on delete
    - Unclassified status codes always raise UnsupportedStatusError

Status mapping:
    get:    200 -> entity, 404 -> None, 304/400/401/403 -> DocumentError
    upsert: 201/202 -> PutResult, 400/401/403/404/409 -> DocumentError
    delete: 200/202/404 -> DeleteResponse, 400/401/403/409 -> DocumentError
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from .codec import DESIGN_PREFIX, DocumentCodec, split, strip_design_prefix
from .entity import DesignDocument, Entity
from .errors import (
    DecodeError,
    DocumentError,
    IdIsBlankError,
    ResponseRevisionMissingError,
    RevisionIsNoneError,
    RevisionIsNotNoneError,
    UnsupportedStatusError,
)
from .models import (
    DeleteQueryParameters,
    DeleteResponse,
    DocumentEnvelope,
    GetQueryParameters,
    PutQueryParameters,
    PutResponse,
    encode_query,
)
from .registry import MetadataResolver
from .transport import HttpTransport, Response, path_for

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)

OK = 200
CREATED = 201
ACCEPTED = 202
NOT_MODIFIED = 304
BAD_REQUEST = 400
UNAUTHORIZED = 401
FORBIDDEN = 403
NOT_FOUND = 404
CONFLICT = 409

REJECTED_READ = frozenset({NOT_MODIFIED, BAD_REQUEST, UNAUTHORIZED, FORBIDDEN})
REJECTED_WRITE = frozenset({BAD_REQUEST, UNAUTHORIZED, FORBIDDEN, NOT_FOUND, CONFLICT})
REJECTED_DELETE = frozenset({BAD_REQUEST, UNAUTHORIZED, FORBIDDEN, CONFLICT})


class DocumentKind(Enum):
    """Namespace a document service addresses."""

    DOCUMENT = ""
    DESIGN = DESIGN_PREFIX


@dataclass(frozen=True)
class PutResult(Generic[E]):
    """Outcome of a successful write.

    Attributes:
        response: Server acknowledgement
        entity: Copy of the written entity carrying the new revision
    """

    response: PutResponse
    entity: E


def parse_json(response: Response) -> Any:
    try:
        return json.loads(response.text) if response.text else {}
    except json.JSONDecodeError as e:
        raise DecodeError(f"Response body is not JSON: {e}", payload=response.text) from e


def rejected(response: Response) -> DocumentError:
    logger.warning(
        "Document request rejected",
        extra={"status": response.status, "body": response.text[:500]},
    )
    return DocumentError(response.status, response.text)


class DocumentService:
    """CRUD over entities stored as documents.

    Example:
        >>> result = await docs.insert(Task(id="task-1", title="Write docs"))
        >>> task = result.entity
        >>> await docs.delete_entity(task)
    """

    def __init__(
        self,
        transport: HttpTransport,
        resolver: MetadataResolver,
        codec: DocumentCodec,
        kind: DocumentKind = DocumentKind.DOCUMENT,
    ) -> None:
        self.transport = transport
        self.resolver = resolver
        self.codec = codec
        self.kind = kind

    def path(self, db: str, doc_id: str, design: bool = False) -> str:
        if design or self.kind == DocumentKind.DESIGN:
            return path_for(db, DESIGN_PREFIX + strip_design_prefix(doc_id))
        return path_for(db, doc_id)

    def _database(self, entity_type: type[Entity], db: str | None) -> str:
        return db if db is not None else self.resolver.database_for(entity_type)

    def _decode(
        self, entity_type: type[E], system: dict[str, Any], fields: dict[str, Any]
    ) -> E | None:
        class_name = self.codec.class_name_of(system)
        if not self.resolver.holds(entity_type, class_name):
            logger.debug(
                "Document belongs to another type",
                extra={
                    "id": system.get("_id"),
                    "class_name": class_name,
                    "expected": entity_type.__qualname__,
                },
            )
            return None
        return self.codec.decode(entity_type, system, fields)

    async def _get(
        self, entity_type: type[Entity], doc_id: str, db: str | None, parameters: GetQueryParameters | None
    ) -> Response:
        design = issubclass(entity_type, DesignDocument)
        path = self.path(self._database(entity_type, db), doc_id, design=design)
        return await self.transport.send("GET", path, params=encode_query(parameters))

    async def get(
        self,
        entity_type: type[E],
        doc_id: str,
        db: str | None = None,
        parameters: GetQueryParameters | None = None,
    ) -> E | None:
        """Read an entity.

        Args:
            entity_type: Type to decode into
            doc_id: Document id
            db: Database (defaults to the resolved database of `entity_type`)
            parameters: Optional read parameters

        Returns:
            The entity, or None if it does not exist or belongs to another type

        Raises:
            DocumentError: If the server rejected the request
            UnsupportedStatusError: For unclassified status codes
            DecodeError: If the document does not match `entity_type`
        """
        response = await self._get(entity_type, doc_id, db, parameters)
        if response.status == OK:
            system, fields = split(parse_json(response))
            return self._decode(entity_type, system, fields)
        if response.status == NOT_FOUND:
            return None
        if response.status in REJECTED_READ:
            raise rejected(response)
        raise UnsupportedStatusError(response.status, response.text)

    async def get_with_envelope(
        self,
        entity_type: type[E],
        doc_id: str,
        db: str | None = None,
        parameters: GetQueryParameters | None = None,
    ) -> tuple[DocumentEnvelope, E | None]:
        """Read an entity together with its reserved fields.

        When the document does not exist the envelope is decoded from the
        error body (error/reason set) and the entity is None. A document of
        another type also yields None, with its envelope.
        """
        response = await self._get(entity_type, doc_id, db, parameters)
        if response.status == OK:
            system, fields = split(parse_json(response))
            return self.codec.decode_envelope(system), self._decode(entity_type, system, fields)
        if response.status == NOT_FOUND:
            return self.codec.decode_envelope(parse_json(response)), None
        if response.status in REJECTED_READ:
            raise rejected(response)
        raise UnsupportedStatusError(response.status, response.text)

    async def insert(
        self,
        entity: E,
        db: str | None = None,
        parameters: PutQueryParameters | None = None,
    ) -> PutResult[E]:
        """Create a document.

        Raises:
            IdIsBlankError: If the id is blank
            RevisionIsNotNoneError: If the entity already carries a revision
        """
        if not entity.id.strip():
            raise IdIsBlankError(entity)
        if entity.revision is not None:
            raise RevisionIsNotNoneError(entity)
        return await self.upsert(entity, db, parameters)

    async def update(
        self,
        entity: E,
        db: str | None = None,
        parameters: PutQueryParameters | None = None,
    ) -> PutResult[E]:
        """Replace an existing document.

        Raises:
            IdIsBlankError: If the id is blank
            RevisionIsNoneError: If the entity has no revision
        """
        if not entity.id.strip():
            raise IdIsBlankError(entity)
        if entity.revision is None:
            raise RevisionIsNoneError(entity)
        return await self.upsert(entity, db, parameters)

    async def upsert(
        self,
        entity: E,
        db: str | None = None,
        parameters: PutQueryParameters | None = None,
    ) -> PutResult[E]:
        """Write a document; the server creates or replaces based on the revision.

        Raises:
            DocumentError: If the server rejected the write (e.g. 409 conflict)
            ResponseRevisionMissingError: If a successful response has no revision
            UnsupportedStatusError: For unclassified status codes
        """
        if isinstance(entity, DesignDocument):
            body = self.codec.encode_design(entity)
            database = db
            if database is None:
                raise ValueError("Design documents need an explicit database")
        else:
            metadata = self.resolver.resolve(type(entity))
            body = self.codec.encode(entity, metadata.class_name)
            database = db if db is not None else metadata.database_name

        path = self.path(database, entity.id, design=isinstance(entity, DesignDocument))
        response = await self.transport.send(
            "PUT", path, params=encode_query(parameters), json=body
        )
        if response.status in (CREATED, ACCEPTED):
            ack = self.codec.decode_model(PutResponse, parse_json(response))
            if ack.rev is None:
                raise ResponseRevisionMissingError(response.text)
            logger.debug(
                "Document written",
                extra={"database": database, "id": entity.id, "rev": ack.rev},
            )
            return PutResult(response=ack, entity=entity.copy_with_revision(ack.rev))
        if response.status in REJECTED_WRITE:
            raise rejected(response)
        raise UnsupportedStatusError(response.status, response.text)

    async def delete_entity(
        self, entity: Entity, db: str | None = None, batch: bool = False
    ) -> DeleteResponse:
        """Delete the revision an entity carries.

        Raises:
            IdIsBlankError: If the id is blank
            RevisionIsNoneError: If the entity has no revision
        """
        if not entity.id.strip():
            raise IdIsBlankError(entity)
        if entity.revision is None:
            raise RevisionIsNoneError(entity)
        if db is None and not isinstance(entity, DesignDocument):
            db = self.resolver.database_for(type(entity))
        if db is None:
            raise ValueError("Design documents need an explicit database")
        doc_id = entity.id
        if isinstance(entity, DesignDocument):
            doc_id = DESIGN_PREFIX + strip_design_prefix(doc_id)
        return await self.delete(doc_id, entity.revision, db, batch=batch)

    async def delete(
        self, doc_id: str, revision: str, db: str, batch: bool = False
    ) -> DeleteResponse:
        """Delete a document revision.

        Args:
            doc_id: Document id
            revision: Revision being deleted
            db: Database name
            batch: Ask the server for an unacknowledged delete

        Returns:
            The acknowledgement; for a missing document, one with error "not_found"

        Raises:
            DocumentError: Bad request, auth failure or revision conflict
            UnsupportedStatusError: For unclassified status codes
        """
        parameters = DeleteQueryParameters(rev=revision, batch="ok" if batch else None)
        response = await self.transport.send(
            "DELETE", self.path(db, doc_id), params=encode_query(parameters)
        )
        if response.status in (OK, ACCEPTED, NOT_FOUND):
            ack = self.codec.decode_model(DeleteResponse, parse_json(response))
            if ack.not_found:
                logger.debug("Delete of missing document", extra={"database": db, "id": doc_id})
            return ack
        if response.status in REJECTED_DELETE:
            raise rejected(response)
        raise UnsupportedStatusError(response.status, response.text)
