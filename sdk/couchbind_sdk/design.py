"""
Design document and view service for the couchbind SDK.

Design documents live under the ``_design/`` namespace of a database and use
the same revision-gated write path as entities. Views are read through
``{db}/_design/{id}/_view/{name}`` and decoded row by row.

Invariants:
    - A null view value (or a missing one) decodes to None, never to an error
    - Keys, values and included docs are decoded independently per row
"""

from __future__ import annotations

import logging
from typing import Any, get_origin

from .codec import DESIGN_PREFIX, DocumentCodec, strip_design_prefix
from .documents import (
    NOT_FOUND,
    OK,
    REJECTED_READ,
    DocumentKind,
    DocumentService,
    PutResult,
    parse_json,
    rejected,
)
from .entity import DesignDocument, Entity
from .errors import DecodeError, UnsupportedStatusError
from .models import DeleteResponse, DocumentEnvelope, ViewRequest, ViewResult, ViewRow, encode_query
from .registry import MetadataResolver
from .transport import HttpTransport, path_for

logger = logging.getLogger(__name__)


class DesignService:
    """Design documents and view queries.

    Example:
        >>> await design.upsert(DesignDocument(id="tasks", views={"all": View(map=...)}), db="tasks")
        >>> result = await design.get_view("tasks", "all", db="tasks", value_type=Task)
    """

    def __init__(
        self,
        transport: HttpTransport,
        resolver: MetadataResolver,
        codec: DocumentCodec,
    ) -> None:
        self.transport = transport
        self.resolver = resolver
        self.codec = codec
        self.documents = DocumentService(transport, resolver, codec, DocumentKind.DESIGN)

    async def upsert(self, design: DesignDocument, db: str) -> PutResult[DesignDocument]:
        """Create or replace a design document."""
        return await self.documents.upsert(design, db=db)

    async def get(self, design_id: str, db: str) -> DesignDocument | None:
        return await self.documents.get(DesignDocument, design_id, db=db)

    async def get_with_envelope(
        self, design_id: str, db: str
    ) -> tuple[DocumentEnvelope, DesignDocument | None]:
        return await self.documents.get_with_envelope(DesignDocument, design_id, db=db)

    async def delete(
        self, design_id: str, revision: str, db: str, batch: bool = False
    ) -> DeleteResponse:
        return await self.documents.delete(design_id, revision, db, batch=batch)

    async def delete_design(self, design: DesignDocument, db: str) -> DeleteResponse:
        return await self.documents.delete_entity(design, db=db)

    async def get_view(
        self,
        design_id: str,
        view: str,
        db: str | None = None,
        request: ViewRequest | None = None,
        key_type: Any = Any,
        value_type: Any = Any,
        doc_type: Any = None,
        entity_type: type[Entity] | None = None,
    ) -> ViewResult:
        """Query a view.

        Args:
            design_id: Design document id (with or without ``_design/``)
            view: View name
            db: Database; defaults to the resolved database of `entity_type`
            request: Key/range/paging parameters
            key_type: Type each row key is decoded into
            value_type: Type each row value is decoded into
            doc_type: Type included docs are decoded into (defaults to `entity_type`)
            entity_type: Entity whose database hosts the view

        Returns:
            Decoded rows in server order

        Raises:
            DocumentError: If the server rejected the query (404 is a missing view here)
            DecodeError: If a non-null key/value/doc does not fit its type
        """
        if db is None:
            if entity_type is None:
                raise ValueError("get_view needs either db or entity_type")
            db = self.resolver.database_for(entity_type)
        if doc_type is None:
            doc_type = entity_type or Any

        path = path_for(db, DESIGN_PREFIX + strip_design_prefix(design_id), "_view", view)
        response = await self.transport.send("GET", path, params=encode_query(request))

        if response.status != OK:
            if response.status in REJECTED_READ or response.status == NOT_FOUND:
                raise rejected(response)
            raise UnsupportedStatusError(response.status, response.text)

        body = parse_json(response)
        raw_rows = body.get("rows") if isinstance(body, dict) else None
        if not isinstance(raw_rows, list):
            raise DecodeError("View response has no rows", payload=body)

        rows = [self._decode_row(row, key_type, value_type, doc_type) for row in raw_rows]
        logger.debug(
            "View queried",
            extra={"database": db, "design": design_id, "view": view, "rows": len(rows)},
        )
        return ViewResult(
            rows=rows,
            total_rows=body.get("total_rows"),
            offset=body.get("offset"),
            update_seq=body.get("update_seq"),
        )

    def _decode_row(self, row: Any, key_type: Any, value_type: Any, doc_type: Any) -> ViewRow:
        if not isinstance(row, dict):
            raise DecodeError("View row is not an object", payload=row)
        return ViewRow(
            id=row.get("id"),
            key=self.codec.decode_value(key_type, row.get("key")),
            value=self._decode_value(value_type, row.get("value")),
            doc=self._decode_value(doc_type, row.get("doc")),
        )

    def _decode_value(self, value_type: Any, value: Any) -> Any:
        # Shared databases mix types; a document of another type decodes to None
        is_class = get_origin(value_type) is None and isinstance(value_type, type)
        is_entity = is_class and issubclass(value_type, Entity)
        if is_entity and isinstance(value, dict):
            if not self.resolver.holds(value_type, self.codec.class_name_of(value)):
                return None
        return self.codec.decode_value(value_type, value)
