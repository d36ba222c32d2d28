"""
Document codec for the couchbind SDK.

Splits raw documents into reserved ("system") fields and entity fields, and
converts between entities and documents.

A field is a system field iff its name starts with ``_`` (reserved by the
server: ``_id``, ``_rev``, ``_deleted``...) or ends with ``__`` (reserved by
this client: the ``class__`` discriminator). Everything else is an entity
field. The same rule is used in both directions.

Invariants:
    - decode(split(encode(entity))) reproduces id, revision and every entity field
    - Unknown entity fields are ignored on decode
    - A body without entity fields (e.g. an error body) is a valid envelope
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar, get_origin

from pydantic import BaseModel, TypeAdapter, ValidationError

from .entity import DesignDocument, Entity
from .errors import DecodeError
from .models import CLASS_FIELD, DocumentEnvelope, StrictDocumentEnvelope

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)
M = TypeVar("M", bound=BaseModel)

DESIGN_PREFIX = "_design/"


def is_system_field(name: str) -> bool:
    return name.startswith("_") or name.endswith("__")


def split(document: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Partition a document into (system fields, entity fields)."""
    system: dict[str, Any] = {}
    entity: dict[str, Any] = {}
    for name, value in document.items():
        if is_system_field(name):
            system[name] = value
        else:
            entity[name] = value
    return system, entity


def merge(system: dict[str, Any], entity: dict[str, Any]) -> dict[str, Any]:
    """Inverse of split.

    Raises:
        ValueError: If the two parts do not respect the splitting rule
    """
    misplaced = [name for name in system if not is_system_field(name)]
    misplaced += [name for name in entity if is_system_field(name)]
    if misplaced:
        raise ValueError(f"Fields on the wrong side of the split: {sorted(misplaced)}")
    return {**system, **entity}


class DocumentCodec:
    """Encodes entities into documents and decodes them back.

    Attributes:
        strict_system_json: Reject reserved fields the envelope model does not know
    """

    def __init__(self, strict_system_json: bool = False) -> None:
        self.strict_system_json = strict_system_json
        self._envelope_type = StrictDocumentEnvelope if strict_system_json else DocumentEnvelope

    # --- encode ---

    def encode(self, entity: Entity, class_name: str) -> dict[str, Any]:
        """Encode an entity, injecting id, revision and the class discriminator."""
        system: dict[str, Any] = {"_id": entity.id, CLASS_FIELD: class_name}
        if entity.revision is not None:
            system["_rev"] = entity.revision
        return merge(system, entity.payload())

    def encode_design(self, design: DesignDocument) -> dict[str, Any]:
        """Encode a design document, omitting absent optional fields."""
        system: dict[str, Any] = {"_id": f"{DESIGN_PREFIX}{strip_design_prefix(design.id)}"}
        if design.revision is not None:
            system["_rev"] = design.revision
        body = design.model_dump(mode="json", exclude={"id", "revision"}, exclude_none=True)
        return merge(system, body)

    # --- decode ---

    def decode_envelope(self, system: dict[str, Any]) -> DocumentEnvelope:
        """Decode reserved fields (or an error body) into an envelope."""
        return self.decode_model(self._envelope_type, system)

    def decode(self, entity_type: type[E], system: dict[str, Any], fields: dict[str, Any]) -> E:
        """Decode entity fields, taking id and revision from the system fields.

        Raises:
            DecodeError: If the fields do not fit `entity_type`
        """
        data = dict(fields)
        doc_id = system.get("_id")
        if issubclass(entity_type, DesignDocument) and isinstance(doc_id, str):
            doc_id = strip_design_prefix(doc_id)
        data["id"] = doc_id
        data["revision"] = system.get("_rev")
        try:
            return entity_type.model_validate(data)
        except ValidationError as e:
            raise DecodeError(
                f"Document {doc_id!r} does not match {entity_type.__qualname__}: {e}",
                payload=merge(system, fields),
            ) from e

    def decode_document(self, entity_type: type[E], document: dict[str, Any]) -> E:
        """Split then decode a raw document."""
        if not isinstance(document, dict):
            raise DecodeError(f"Expected a JSON object for {entity_type.__qualname__}", document)
        system, fields = split(document)
        return self.decode(entity_type, system, fields)

    def decode_value(self, value_type: Any, value: Any) -> Any:
        """Decode an arbitrary JSON value; None stays None.

        Entity types go through the document rules, everything else through
        pydantic validation.
        """
        if value is None or value_type is Any:
            return value
        is_class = get_origin(value_type) is None and isinstance(value_type, type)
        if is_class and issubclass(value_type, Entity):
            return self.decode_document(value_type, value)
        try:
            return TypeAdapter(value_type).validate_python(value)
        except ValidationError as e:
            raise DecodeError(f"Value does not match {value_type!r}: {e}", payload=value) from e

    def decode_model(self, model_type: type[M], data: Any) -> M:
        try:
            return model_type.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Response does not match {model_type.__name__}: {e}", data) from e

    def class_name_of(self, document: dict[str, Any]) -> str | None:
        value = document.get(CLASS_FIELD)
        return value if isinstance(value, str) else None


def strip_design_prefix(doc_id: str) -> str:
    return doc_id[len(DESIGN_PREFIX) :] if doc_id.startswith(DESIGN_PREFIX) else doc_id
