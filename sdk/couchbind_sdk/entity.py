"""
Entity types for the couchbind SDK.

This module provides the domain-side shapes stored as documents:
- Entity: Base class for every stored record (id + revision + payload)
- DesignDocument: Named view/filter definitions of a database
- View: One map/reduce definition

Entities are immutable values. Writes never mutate the instance passed in;
they return a copy carrying the revision assigned by the server.

Invariants:
    - revision is None until the entity has been written once
    - Unknown fields in stored documents are ignored on decode

Example:
    >>> @entity_metadata(database_name="tasks")
    ... class Task(Entity):
    ...     title: str
    ...     done: bool = False
    >>>
    >>> task = Task(id="task-1", title="Write docs")
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

E = TypeVar("E", bound="Entity")


class Entity(BaseModel):
    """Base class for entities stored as documents.

    Attributes:
        id: Document id, non-blank once persisted
        revision: Server-assigned revision token, None before the first write
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    revision: str | None = None

    def copy_with_revision(self: E, revision: str | None) -> E:
        """Return a copy of this entity with `revision` replaced."""
        return self.model_copy(update={"revision": revision})

    def payload(self) -> dict[str, Any]:
        """Domain fields only, as JSON-compatible values."""
        return self.model_dump(mode="json", exclude={"id", "revision"})


class View(BaseModel):
    """A view definition: a map function and an optional reduce function."""

    model_config = ConfigDict(frozen=True)

    map: str
    reduce: str | None = None


class DesignDocument(Entity):
    """Design document holding view and filter definitions.

    The id is given without the ``_design/`` prefix; the prefix is a path
    concern handled by the design service.
    """

    language: str = "javascript"
    views: dict[str, View] | None = None
    filters: dict[str, str] | None = None
    validate_doc_update: str | None = None
    options: dict[str, Any] | None = None
