"""
Wire models for the couchbind SDK.

Pydantic models for bodies returned by the server and for the optional
request parameters sent as query strings.

Invariants:
    - Unset optional parameters never reach the query string
    - Key-like view parameters are JSON-encoded, booleans are lowercase
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

K = TypeVar("K")
V = TypeVar("V")
D = TypeVar("D")

# Discriminator written next to the reserved fields of every entity document
CLASS_FIELD = "class__"

# Parameters the server expects as JSON values rather than plain strings
JSON_PARAMETERS = frozenset({"key", "keys", "start_key", "end_key"})


def encode_query(parameters: BaseModel | None) -> dict[str, str]:
    """Serialize request parameters to query-string values.

    None values are dropped, booleans become ``true``/``false`` and the
    key-like view parameters are JSON-encoded.
    """
    if parameters is None:
        return {}

    encoded: dict[str, str] = {}
    for name, value in parameters.model_dump(exclude_none=True, by_alias=True).items():
        if name in JSON_PARAMETERS:
            encoded[name] = json.dumps(value, separators=(",", ":"))
        elif isinstance(value, bool):
            encoded[name] = "true" if value else "false"
        elif isinstance(value, (dict, list)):
            encoded[name] = json.dumps(value, separators=(",", ":"))
        else:
            encoded[name] = str(value)
    return encoded


# --- Server responses ---


class DocumentEnvelope(BaseModel):
    """Reserved fields of a document, or the body of an error response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = Field(default=None, alias="_id")
    rev: str | None = Field(default=None, alias="_rev")
    deleted: bool | None = Field(default=None, alias="_deleted")
    attachments: dict[str, Any] | None = Field(default=None, alias="_attachments")
    conflicts: list[str] | None = Field(default=None, alias="_conflicts")
    deleted_conflicts: list[str] | None = Field(default=None, alias="_deleted_conflicts")
    revisions: dict[str, Any] | None = Field(default=None, alias="_revisions")
    revs_info: list[dict[str, Any]] | None = Field(default=None, alias="_revs_info")
    local_seq: Any = Field(default=None, alias="_local_seq")
    class_name: str | None = Field(default=None, alias=CLASS_FIELD)
    error: str | None = None
    reason: str | None = None


class StrictDocumentEnvelope(DocumentEnvelope):
    """Envelope that rejects reserved fields it does not know."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class PutResponse(BaseModel):
    """Write acknowledgement."""

    ok: bool | None = None
    id: str | None = None
    rev: str | None = None
    error: str | None = None
    reason: str | None = None


class DeleteResponse(PutResponse):
    """Delete acknowledgement; a not-found delete carries error/reason instead of ok."""

    @property
    def not_found(self) -> bool:
        return self.error == "not_found"


class DatabaseInfo(BaseModel):
    """Subset of the database information document."""

    model_config = ConfigDict(extra="allow")

    db_name: str
    doc_count: int | None = None
    doc_del_count: int | None = None
    update_seq: Any = None
    purge_seq: Any = None
    compact_running: bool | None = None
    instance_start_time: str | None = None
    props: dict[str, Any] | None = None


# --- Request parameters ---


class GetQueryParameters(BaseModel):
    rev: str | None = None
    revs: bool | None = None
    revs_info: bool | None = None
    conflicts: bool | None = None
    deleted_conflicts: bool | None = None
    attachments: bool | None = None
    att_encoding_info: bool | None = None
    latest: bool | None = None
    local_seq: bool | None = None
    meta: bool | None = None


class PutQueryParameters(BaseModel):
    # "ok" requests a batched, unacknowledged write
    batch: str | None = None
    new_edits: bool | None = None


class DeleteQueryParameters(BaseModel):
    rev: str
    batch: str | None = None


class ViewRequest(BaseModel):
    """Query parameters of a view read."""

    key: Any = None
    keys: list[Any] | None = None
    start_key: Any = None
    end_key: Any = None
    startkey_docid: str | None = None
    endkey_docid: str | None = None
    limit: int | None = Field(default=None, ge=0)
    skip: int | None = Field(default=None, ge=0)
    descending: bool | None = None
    include_docs: bool | None = None
    inclusive_end: bool | None = None
    group: bool | None = None
    group_level: int | None = None
    reduce: bool | None = None
    update: str | None = None
    update_seq: bool | None = None
    conflicts: bool | None = None
    sorted: bool | None = None
    stable: bool | None = None


class ChangesRequest(BaseModel):
    """Parameters of a change feed subscription.

    `selector` and `doc_ids` are sent in the request body together with the
    matching built-in filter; all other fields travel in the query string.
    """

    include_docs: bool | None = None
    since: Any = None
    filter: str | None = None
    selector: dict[str, Any] | None = None
    doc_ids: list[str] | None = None
    view: str | None = None
    style: str | None = None
    conflicts: bool | None = None
    heartbeat: int | None = None
    timeout: int | None = None
    limit: int | None = None

    def query(self, since: Any = None) -> dict[str, str]:
        params = encode_query(self.model_copy(update={"selector": None, "doc_ids": None}))
        params["feed"] = "continuous"
        if since is not None:
            params["since"] = str(since)
        if self.selector is not None:
            params["filter"] = "_selector"
        elif self.doc_ids is not None:
            params["filter"] = "_doc_ids"
        return params

    def body(self) -> dict[str, Any] | None:
        if self.selector is not None:
            return {"selector": self.selector}
        if self.doc_ids is not None:
            return {"doc_ids": self.doc_ids}
        return None


# --- Decoded results ---


class ChangeRevision(BaseModel):
    rev: str


class ChangeEvent(BaseModel):
    """One record of the change feed.

    Attributes:
        seq: Opaque sequence token, usable as `since` to resume after this event
        id: Document id
        changes: Leaf revisions of the document
        deleted: Whether the change is a deletion
        doc: Raw document body (with include_docs)
        entity: Decoded entity, when the document's class matched a requested type
    """

    seq: Any
    id: str
    changes: list[ChangeRevision] = Field(default_factory=list)
    deleted: bool = False
    doc: dict[str, Any] | None = None
    entity: Any = None

    @property
    def revisions(self) -> list[str]:
        return [change.rev for change in self.changes]


@dataclass
class ViewRow(Generic[K, V, D]):
    """One row of a view result; value and doc may legitimately be None."""

    id: str | None
    key: K | None
    value: V | None
    doc: D | None = None


@dataclass
class ViewResult(Generic[K, V, D]):
    """Decoded view response."""

    rows: list[ViewRow[K, V, D]] = field(default_factory=list)
    total_rows: int | None = None
    offset: int | None = None
    update_seq: Any = None

    @property
    def values(self) -> list[V | None]:
        return [row.value for row in self.rows]

    @property
    def docs(self) -> list[D | None]:
        return [row.doc for row in self.rows]
