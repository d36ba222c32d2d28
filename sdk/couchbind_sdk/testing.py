"""
In-memory CouchDB imitation for testing.

This module provides an httpx transport that behaves like a small CouchDB
server, for:
- Unit tests of the services without a running server
- Integration tests that exercise revision conflicts and change feeds
- Local experiments

Supported: database create/delete/info/list, documents with revision checks
and batch mode, design documents, views (map functions are registered as
Python callables keyed by their source), and continuous change feeds with
heartbeats, timeouts, ``_doc_ids``/``_selector`` filters, injected lines,
injected failures, and dropped connections.

Invariants:
    - All data is lost when the server object is discarded
    - Revisions follow the ``N-hash`` shape and increase on every write
    - Only the latest change of each document is kept in the by-seq index

Example:
    >>> server = InMemoryCouchServer()
    >>> server.register_map("doc => { emit(doc.label, doc) }", lambda doc: [(doc["label"], doc)])
    >>> client = CouchClient(settings, transport=server.transport)
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
import uuid
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

import httpx

from .databases import SYSTEM_DATABASES

logger = logging.getLogger(__name__)

MapFunction = Callable[[dict[str, Any]], Iterable[tuple[Any, Any]]]

DATABASE_NAME = re.compile(r"^[a-z][a-z0-9_$()+/-]*$")
SPECIAL_MEMBERS = frozenset(
    {"_id", "_rev", "_deleted", "_attachments", "_conflicts", "_revisions", "_local_seq"}
)


def _error(status: int, error: str, reason: str) -> httpx.Response:
    return httpx.Response(status, json={"error": error, "reason": reason})


def _seq_number(since: Any) -> int:
    if since in (None, "", "0", 0):
        return 0
    return int(str(since).split("-", 1)[0])


def collation_key(value: Any) -> tuple:
    """Approximation of the view collation order.

    null < false < true < numbers < strings < arrays < objects; strings
    compare case-insensitively first.
    """
    if value is None:
        return (0,)
    if value is False:
        return (1,)
    if value is True:
        return (2,)
    if isinstance(value, (int, float)):
        return (3, value)
    if isinstance(value, str):
        return (4, value.casefold(), value)
    if isinstance(value, list):
        return (5, tuple(collation_key(item) for item in value))
    if isinstance(value, dict):
        return (6, tuple((k, collation_key(v)) for k, v in value.items()))
    raise TypeError(f"Not a JSON value: {value!r}")


@dataclass
class StoredDocument:
    """Latest revision of one document."""

    id: str
    rev: str
    body: dict[str, Any]
    seq: int
    deleted: bool = False

    def generation(self) -> int:
        return int(self.rev.split("-", 1)[0])

    def to_json(self) -> dict[str, Any]:
        if self.deleted:
            return {"_id": self.id, "_rev": self.rev, "_deleted": True}
        return {"_id": self.id, "_rev": self.rev, **self.body}


@dataclass
class InMemoryDatabase:
    """One database: documents plus its update sequence."""

    name: str
    documents: dict[str, StoredDocument] = field(default_factory=dict)
    update_seq: int = 0
    streams: set[ChangesStream] = field(default_factory=set)
    injected_lines: list[str] = field(default_factory=list)

    def seq_token(self, seq: int | None = None) -> str:
        seq = self.update_seq if seq is None else seq
        return f"{seq}-fake"

    def write(self, doc_id: str, body: dict[str, Any], deleted: bool = False) -> StoredDocument:
        current = self.documents.get(doc_id)
        generation = current.generation() + 1 if current else 1
        self.update_seq += 1
        stored = StoredDocument(
            id=doc_id,
            rev=f"{generation}-{uuid.uuid4().hex}",
            body={} if deleted else body,
            seq=self.update_seq,
            deleted=deleted,
        )
        self.documents[doc_id] = stored
        self.notify()
        return stored

    def changes_since(self, seq: int) -> list[StoredDocument]:
        return sorted((d for d in self.documents.values() if d.seq > seq), key=lambda d: d.seq)

    def live_documents(self) -> list[StoredDocument]:
        return [
            d for d in self.documents.values() if not d.deleted and not d.id.startswith("_design/")
        ]

    def notify(self) -> None:
        for stream in self.streams:
            stream.wake()

    def info(self) -> dict[str, Any]:
        live = [d for d in self.documents.values() if not d.deleted]
        return {
            "db_name": self.name,
            "doc_count": len(live),
            "doc_del_count": len(self.documents) - len(live),
            "update_seq": self.seq_token(),
            "purge_seq": 0,
            "compact_running": False,
            "instance_start_time": "0",
        }


class ChangesStream(httpx.AsyncByteStream):
    """Body of one continuous ``_changes`` response."""

    def __init__(
        self,
        server: InMemoryCouchServer,
        database: InMemoryDatabase,
        since: int,
        include_docs: bool,
        heartbeat_ms: int | None,
        timeout_ms: int | None,
        doc_ids: list[str] | None = None,
        selector: dict[str, Any] | None = None,
    ) -> None:
        self.server = server
        self.database = database
        self.since = since
        self.include_docs = include_docs
        self.heartbeat_ms = heartbeat_ms
        self.timeout_ms = timeout_ms if heartbeat_ms is None else None
        self.doc_ids = doc_ids
        self.selector = selector
        self.closed = False
        self._dropped = False
        self._broken = False
        self._wake = asyncio.Event()

    def wake(self) -> None:
        self._wake.set()

    def drop(self, broken: bool = False) -> None:
        """End the stream; `broken` raises a read error instead of a clean end."""
        self._dropped = True
        self._broken = broken
        self._wake.set()

    def _matches(self, document: StoredDocument) -> bool:
        if self.doc_ids is not None and document.id not in self.doc_ids:
            return False
        if self.selector is not None:
            body = document.to_json()
            return all(body.get(name) == value for name, value in self.selector.items())
        return True

    def _line(self, document: StoredDocument) -> bytes:
        event: dict[str, Any] = {
            "seq": self.database.seq_token(document.seq),
            "id": document.id,
            "changes": [{"rev": document.rev}],
        }
        if document.deleted:
            event["deleted"] = True
        if self.include_docs:
            event["doc"] = document.to_json()
        return (json.dumps(event) + "\n").encode()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        self.database.streams.add(self)
        try:
            while True:
                self._wake.clear()
                if self._dropped:
                    if self._broken:
                        raise httpx.ReadError("connection reset by peer")
                    return

                while self.database.injected_lines:
                    yield (self.database.injected_lines.pop(0) + "\n").encode()
                for document in self.database.changes_since(self.since):
                    self.since = document.seq
                    if self._matches(document):
                        yield self._line(document)

                wait_ms = self.heartbeat_ms if self.heartbeat_ms is not None else self.timeout_ms
                try:
                    await asyncio.wait_for(self._wake.wait(), (wait_ms or 60000) / 1000)
                except asyncio.TimeoutError:
                    if self.heartbeat_ms is not None:
                        yield b"\n"
                    else:
                        last = {"last_seq": self.database.seq_token(self.since), "pending": 0}
                        yield (json.dumps(last) + "\n").encode()
                        return
        finally:
            self.database.streams.discard(self)
            self.closed = True

    async def aclose(self) -> None:
        self.closed = True
        self.database.streams.discard(self)


class InMemoryCouchServer:
    """A CouchDB imitation reachable through `transport`.

    Attributes:
        databases: Name -> InMemoryDatabase
        open_streams: Number of change feed bodies currently being read
        changes_requests: Query parameters of every ``_changes`` request received
        transport: httpx.MockTransport to hand to the client
    """

    def __init__(
        self,
        admin_name: str | None = None,
        admin_password: str | None = None,
        create_system_databases: bool = True,
    ) -> None:
        self.databases: dict[str, InMemoryDatabase] = {}
        self.map_functions: dict[str, MapFunction] = {}
        self.changes_requests: list[dict[str, str]] = []
        self._changes_failures: list[int] = []
        self._credentials = None
        if admin_name is not None:
            raw = f"{admin_name}:{admin_password or ''}".encode()
            self._credentials = "Basic " + base64.b64encode(raw).decode()
        if create_system_databases:
            for name in SYSTEM_DATABASES:
                self.databases[name] = InMemoryDatabase(name)
        self.transport = httpx.MockTransport(self.handle)

    @property
    def open_streams(self) -> int:
        return sum(len(database.streams) for database in self.databases.values())

    # --- testing helpers ---

    def register_map(self, source: str, function: MapFunction) -> None:
        """Evaluate view map `source` with `function` (doc -> [(key, value), ...])."""
        self.map_functions[source] = function

    def inject_changes_line(self, db: str, line: str) -> None:
        """Send a raw line on the next change feed read of `db`."""
        database = self.databases[db]
        database.injected_lines.append(line)
        database.notify()

    def fail_next_changes(self, count: int = 1, status: int = 500) -> None:
        """Answer the next `count` change feed requests with `status`."""
        self._changes_failures.extend([status] * count)

    def drop_changes_connections(self, broken: bool = False) -> None:
        """End every open change feed, cleanly or with a read error."""
        for database in self.databases.values():
            for stream in list(database.streams):
                stream.drop(broken)

    # --- request handling ---

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if self._credentials is not None:
            if request.headers.get("Authorization") != self._credentials:
                return _error(401, "unauthorized", "Name or password is incorrect.")

        raw_path = request.url.raw_path.decode().split("?", 1)[0]
        segments = [unquote(s) for s in raw_path.strip("/").split("/") if s]
        params = dict(request.url.params)
        await request.aread()
        body = json.loads(request.content) if request.content else None
        method = request.method

        if not segments:
            return httpx.Response(200, json={"couchdb": "Welcome", "version": "in-memory"})
        if segments == ["_all_dbs"]:
            return httpx.Response(200, json=sorted(self.databases))

        name, rest = segments[0], segments[1:]
        if not rest:
            return self._database_request(method, name)

        database = self.databases.get(name)
        if database is None:
            return _error(404, "not_found", "Database does not exist.")

        if rest == ["_changes"]:
            return self._changes(database, params, body)
        if rest[0] == "_design":
            if len(rest) == 4 and rest[2] == "_view":
                return self._view(database, f"_design/{rest[1]}", rest[3], params)
            if len(rest) != 2:
                return _error(400, "bad_request", "Unsupported design path")
            doc_id = f"_design/{rest[1]}"
        elif len(rest) == 1:
            doc_id = rest[0]
        else:
            return _error(400, "bad_request", "Unsupported path")

        if method == "GET":
            return self._get_document(database, doc_id)
        if method == "PUT":
            return self._put_document(database, doc_id, body or {}, params)
        if method == "DELETE":
            return self._delete_document(database, doc_id, params)
        return _error(405, "method_not_allowed", f"Only GET,PUT,DELETE allowed for {doc_id}")

    def _database_request(self, method: str, name: str) -> httpx.Response:
        database = self.databases.get(name)
        if method == "PUT":
            if not DATABASE_NAME.match(name):
                return _error(400, "illegal_database_name", f"Name: '{name}'.")
            if database is not None:
                return _error(412, "file_exists", "The database could not be created.")
            self.databases[name] = InMemoryDatabase(name)
            return httpx.Response(201, json={"ok": True})
        if method == "DELETE":
            if database is None:
                return _error(404, "not_found", "Database does not exist.")
            for stream in list(database.streams):
                stream.drop()
            del self.databases[name]
            return httpx.Response(200, json={"ok": True})
        if method in ("GET", "HEAD"):
            if database is None:
                if method == "HEAD":
                    return httpx.Response(404)
                return _error(404, "not_found", "Database does not exist.")
            if method == "HEAD":
                return httpx.Response(200)
            return httpx.Response(200, json=database.info())
        return _error(405, "method_not_allowed", "Only DELETE,GET,HEAD,PUT allowed")

    def _get_document(self, database: InMemoryDatabase, doc_id: str) -> httpx.Response:
        document = database.documents.get(doc_id)
        if document is None:
            return _error(404, "not_found", "missing")
        if document.deleted:
            return _error(404, "not_found", "deleted")
        return httpx.Response(200, json=document.to_json())

    def _put_document(
        self, database: InMemoryDatabase, doc_id: str, body: dict[str, Any], params: dict[str, str]
    ) -> httpx.Response:
        bad = sorted(k for k in body if k.startswith("_") and k not in SPECIAL_MEMBERS)
        if bad:
            return _error(400, "doc_validation", f"Bad special document member: {bad[0]}")

        rev = params.get("rev") or body.get("_rev")
        current = database.documents.get(doc_id)
        if current is not None and not current.deleted:
            if rev != current.rev:
                return _error(409, "conflict", "Document update conflict.")
        elif rev is not None and (current is None or rev != current.rev):
            return _error(409, "conflict", "Document update conflict.")

        content = {k: v for k, v in body.items() if not k.startswith("_")}
        stored = database.write(doc_id, content)
        if params.get("batch") == "ok":
            return httpx.Response(202, json={"ok": True, "id": doc_id})
        return httpx.Response(201, json={"ok": True, "id": doc_id, "rev": stored.rev})

    def _delete_document(
        self, database: InMemoryDatabase, doc_id: str, params: dict[str, str]
    ) -> httpx.Response:
        current = database.documents.get(doc_id)
        if current is None:
            return _error(404, "not_found", "missing")
        if current.deleted:
            return _error(404, "not_found", "deleted")
        rev = params.get("rev")
        if rev is None:
            return _error(400, "bad_request", "Document rev must be specified")
        if rev != current.rev:
            return _error(409, "conflict", "Document update conflict.")

        stored = database.write(doc_id, {}, deleted=True)
        if params.get("batch") == "ok":
            return httpx.Response(202, json={"ok": True, "id": doc_id})
        return httpx.Response(200, json={"ok": True, "id": doc_id, "rev": stored.rev})

    def _changes(
        self, database: InMemoryDatabase, params: dict[str, str], body: dict[str, Any] | None
    ) -> httpx.Response:
        self.changes_requests.append(params)
        if self._changes_failures:
            status = self._changes_failures.pop(0)
            logger.debug("Injected change feed failure", extra={"db": database.name, "status": status})
            return _error(status, "injected", f"Injected failure {status}")
        if params.get("feed") != "continuous":
            return _error(400, "bad_request", "Only continuous feeds are supported")

        since = params.get("since")
        since_seq = database.update_seq if since == "now" else _seq_number(since)
        doc_ids = selector = None
        if params.get("filter") == "_doc_ids":
            doc_ids = (body or {}).get("doc_ids", [])
        elif params.get("filter") == "_selector":
            selector = (body or {}).get("selector", {})
        elif params.get("filter"):
            return _error(404, "not_found", f"missing filter {params['filter']}")

        stream = ChangesStream(
            self,
            database,
            since=since_seq,
            include_docs=params.get("include_docs") == "true",
            heartbeat_ms=int(params["heartbeat"]) if "heartbeat" in params else None,
            timeout_ms=int(params["timeout"]) if "timeout" in params else None,
            doc_ids=doc_ids,
            selector=selector,
        )
        return httpx.Response(200, stream=stream)

    def _view(
        self, database: InMemoryDatabase, design_id: str, view_name: str, params: dict[str, str]
    ) -> httpx.Response:
        design = database.documents.get(design_id)
        if design is None or design.deleted:
            return _error(404, "not_found", "missing")
        view = (design.body.get("views") or {}).get(view_name)
        if view is None:
            return _error(404, "not_found", "missing_named_view")
        function = self.map_functions.get(view["map"])
        if function is None:
            return _error(500, "os_process_error", f"No map function registered for {view['map']!r}")

        rows = []
        for document in database.live_documents():
            for key, value in function(document.to_json()):
                rows.append({"id": document.id, "key": key, "value": value})
        rows.sort(key=lambda row: (collation_key(row["key"]), row["id"]))
        total_rows = len(rows)

        def decoded(name: str) -> Any:
            return json.loads(params[name])

        if "key" in params:
            rows = [row for row in rows if row["key"] == decoded("key")]
        if "keys" in params:
            wanted = decoded("keys")
            rows = [row for key in wanted for row in rows if row["key"] == key]

        # With descending=true the start key is the high end of the range
        descending = params.get("descending") == "true"
        direction = -1 if descending else 1
        if descending:
            rows.reverse()

        def position(key: Any, bound: Any) -> int:
            a, b = collation_key(key), collation_key(bound)
            return direction * ((a > b) - (a < b))

        if "start_key" in params:
            start = decoded("start_key")
            rows = [r for r in rows if position(r["key"], start) >= 0]
        if "end_key" in params:
            end = decoded("end_key")
            inclusive = params.get("inclusive_end", "true") == "true"
            rows = [
                r for r in rows if position(r["key"], end) < 0 or (inclusive and position(r["key"], end) == 0)
            ]

        reduce_source = view.get("reduce")
        if reduce_source and params.get("reduce", "true") == "true":
            return httpx.Response(200, json={"rows": self._reduce(rows, reduce_source, params)})

        offset = int(params.get("skip", 0))
        rows = rows[offset:]
        if "limit" in params:
            rows = rows[: int(params["limit"])]
        if params.get("include_docs") == "true":
            for row in rows:
                row["doc"] = database.documents[row["id"]].to_json()
        return httpx.Response(200, json={"total_rows": total_rows, "offset": offset, "rows": rows})

    def _reduce(
        self, rows: list[dict[str, Any]], source: str, params: dict[str, str]
    ) -> list[dict[str, Any]]:
        def reduce(values: list[Any]) -> Any:
            if source == "_count":
                return len(values)
            if source == "_sum":
                return sum(values)
            raise ValueError(f"Only _count and _sum reduce functions are supported, got {source!r}")

        if params.get("group") != "true":
            return [{"key": None, "value": reduce([row["value"] for row in rows])}]

        grouped: dict[str, tuple[Any, list[Any]]] = {}
        for row in rows:
            marker = json.dumps(row["key"], sort_keys=True)
            grouped.setdefault(marker, (row["key"], []))[1].append(row["value"])
        return [{"key": key, "value": reduce(values)} for key, values in grouped.values()]
