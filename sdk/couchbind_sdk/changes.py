"""
Continuous change feed consumer for the couchbind SDK.

Opens one long-lived ``_changes?feed=continuous`` stream, parses each line on
its own, decodes documents whose class discriminator matches a requested
entity type, and hands events to the caller in server order.

State machine:
    IDLE -> CONNECTING -> STREAMING
    STREAMING -> STREAMING      bad line: logged and skipped
    STREAMING -> RECONNECTING   stream ended or broke without cancellation
    RECONNECTING -> CONNECTING  after the retry policy's delay, resuming from last_seq
    any -> CLOSED               cancelled, retry policy exhausted, or feed refused

Invariants:
    - Events are delivered in the order the server sent them, one at a time
    - A line that fails to parse or decode never ends the feed
    - Reconnection resumes from the last sequence token seen, including
      tokens of events that were filtered out
    - since="now" is pinned to the database's update_seq before the first
      connection, so reconnecting never skips writes made in between
    - Cancellation always releases the underlying connection
    - 4xx when opening the feed is final; 5xx and connection errors are retried
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable, Sequence
from contextlib import aclosing
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from .codec import DocumentCodec
from .config import RetryPolicy
from .entity import Entity
from .errors import ChangesFeedError, DecodeError, TransportError
from .models import ChangeEvent, ChangesRequest
from .registry import MetadataResolver
from .transport import HttpTransport, path_for

logger = logging.getLogger(__name__)

Sink = Callable[[ChangeEvent], Awaitable[None] | None]


class FeedState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class _StreamInterrupted(Exception):
    """Stream failed in a way worth reconnecting for."""


class ChangesReader:
    """Async iterator over one database's change feed, reconnecting as needed.

    Attributes:
        database: Database being followed
        state: Current FeedState
        last_seq: Last sequence token received from the server
        reconnects: Number of reconnections performed so far
    """

    def __init__(
        self,
        feed: ChangesFeed,
        database: str,
        request: ChangesRequest,
        entities: Sequence[type[Entity]] | None,
    ) -> None:
        self.feed = feed
        self.database = database
        self.request = request
        self.entities = tuple(entities) if entities else None
        self.state = FeedState.IDLE
        self.last_seq: Any = request.since
        self.reconnects = 0
        self._attempt = 0
        self._iterator: AsyncGenerator[ChangeEvent, None] | None = None

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        if self._iterator is None:
            self._iterator = self._run()
        return self._iterator

    async def aclose(self) -> None:
        """Stop the feed and release its connection.

        Must be called from the consuming task, or once it stopped iterating.
        To stop a feed from another task, cancel the consumer (which is what
        ChangesSubscription.cancel does).

        Raises:
            RuntimeError: If another task is waiting on the feed
        """
        if self._iterator is not None:
            if self._iterator.ag_running:
                raise RuntimeError(
                    f"Change feed of '{self.database}' is being read by another task; "
                    "cancel that task to stop it"
                )
            await self._iterator.aclose()
        self.state = FeedState.CLOSED

    async def __aenter__(self) -> ChangesReader:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def _run(self) -> AsyncGenerator[ChangeEvent, None]:
        policy = self.feed.policy
        try:
            while True:
                self.state = FeedState.CONNECTING
                try:
                    async with aclosing(self._stream_once()) as events:
                        async for event in events:
                            yield event
                    reason = "stream ended"
                except (_StreamInterrupted, TransportError, httpx.TransportError) as e:
                    reason = str(e)

                self._attempt += 1
                attempt = self._attempt
                if not policy.allows(attempt):
                    raise ChangesFeedError(
                        f"Change feed of '{self.database}' gave up after "
                        f"{attempt - 1} reconnection attempts: {reason}",
                        database=self.database,
                        last_seq=self.last_seq,
                    )

                self.state = FeedState.RECONNECTING
                self.reconnects += 1
                delay = policy.delay(attempt)
                logger.info(
                    "Change feed reconnecting",
                    extra={
                        "database": self.database,
                        "attempt": attempt,
                        "delay": delay,
                        "since": self.last_seq,
                        "reason": reason,
                    },
                )
                await asyncio.sleep(delay)
        finally:
            self.state = FeedState.CLOSED
            logger.info(
                "Change feed closed", extra={"database": self.database, "last_seq": self.last_seq}
            )

    async def _stream_once(self) -> AsyncIterator[ChangeEvent]:
        """One connection: yields events until the server ends the stream."""
        transport = self.feed.transport
        if self.last_seq == "now":
            self.last_seq = await self._current_seq()
        request = self.request
        if request.heartbeat is None and request.timeout is None:
            request = request.model_copy(update={"heartbeat": self.feed.heartbeat_ms})

        body = request.body()
        method = "POST" if body is not None else "GET"
        params = request.query(since=self.last_seq)

        async with transport.stream_lines(
            method, path_for(self.database, "_changes"), params=params, json=body
        ) as stream:
            if stream.status != 200:
                text = await stream.read_text()
                if 400 <= stream.status < 500:
                    raise self._refused(stream.status, text)
                raise _StreamInterrupted(f"server answered {stream.status}")

            self.state = FeedState.STREAMING
            logger.info(
                "Change feed connected", extra={"database": self.database, "since": self.last_seq}
            )
            async for line in stream.lines:
                # Anything received, heartbeats included, proves the connection healthy
                self._attempt = 0
                event = self._parse(line)
                if event is not None:
                    yield event

    def _refused(self, status: int, body: str) -> ChangesFeedError:
        return ChangesFeedError(
            f"Change feed of '{self.database}' refused: {status} {body}",
            database=self.database,
            last_seq=self.last_seq,
            status=status,
            body=body,
        )

    async def _current_seq(self) -> Any:
        """Read the database's update_seq, so a reconnect never falls back to "now"."""
        response = await self.feed.transport.send("GET", path_for(self.database))
        if response.status != 200:
            if 400 <= response.status < 500:
                raise self._refused(response.status, response.text)
            raise _StreamInterrupted(f"server answered {response.status}")
        try:
            return json.loads(response.text)["update_seq"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise DecodeError(f"Database info has no update_seq: {e}", payload=response.text) from e

    def _parse(self, line: str) -> ChangeEvent | None:
        """Parse one feed line; None for heartbeats, end markers and skipped events."""
        line = line.strip()
        if not line:
            return None

        try:
            raw = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(
                "Skipping unparsable change line",
                extra={"database": self.database, "line": line[:500], "error": str(e)},
            )
            return None

        if isinstance(raw, dict) and "last_seq" in raw and "id" not in raw:
            self.last_seq = raw["last_seq"]
            return None

        try:
            event = ChangeEvent.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "Skipping malformed change event",
                extra={"database": self.database, "line": line[:500], "error": str(e)},
            )
            return None

        self.last_seq = event.seq
        return self._dispatchable(event)

    def _dispatchable(self, event: ChangeEvent) -> ChangeEvent | None:
        # Tombstones and doc-less events carry no discriminator to filter on
        if self.entities is None or event.deleted or event.doc is None:
            return event

        codec = self.feed.codec
        class_name = codec.class_name_of(event.doc)
        if class_name is None:
            return None
        entity_type = self.feed.resolver.resolve_class_name(class_name, among=self.entities)
        if entity_type is None:
            return None

        try:
            entity = codec.decode_document(entity_type, event.doc)
        except DecodeError as e:
            logger.warning(
                "Skipping undecodable change document",
                extra={"database": self.database, "id": event.id, "error": e.message},
            )
            return None
        return event.model_copy(update={"entity": entity})


class ChangesSubscription:
    """A running change feed delivering events to a sink.

    Example:
        >>> async with feed.subscribe("tasks", ChangesRequest(include_docs=True), [Task], print):
        ...     await asyncio.sleep(60)
    """

    def __init__(self, reader: ChangesReader, sink: Sink) -> None:
        self.reader = reader
        self.sink = sink
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> FeedState:
        return self.reader.state

    @property
    def last_seq(self) -> Any:
        return self.reader.last_seq

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self) -> ChangesSubscription:
        if self._task is not None:
            raise RuntimeError("Subscription already started")
        self._task = asyncio.create_task(self._deliver(), name=f"changes:{self.reader.database}")
        self._task.add_done_callback(self._log_outcome)
        return self

    async def _deliver(self) -> None:
        # Closing the reader releases the connection when the sink raises
        async with self.reader:
            async for event in self.reader:
                result = self.sink(event)
                if inspect.isawaitable(result):
                    await result

    def _log_outcome(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Change feed stopped",
                extra={"database": self.reader.database, "error": repr(error)},
            )

    async def cancel(self) -> None:
        """Stop the feed and wait until its connection is released.

        Safe to call while an event is being delivered, and more than once.
        """
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        await asyncio.wait([self._task])

    async def wait(self) -> None:
        """Wait for the feed to stop.

        Raises:
            ChangesFeedError: If the feed gave up
            Exception: Whatever the sink raised
        """
        if self._task is None:
            raise RuntimeError("Subscription not started")
        await asyncio.wait([self._task])
        if not self._task.cancelled() and self._task.exception() is not None:
            raise self._task.exception()

    async def __aenter__(self) -> ChangesSubscription:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.cancel()


class ChangesFeed:
    """Entry point for change feed consumption."""

    def __init__(
        self,
        transport: HttpTransport,
        resolver: MetadataResolver,
        codec: DocumentCodec,
        policy: RetryPolicy | None = None,
        heartbeat_ms: int = 10000,
    ) -> None:
        self.transport = transport
        self.resolver = resolver
        self.codec = codec
        self.policy = policy or RetryPolicy()
        self.heartbeat_ms = heartbeat_ms

    def events(
        self,
        db: str,
        request: ChangesRequest | None = None,
        entities: Sequence[type[Entity]] | None = None,
    ) -> ChangesReader:
        """Iterate over change events.

        Args:
            db: Database to follow
            request: Feed parameters (include_docs, since, filter...)
            entities: Only documents of these types are dispatched (decoded into
                `event.entity`); None dispatches every event undecoded

        Returns:
            An async iterable; stop iterating (or cancel the consuming task) to close
        """
        return ChangesReader(self, db, request or ChangesRequest(), entities)

    def subscribe(
        self,
        db: str,
        request: ChangesRequest | None,
        entities: Sequence[type[Entity]] | None,
        sink: Sink,
    ) -> ChangesSubscription:
        """Follow a feed in a background task, delivering each event to `sink`.

        `sink` may be a plain or an async callable; async sinks are awaited
        before the next event is read.
        """
        return ChangesSubscription(self.events(db, request, entities), sink).start()
