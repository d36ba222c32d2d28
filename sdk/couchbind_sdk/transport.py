"""
HTTP transport for the couchbind SDK.

One shared httpx.AsyncClient per client instance. Credentials are attached
here, uniformly, never per call.

Invariants:
    - Every request carries basic auth built from the configured admin credentials
    - Streams are always closed when the caller leaves the context (normally,
      on error, or on cancellation)
    - Connection-level failures surface as TransportError
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from .config import Settings
from .errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Response:
    """Status and body of a completed request."""

    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass
class LineStream:
    """Status of an opened stream and its lines.

    The body is only readable while the stream context is open.
    """

    status: int
    lines: AsyncIterator[str]

    async def read_text(self) -> str:
        return "\n".join([line async for line in self.lines])


def path_for(*segments: str) -> str:
    """Build a request path, percent-encoding each segment.

    ``_design/<id>`` is kept as one segment with a literal slash.
    """
    parts = []
    for segment in segments:
        if segment.startswith("_design/"):
            parts.append("_design/" + quote(segment[len("_design/") :], safe=""))
        else:
            parts.append(quote(segment, safe=""))
    return "/" + "/".join(parts)


class HttpTransport:
    """Async HTTP transport.

    Example:
        >>> async with HttpTransport(Settings()) as transport:
        ...     response = await transport.send("GET", "/_all_dbs")
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            settings: Client settings (base URL, credentials, timeout)
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests
        """
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            auth=httpx.BasicAuth(settings.admin_name, settings.admin_password.get_secret_value()),
            timeout=settings.request_timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def send(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Response:
        """Send a request and read the full body.

        Raises:
            TransportError: If the server cannot be reached
        """
        try:
            response = await self._client.request(
                method, path, params=params or None, json=json, headers=headers
            )
        except httpx.TransportError as e:
            raise TransportError(
                f"{method} {path} failed: {e!r}", url=self.settings.base_url
            ) from e

        logger.debug(
            "Request completed",
            extra={"method": method, "path": path, "status": response.status_code},
        )
        return Response(status=response.status_code, text=response.text)

    @asynccontextmanager
    async def stream_lines(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> AsyncIterator[LineStream]:
        """Open a long-lived streaming request.

        The read timeout is disabled; the server keeps the connection alive
        with heartbeats.

        Raises:
            TransportError: If the stream cannot be opened
        """
        timeout = httpx.Timeout(self.settings.request_timeout, read=None)
        request = self._client.build_request(
            method, path, params=params or None, json=json, timeout=timeout
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as e:
            raise TransportError(
                f"{method} {path} stream failed: {e!r}", url=self.settings.base_url
            ) from e

        logger.debug(
            "Stream opened",
            extra={"method": method, "path": path, "status": response.status_code},
        )
        try:
            yield LineStream(status=response.status_code, lines=response.aiter_lines())
        finally:
            await response.aclose()
