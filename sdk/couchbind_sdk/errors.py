"""
Error types for the couchbind SDK.

This module defines all exception types raised by the SDK:
- CouchBindError: Base exception
- ConfigurationError: Entity type cannot be routed (missing metadata, bad registry use)
- PreconditionError: Caller bug detected before any network call
- DocumentError / DatabaseError: Server rejected the request
- InvariantViolation: Server reported success but broke the protocol
- UnsupportedStatusError: Status code the client does not classify
- DecodeError: Payload does not match the requested type
- TransportError: Connection-level failure
- ChangesFeedError: Change feed gave up

Invariants:
    - All errors inherit from CouchBindError
    - Server-side errors carry the HTTP status and the raw body
    - Not-found is never an exception on read paths
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CouchBindError(Exception):
    """Base exception for all couchbind SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "COUCHBIND_ERROR"
        self.details = details or {}


class ConfigurationError(CouchBindError):
    """Client or entity declaration is unusable.

    Fatal: the caller has to fix the declaration, retrying never helps.
    """

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class MissingMetadataError(ConfigurationError):
    """Entity type was never registered, so it has no database or class name."""

    def __init__(self, type_name: str) -> None:
        super().__init__(
            f"No entity metadata for {type_name}. "
            "Register every entity type with @entity_metadata or EntityRegistry.register",
            type_name=type_name,
        )
        self.type_name = type_name


class RegistryFrozenError(ConfigurationError):
    """Registry is frozen and cannot be modified."""


class DuplicateRegistrationError(ConfigurationError):
    """Entity type or class name is already registered."""


class PreconditionError(CouchBindError):
    """Entity is not in a state the requested operation accepts.

    Always raised before any request is sent.
    """

    def __init__(self, message: str, entity: Any = None) -> None:
        super().__init__(
            message,
            code="PRECONDITION_FAILED",
            details={"entity": repr(entity)} if entity is not None else None,
        )
        self.entity = entity


class IdIsBlankError(PreconditionError):
    def __init__(self, entity: Any) -> None:
        super().__init__(f"Entity id is blank: {entity!r}", entity)


class RevisionIsNotNoneError(PreconditionError):
    def __init__(self, entity: Any) -> None:
        super().__init__(f"Insert requires an entity without revision: {entity!r}", entity)


class RevisionIsNoneError(PreconditionError):
    def __init__(self, entity: Any) -> None:
        super().__init__(f"Operation requires an entity revision: {entity!r}", entity)


class StatusError(CouchBindError):
    """Error tied to an HTTP response.

    Attributes:
        status: HTTP status code
        body: Raw response body
    """

    def __init__(self, message: str, status: int, body: str, code: str) -> None:
        super().__init__(
            f"{message}: {status} {body}".rstrip(),
            code=code,
            details={"status": status, "body": body},
        )
        self.status = status
        self.body = body


class DocumentError(StatusError):
    """Server rejected a document request (bad request, auth, conflict)."""

    def __init__(self, status: int, body: str, message: str = "Document request rejected") -> None:
        super().__init__(message, status, body, code="DOCUMENT_ERROR")


class DatabaseError(StatusError):
    """Server rejected a database administration request."""

    def __init__(self, status: int, body: str, message: str = "Database request rejected") -> None:
        super().__init__(message, status, body, code="DATABASE_ERROR")


class UnsupportedStatusError(StatusError):
    """Status code outside the set the operation knows how to interpret."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__("Unsupported status code", status, body, code="UNSUPPORTED_STATUS")


class InvariantViolation(CouchBindError):
    """Server reported success but broke the protocol contract."""

    def __init__(self, message: str, body: str | None = None) -> None:
        super().__init__(message, code="INVARIANT_VIOLATION", details={"body": body})
        self.body = body


class ResponseRevisionMissingError(InvariantViolation):
    """Successful write response without a revision."""

    def __init__(self, body: str) -> None:
        super().__init__(f"Write succeeded but the response has no revision: {body}", body)


class DecodeError(CouchBindError):
    """Payload does not match the shape of the requested type.

    Attributes:
        payload: The offending JSON value
    """

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message, code="DECODE_ERROR", details={"payload": payload})
        self.payload = payload


class TransportError(CouchBindError):
    """Failed to talk to the server (refused, reset, timed out).

    Attributes:
        url: Base URL of the server
    """

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message, code="TRANSPORT_ERROR", details={"url": url})
        self.url = url


class ChangesFeedError(CouchBindError):
    """Change feed stopped without being cancelled.

    Raised when the retry policy is exhausted or the server refuses the
    feed request outright.

    Attributes:
        database: Database the feed was reading
        last_seq: Last sequence token observed before giving up
        status: HTTP status, when the feed was refused by the server
    """

    def __init__(
        self,
        message: str,
        database: str,
        last_seq: Any = None,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CHANGES_FEED_ERROR",
            details={"database": database, "last_seq": last_seq, "status": status, "body": body},
        )
        self.database = database
        self.last_seq = last_seq
        self.status = status
        self.body = body
