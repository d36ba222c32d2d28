"""
couchbind - Typed async client for CouchDB.

This SDK maps pydantic models onto CouchDB documents:
- Entity definitions (Entity, DesignDocument, View)
- Entity registry for database routing and class discriminators
- CouchClient for documents, design documents, views and databases
- Continuous change feeds with typed dispatch and reconnection

Example:
    >>> from couchbind_sdk import CouchClient, Entity, entity_metadata
    >>>
    >>> @entity_metadata()
    ... class Task(Entity):
    ...     title: str
    ...     done: bool = False
    >>>
    >>> async with CouchClient() as couch:
    ...     await couch.db.create_for_entities_if_not_exists([Task])
    ...     result = await couch.doc.insert(Task(id="t1", title="Write docs"))
    ...     task = await couch.doc.get(Task, "t1")

Invariants:
    - Entities are immutable; writes return a copy carrying the new revision
    - Every stored document carries its class discriminator
    - Entity types resolve to exactly one database

Version: 1.0.0
"""

__version__ = "1.0.0"

from .changes import ChangesFeed, ChangesReader, ChangesSubscription, FeedState
from .client import CouchClient
from .codec import DocumentCodec, merge, split
from .config import DatabaseNaming, RetryPolicy, Settings
from .documents import DocumentKind, PutResult
from .entity import DesignDocument, Entity, View
from .errors import (
    ChangesFeedError,
    ConfigurationError,
    CouchBindError,
    DatabaseError,
    DecodeError,
    DocumentError,
    IdIsBlankError,
    InvariantViolation,
    MissingMetadataError,
    PreconditionError,
    ResponseRevisionMissingError,
    RevisionIsNoneError,
    RevisionIsNotNoneError,
    StatusError,
    TransportError,
    UnsupportedStatusError,
)
from .models import (
    CLASS_FIELD,
    ChangeEvent,
    ChangesRequest,
    DatabaseInfo,
    DeleteResponse,
    DocumentEnvelope,
    GetQueryParameters,
    PutQueryParameters,
    PutResponse,
    ViewRequest,
    ViewResult,
    ViewRow,
)
from .registry import (
    EntityRegistry,
    MetadataResolver,
    entity_metadata,
    get_registry,
)

__all__ = [
    # Version
    "__version__",
    # Entities
    "Entity",
    "DesignDocument",
    "View",
    # Registry
    "EntityRegistry",
    "MetadataResolver",
    "entity_metadata",
    "get_registry",
    # Client
    "CouchClient",
    "Settings",
    "DatabaseNaming",
    "RetryPolicy",
    "DocumentKind",
    "PutResult",
    # Codec
    "CLASS_FIELD",
    "DocumentCodec",
    "split",
    "merge",
    # Wire models
    "DocumentEnvelope",
    "PutResponse",
    "DeleteResponse",
    "DatabaseInfo",
    "GetQueryParameters",
    "PutQueryParameters",
    "ViewRequest",
    "ViewResult",
    "ViewRow",
    "ChangesRequest",
    "ChangeEvent",
    # Change feed
    "ChangesFeed",
    "ChangesReader",
    "ChangesSubscription",
    "FeedState",
    # Errors
    "CouchBindError",
    "ConfigurationError",
    "MissingMetadataError",
    "PreconditionError",
    "IdIsBlankError",
    "RevisionIsNotNoneError",
    "RevisionIsNoneError",
    "StatusError",
    "DocumentError",
    "DatabaseError",
    "UnsupportedStatusError",
    "InvariantViolation",
    "ResponseRevisionMissingError",
    "DecodeError",
    "TransportError",
    "ChangesFeedError",
]
