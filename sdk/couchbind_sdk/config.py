"""
Configuration for the couchbind SDK.

Uses pydantic-settings for environment variable loading. Every setting can
be given explicitly or through a COUCHBIND_* environment variable.

Invariants:
    - All settings have sensible defaults for a local CouchDB
    - The routing policy is fixed for the lifetime of a client
    - Secrets are never logged or exposed in error messages
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class DatabaseNaming(str, Enum):
    """How entity types are routed to databases."""

    # Each type goes to the database declared in its metadata
    PER_ENTITY = "per_entity"
    # Every type goes to Settings.database_name; the class discriminator tells them apart
    PREDEFINED = "predefined"


@dataclass(frozen=True)
class RetryPolicy:
    """Reconnection policy for the change feed.

    Attributes:
        max_retries: Consecutive failed connections tolerated before giving up
        initial_backoff: Delay before the first reconnection (seconds)
        max_backoff: Upper bound on any single delay (seconds)
        multiplier: Growth factor between consecutive delays
    """

    max_retries: int = 5
    initial_backoff: float = 0.5
    max_backoff: float = 30.0
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Delay before reconnection attempt number `attempt` (1-based)."""
        if attempt <= 0:
            return 0.0
        return min(self.initial_backoff * self.multiplier ** (attempt - 1), self.max_backoff)

    def allows(self, attempt: int) -> bool:
        return attempt <= self.max_retries


class Settings(BaseSettings):
    """Client configuration loaded from arguments or environment."""

    # Server connection
    scheme: str = Field(default="http", description="URL scheme of the CouchDB server")
    host: str = Field(default="localhost", description="CouchDB host")
    port: int = Field(default=5984, description="CouchDB port")
    admin_name: str = Field(default="admin", description="Admin user for basic auth")
    admin_password: SecretStr = Field(default=SecretStr(""), description="Admin password")
    request_timeout: float = Field(default=30.0, description="Timeout for request/response calls")

    # Routing
    database_naming: DatabaseNaming = Field(default=DatabaseNaming.PER_ENTITY)
    database_name: str | None = Field(
        default=None, description="Shared database when database_naming is predefined"
    )

    # Reject unknown reserved fields in server envelopes
    strict_system_json: bool = Field(default=False)

    # Change feed
    changes_heartbeat_ms: int = Field(default=10000, description="Server heartbeat interval")
    changes_max_retries: int = Field(default=5, ge=0)
    changes_initial_backoff: float = Field(default=0.5, ge=0)
    changes_max_backoff: float = Field(default=30.0, ge=0)
    changes_backoff_multiplier: float = Field(default=2.0, ge=1)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or text")

    model_config = {"env_prefix": "COUCHBIND_"}

    @model_validator(mode="after")
    def _check_routing(self) -> Settings:
        if self.database_naming == DatabaseNaming.PREDEFINED and not self.database_name:
            raise ValueError("database_name is required when database_naming is 'predefined'")
        return self

    @property
    def base_url(self) -> str:
        """Server root URL."""
        return f"{self.scheme}://{self.host}:{self.port}"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.changes_max_retries,
            initial_backoff=self.changes_initial_backoff,
            max_backoff=self.changes_max_backoff,
            multiplier=self.changes_backoff_multiplier,
        )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Client configuration loaded",
            extra={
                "base_url": self.base_url,
                "admin_name": self.admin_name,
                "database_naming": self.database_naming.value,
                "database_name": self.database_name,
                "strict_system_json": self.strict_system_json,
                "changes_max_retries": self.changes_max_retries,
            },
        )
