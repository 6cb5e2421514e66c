"""
Configuration management for MDB_HANDLE.

Connection settings are validated with Pydantic. They can be passed
directly or picked up from environment variables through
``ConnectionConfig.from_env()``.
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from .constants import (
    DEFAULT_JOURNAL,
    DEFAULT_MAX_POOL_SIZE,
    DEFAULT_MIN_POOL_SIZE,
    DEFAULT_MONGO_URI,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
    DEFAULT_W,
    DEFAULT_WTIMEOUT_MS,
    LISTING_COMMAND,
)
from .exceptions import ConfigurationError

# Environment variable for each settings field
ENV_VARS: dict[str, str] = {
    "uri": "MONGO_URI",
    "default_db": "DB_NAME",
    "j": "MONGO_JOURNAL",
    "w": "MONGO_W",
    "wtimeout": "MONGO_WTIMEOUT_MS",
    "max_pool_size": "MONGO_MAX_POOL_SIZE",
    "min_pool_size": "MONGO_MIN_POOL_SIZE",
    "server_selection_timeout_ms": "MONGO_SERVER_SELECTION_TIMEOUT_MS",
    "collection_listing": "MONGO_COLLECTION_LISTING",
}


def _parse_w(value: str) -> int | str:
    """``w`` is a member count or a tag set name such as ``majority``."""
    return int(value) if value.isdigit() else value


class ConnectionConfig(BaseModel):
    """
    Settings shared by a connection and every database handle built from it.

    ``j``, ``w`` and ``wtimeout`` are only the initial durability settings;
    the connection copies them onto mutable attributes so they can be
    changed at runtime.

    Usage:
        config = ConnectionConfig(uri="mongodb://localhost:27017/test", w=2)
        config = ConnectionConfig.from_env()
    """

    uri: str = Field(DEFAULT_MONGO_URI, description="MongoDB connection URI")
    default_db: str | None = Field(
        None, min_length=1, description="Database used by Connection.db() without a name"
    )
    j: bool = Field(DEFAULT_JOURNAL, description="Wait for journal commit on writes")
    w: int | str = Field(DEFAULT_W, description="Write acknowledgement count or tag")
    wtimeout: int = Field(
        DEFAULT_WTIMEOUT_MS, ge=0, description="Write concern timeout in milliseconds"
    )
    max_pool_size: int = Field(DEFAULT_MAX_POOL_SIZE, ge=1)
    min_pool_size: int = Field(DEFAULT_MIN_POOL_SIZE, ge=1)
    server_selection_timeout_ms: int = Field(DEFAULT_SERVER_SELECTION_TIMEOUT_MS, ge=1000)
    collection_listing: Literal["command", "namespaces"] = Field(
        LISTING_COMMAND, description="Strategy used by Database.collection_names()"
    )

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "ConnectionConfig":
        if self.min_pool_size > self.max_pool_size:
            raise ValueError(
                f"min_pool_size ({self.min_pool_size}) cannot be greater than "
                f"max_pool_size ({self.max_pool_size})"
            )
        return self

    @classmethod
    def load(cls, **values: Any) -> "ConnectionConfig":
        """
        Build a validated configuration.

        Raises:
            ConfigurationError: If any value is invalid
        """
        try:
            return cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            key = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ConfigurationError(
                f"Invalid connection configuration: {first.get('msg')}",
                config_key=key,
                config_value=first.get("input") if key else None,
            ) from e

    @classmethod
    def from_env(cls, **overrides: Any) -> "ConnectionConfig":
        """
        Build a configuration from environment variables.

        Explicit ``overrides`` that are not None win over the environment.

        Raises:
            ConfigurationError: If any value is invalid
        """
        values: dict[str, Any] = {}
        for field, env_var in ENV_VARS.items():
            raw = os.getenv(env_var)
            if raw is None or raw == "":
                continue
            if field == "j":
                values[field] = raw.lower() in ("1", "true", "yes")
            elif field == "w":
                values[field] = _parse_w(raw)
            else:
                values[field] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.load(**values)
