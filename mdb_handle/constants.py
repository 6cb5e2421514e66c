"""
Constants for MDB_HANDLE.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

from typing import Final

# ============================================================================
# CONNECTION CONSTANTS
# ============================================================================

DEFAULT_MONGO_URI: Final[str] = "mongodb://localhost:27017"
"""Connection URI used when neither configuration nor environment provide one."""

DEFAULT_DB_NAME: Final[str] = "admin"
"""Database used when the URI carries no database path."""

# Connection pool defaults
DEFAULT_MAX_POOL_SIZE: Final[int] = 10
"""Default maximum MongoDB connection pool size."""

DEFAULT_MIN_POOL_SIZE: Final[int] = 1
"""Default minimum MongoDB connection pool size."""

DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 5000
"""Default server selection timeout in milliseconds."""

DEFAULT_MAX_IDLE_TIME_MS: Final[int] = 45000
"""Default maximum idle time before closing connections (milliseconds)."""

APP_NAME: Final[str] = "MDB_HANDLE"
"""Application name reported to the server."""

# ============================================================================
# WRITE CONCERN DEFAULTS
# ============================================================================

DEFAULT_JOURNAL: Final[bool] = False
"""Wait for the journal commit before acknowledging writes."""

DEFAULT_W: Final[int] = 1
"""Number of members that must acknowledge a write."""

DEFAULT_WTIMEOUT_MS: Final[int] = 1000
"""Write concern timeout in milliseconds."""

# ============================================================================
# NAMESPACE CONSTANTS
# ============================================================================

COMMAND_COLLECTION: Final[str] = "$cmd"
"""Pseudo-collection commands are sent to."""

SYSTEM_INDEXES: Final[str] = "system.indexes"
"""Internal pseudo-collection hidden from collection listings."""

SYSTEM_NAMESPACES: Final[str] = "system.namespaces"
"""Namespace listing scanned by the legacy collection listing strategy."""

DEFAULT_GRIDFS_PREFIX: Final[str] = "fs"
"""Collection prefix for GridFS files and chunks."""

# Collection listing strategies
LISTING_COMMAND: Final[str] = "command"
"""List collections with the listCollections command."""

LISTING_NAMESPACES: Final[str] = "namespaces"
"""List collections by scanning system.namespaces (servers before 3.0)."""

COLLECTION_LISTING_STRATEGIES: Final[tuple[str, ...]] = (
    LISTING_COMMAND,
    LISTING_NAMESPACES,
)
"""Valid values for the collection listing configuration."""
