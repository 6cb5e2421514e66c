"""
MDB_HANDLE - MongoDB database handles

Per-database handles on a shared asyncio MongoDB connection, callable
blocking or with callbacks.
"""

from .collection import Collection
from .config import ConnectionConfig
from .connection import Connection
from .database import Database
from .exceptions import (
    CommandFailed,
    ConfigurationError,
    MDBHandleError,
    TransportError,
)
from .gridfs import GridFS
from .protocol import Protocol, Reply

__version__ = "0.1.0"

__all__ = [
    # Core
    "Connection",
    "ConnectionConfig",
    "Database",
    # Collaborators
    "Collection",
    "GridFS",
    "Protocol",
    "Reply",
    # Errors
    "MDBHandleError",
    "TransportError",
    "CommandFailed",
    "ConfigurationError",
]
