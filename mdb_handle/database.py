"""
Database handle.

A Database is a lightweight handle for one database on a shared
Connection. It runs administrative commands, lists collections, resolves
DBRefs, and builds the collection and GridFS objects bound to it.

Each operation can be called blocking or with a ``callback=`` keyword.
Both forms run the same coroutine, so requests are built and replies are
classified the same way whichever style is used:

    doc = db.command("ping")

    def done(db, err, doc):
        ...

    db.command("ping", callback=done)

This module is part of MDB_HANDLE - MongoDB database handles.
"""

import time
import weakref
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from bson.dbref import DBRef
from bson.son import SON

from .collection import Collection
from .constants import (
    COMMAND_COLLECTION,
    DEFAULT_GRIDFS_PREFIX,
    LISTING_NAMESPACES,
    SYSTEM_INDEXES,
    SYSTEM_NAMESPACES,
)
from .exceptions import CommandFailed, TransportError
from .gridfs import GridFS
from .observability import get_logger as get_contextual_logger
from .observability import record_operation
from .registry import release

if TYPE_CHECKING:
    from .connection import Callback, Connection


class Database:
    """
    Handle for a single database.

    The handle keeps its connection alive. The connection only holds a weak
    reference back (``Connection.db_register``), which is dropped when the
    handle is collected.

    Attributes:
        name: Database name
        log: Logger bound to ``db_name``
    """

    def __init__(self, connection: "Connection", name: str) -> None:
        self._connection: "Connection | weakref.ref[Connection]" = connection
        self.name = name
        self.log = get_contextual_logger(__name__, db_name=name)

    def __del__(self) -> None:
        release(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    @property
    def connection(self) -> "Connection | None":
        """The owning connection (None once released and collected)."""
        connection = self._connection
        if isinstance(connection, weakref.ReferenceType):
            return connection()
        return connection

    def build_write_concern(self) -> dict[str, Any]:
        """
        Build a write concern from the connection's current durability
        settings.
        """
        connection = self.connection
        return {
            "j": bool(connection.j),
            "w": connection.w,
            "wtimeout": connection.wtimeout,
        }

    def collection(self, name: str) -> Collection:
        """Build a Collection bound to this database. No I/O."""
        return Collection(self, name)

    def gridfs(self, prefix: str = DEFAULT_GRIDFS_PREFIX) -> GridFS:
        """Build a GridFS store bound to this database. No I/O."""
        return GridFS(self, prefix=prefix)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @staticmethod
    def _build_command(command: str | Mapping[str, Any], **kwargs: Any) -> Mapping[str, Any]:
        """
        Normalize a command.

        A name becomes ``SON([(name, 1), *kwargs])``; a mapping is used as is,
        with ``kwargs`` appended to a copy.
        """
        if isinstance(command, Mapping):
            if not kwargs:
                return command
            doc = SON(command)
        else:
            doc = SON([(command, 1)])
        doc.update(kwargs)
        return doc

    def command(
        self,
        command: str | Mapping[str, Any],
        callback: "Callback | None" = None,
        **kwargs: Any,
    ) -> Any:
        """
        Run a command against this database.

        Args:
            command: Command document, or a command name
            callback: Called as ``callback(db, err, doc)``; omit to block
            **kwargs: Extra command fields, appended after the name

        Returns:
            The reply document (blocking), or the scheduled future

        Raises:
            CommandFailed: If the server reports a failure (blocking only)
            TransportError: If the connection fails (blocking only)

        Example:
            db.command("getLastError", w=2)
            db.command(SON([("text", "foo.bar"), ("search", "test")]))
        """
        return self.connection.run(
            self.command_async(command, **kwargs), callback, self
        )

    async def command_async(
        self, command: str | Mapping[str, Any], **kwargs: Any
    ) -> dict[str, Any]:
        """
        Awaitable form of ``command()`` for code already running on the
        connection's event loop.
        """
        connection = self.connection
        command = self._build_command(command, **kwargs)
        command_name = next(iter(command), None)
        namespace = f"{self.name}.{COMMAND_COLLECTION}"

        self.log.debug(f"Running command {command_name!r} on {self.name}")
        start_time = time.time()
        success = False
        try:
            reply = await connection.query_async(namespace, {}, 0, -1, command, {})
            doc = reply.first
            err = connection.protocol.command_error(doc)
            if err:
                raise err
            success = True
            return doc
        except CommandFailed as e:
            self.log.warning(
                f"Command {command_name!r} failed: {e.message}", extra={"code": e.code}
            )
            raise
        except TransportError:
            self.log.error(f"Command {command_name!r} aborted by transport failure")
            raise
        finally:
            duration_ms = (time.time() - start_time) * 1000
            record_operation("database.command", duration_ms, success, command=command_name)

    def stats(self, callback: "Callback | None" = None) -> Any:
        """Get database statistics (``dbstats`` command)."""
        return self.command(SON([("dbstats", 1)]), callback=callback)

    # ------------------------------------------------------------------
    # Collection listing
    # ------------------------------------------------------------------

    def collection_names(self, callback: "Callback | None" = None) -> Any:
        """
        Names of all collections in this database, in server order.

        The listing strategy comes from ``ConnectionConfig.collection_listing``.

        Args:
            callback: Called as ``callback(db, err, names)``; omit to block
        """
        return self.connection.run(self._collection_names(), callback, self)

    async def _collection_names(self) -> list[str]:
        if self.connection.config.collection_listing == LISTING_NAMESPACES:
            names = await self._names_from_namespaces()
        else:
            names = await self._names_from_command()
        return [name for name in names if name != SYSTEM_INDEXES]

    async def _names_from_command(self) -> list[str]:
        doc = await self.command_async("listCollections")
        cursor = doc["cursor"]
        names = [entry["name"] for entry in cursor.get("firstBatch", [])]

        # ns is "<db>.$cmd.listCollections"
        collection = cursor.get("ns", "").partition(".")[2]
        cursor_id = cursor.get("id")
        while cursor_id:
            doc = await self.command_async(
                SON([("getMore", cursor_id), ("collection", collection)])
            )
            cursor = doc["cursor"]
            names.extend(entry["name"] for entry in cursor.get("nextBatch", []))
            cursor_id = cursor.get("id")
        return names

    async def _names_from_namespaces(self) -> list[str]:
        reply = await self.connection.query_async(
            f"{self.name}.{SYSTEM_NAMESPACES}", {}, 0, 0, {}, None
        )
        prefix = f"{self.name}."
        names = [
            doc["name"][len(prefix) :]
            for doc in reply.docs
            if doc.get("name", "").startswith(prefix)
        ]
        # Index namespaces look like "<collection>.$<index>"
        return [name for name in names if "$" not in name]

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def dereference(
        self, dbref: DBRef | Mapping[str, Any], callback: "Callback | None" = None
    ) -> Any:
        """
        Resolve a database reference.

        Args:
            dbref: A ``DBRef`` or a mapping with ``$ref`` and ``$id``
            callback: Called as ``callback(db, err, doc)``; omit to block

        Returns:
            The referenced document, or None if it does not exist
        """
        if isinstance(dbref, DBRef):
            collection_name, doc_id, db_name = dbref.collection, dbref.id, dbref.database
        else:
            collection_name, doc_id, db_name = dbref["$ref"], dbref["$id"], dbref.get("$db")

        db = self if not db_name or db_name == self.name else self.connection.db(db_name)
        collection = db.collection(collection_name)

        # Always match on _id: None or a subdocument id is not a filter
        query = {"_id": doc_id}
        if callback is None:
            return collection.find_one(query)
        return collection.find_one(
            query, callback=lambda _collection, err, doc: callback(self, err, doc)
        )
