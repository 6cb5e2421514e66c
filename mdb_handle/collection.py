"""
Collection bound to a database handle.

Supports the basic CRUD operations handles and applications need. Like
the database handle, every operation blocks unless a ``callback=`` is
given, in which case it is called as ``callback(collection, err, result)``.

Usage:
    users = db.collection("users")
    oid = users.insert({"name": "Ada"})
    doc = users.find_one(oid)
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from bson.objectid import ObjectId
from bson.son import SON

from .exceptions import CommandFailed

if TYPE_CHECKING:
    from .connection import Callback
    from .database import Database


class Collection:
    """
    A collection in a database.

    Constructing one performs no I/O and does not check that the
    collection exists.

    Attributes:
        db: Database handle this collection belongs to
        name: Collection name
    """

    def __init__(self, db: "Database", name: str) -> None:
        self.db = db
        self.name = name
        self.log = db.log.bind(collection=name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(db={self.db.name!r}, name={self.name!r})"

    @property
    def full_name(self) -> str:
        """Namespace of this collection, ``<db>.<name>``."""
        return f"{self.db.name}.{self.name}"

    def _run(self, coro, callback: "Callback | None") -> Any:
        return self.db.connection.run(coro, callback, self)

    def find_one(
        self,
        query: Any = None,
        fields: Mapping[str, Any] | None = None,
        callback: "Callback | None" = None,
    ) -> Any:
        """
        Find a single document.

        Args:
            query: Filter document, or an ``_id`` value
            fields: Projection
            callback: Called as ``callback(collection, err, doc)``; omit to block

        Returns:
            The document, or None if nothing matched
        """
        return self._run(self._find_one(query, fields), callback)

    async def _find_one(self, query: Any, fields: Mapping[str, Any] | None) -> Any:
        if query is None:
            query = {}
        elif not isinstance(query, Mapping):
            query = {"_id": query}
        reply = await self.db.connection.query_async(self.full_name, {}, 0, -1, query, fields)
        return reply.first

    def find(
        self,
        query: Mapping[str, Any] | None = None,
        fields: Mapping[str, Any] | None = None,
        skip: int = 0,
        limit: int = 0,
        callback: "Callback | None" = None,
    ) -> Any:
        """
        Find all documents matching a filter.

        Returns:
            List of documents
        """
        return self._run(self._find(query or {}, fields, skip, limit), callback)

    async def _find(self, query, fields, skip: int, limit: int) -> list[dict[str, Any]]:
        reply = await self.db.connection.query_async(
            self.full_name, {}, skip, limit, query, fields
        )
        return reply.docs

    def insert(
        self,
        docs: Mapping[str, Any] | list[Mapping[str, Any]],
        callback: "Callback | None" = None,
    ) -> Any:
        """
        Insert one or more documents.

        Documents without an ``_id`` get a new ObjectId. The write concern is
        taken from the connection's current settings.

        Returns:
            The ``_id`` of the document, or a list of ids for a list of documents
        """
        return self._run(self._insert(docs), callback)

    async def _insert(self, docs) -> Any:
        single = isinstance(docs, Mapping)
        docs = [docs] if single else list(docs)
        docs = [doc if "_id" in doc else {"_id": ObjectId(), **doc} for doc in docs]

        command = SON(
            [
                ("insert", self.name),
                ("documents", docs),
                ("ordered", True),
                ("writeConcern", self.db.build_write_concern()),
            ]
        )
        await self._write(command)
        ids = [doc["_id"] for doc in docs]
        return ids[0] if single else ids

    def remove(
        self,
        query: Mapping[str, Any] | None = None,
        single: bool = False,
        callback: "Callback | None" = None,
    ) -> Any:
        """
        Remove documents matching a filter.

        Returns:
            Number of removed documents
        """
        return self._run(self._remove(query or {}, single), callback)

    async def _remove(self, query, single: bool) -> int:
        command = SON(
            [
                ("delete", self.name),
                ("deletes", [{"q": query, "limit": 1 if single else 0}]),
                ("ordered", True),
                ("writeConcern", self.db.build_write_concern()),
            ]
        )
        doc = await self._write(command)
        return doc.get("n", 0)

    async def _write(self, command: Mapping[str, Any]) -> dict[str, Any]:
        doc = await self.db.command_async(command)
        err = self.db.connection.protocol.write_error(doc)
        if err:
            self.log.warning(f"Write to {self.full_name} failed: {err.message}")
            raise err
        return doc

    def create(self, callback: "Callback | None" = None, **options: Any) -> Any:
        """Create this collection explicitly (``capped``, ``size``, ...)."""
        return self._run(self._command(SON([("create", self.name), *options.items()])), callback)

    def drop(self, callback: "Callback | None" = None) -> Any:
        """Drop this collection."""
        return self._run(self._command(SON([("drop", self.name)])), callback)

    async def _command(self, command: Mapping[str, Any]) -> dict[str, Any]:
        try:
            return await self.db.command_async(command)
        except CommandFailed as e:
            e.context.setdefault("collection", self.full_name)
            raise
