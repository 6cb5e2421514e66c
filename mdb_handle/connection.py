"""
Shared MongoDB connection.

One Connection owns a motor client bound to an asyncio event loop and is
shared by every Database handle created from it. It provides the query
primitive handles build on, the durability settings used for write
concerns, and the weak registry of live handles.

Every operation is dual-mode. Without a callback it blocks by driving the
connection's event loop until the reply arrives, which also lets other
pending operations complete. With a callback it schedules the operation
and returns the future immediately; the callback is invoked exactly once
as ``callback(invocant, err, result)``.

This module is part of MDB_HANDLE - MongoDB database handles.

Usage:
    from mdb_handle import Connection

    connection = Connection("mongodb://localhost:27017/test")
    db = connection.db()
    doc = db.command("ping")

    def on_ping(db, err, doc):
        ...

    future = db.command("ping", callback=on_ping)
    connection.wait(future)
"""

import asyncio
import logging
import time
import weakref
from collections.abc import Callable, Coroutine
from functools import partial
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import CursorType, uri_parser
from pymongo.errors import ConfigurationError as DriverConfigurationError
from pymongo.errors import ConnectionFailure, InvalidOperation, OperationFailure

from .config import ConnectionConfig
from .constants import (
    APP_NAME,
    COMMAND_COLLECTION,
    DEFAULT_DB_NAME,
    DEFAULT_MAX_IDLE_TIME_MS,
)
from .database import Database
from .exceptions import CommandFailed, ConfigurationError, MDBHandleError, TransportError
from .observability import get_logger as get_contextual_logger
from .observability import log_operation, with_correlation_id
from .protocol import Protocol, Reply
from .registry import prune

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)

Callback = Callable[[Any, BaseException | None, Any], Any]


def _inside_event_loop() -> bool:
    """Whether an event loop is running in the calling thread."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _log_query_failure(namespace: str, err: Exception, **kwargs: Any) -> None:
    contextual_logger.error(
        f"Query on {namespace} failed: {err}", extra={"namespace": namespace}, **kwargs
    )


def _deliver(invocant: Any, callback: Callback, future: asyncio.Future) -> None:
    """Hand a finished operation to its callback."""
    if future.cancelled():
        err: BaseException | None = TransportError("Operation cancelled before a reply arrived")
        result = None
    else:
        err = future.exception()
        result = None if err else future.result()
    if isinstance(err, CommandFailed):
        result = err.document
    callback(invocant, err, result)


class Connection:
    """
    Shared connection and registry of database handles.

    Attributes:
        config: Validated connection settings
        ioloop: Event loop every operation runs on
        j, w, wtimeout: Live durability settings read by write concerns
        db_register: Database name -> weak reference to the live handle
        protocol: Reply classifier
    """

    def __init__(
        self,
        uri: str | None = None,
        *,
        config: ConnectionConfig | None = None,
        ioloop: asyncio.AbstractEventLoop | None = None,
        client: AsyncIOMotorClient | None = None,
    ) -> None:
        """
        Initialize the connection. No network I/O happens until the first
        operation.

        Args:
            uri: MongoDB connection URI (defaults to MONGO_URI env var)
            config: Complete configuration; takes precedence over ``uri``
            ioloop: Event loop to run on. If None, a private loop is created
                and closed by ``close()``
            client: Prebuilt motor client bound to ``ioloop``

        Raises:
            ConfigurationError: If the configuration or URI is invalid
        """
        self.config = config or ConnectionConfig.from_env(uri=uri)
        self._owns_loop = ioloop is None
        self.ioloop = ioloop or asyncio.new_event_loop()
        self.protocol = Protocol()
        self.db_register: dict[str, weakref.ref[Database]] = {}

        self.j = self.config.j
        self.w = self.config.w
        self.wtimeout = self.config.wtimeout

        try:
            uri_db = uri_parser.parse_uri(self.config.uri).get("database")
        except (DriverConfigurationError, ValueError) as e:
            raise ConfigurationError(
                "Invalid MongoDB URI", config_key="uri", config_value=self.config.uri
            ) from e
        self.default_db = self.config.default_db or uri_db or DEFAULT_DB_NAME

        self._client = client
        self._closed = False

    @property
    def client(self) -> AsyncIOMotorClient:
        """The motor client, created on first use."""
        if self._client is None:
            contextual_logger.info(
                "Creating MongoDB client",
                extra={
                    "max_pool_size": self.config.max_pool_size,
                    "min_pool_size": self.config.min_pool_size,
                },
            )
            self._client = AsyncIOMotorClient(
                self.config.uri,
                io_loop=self.ioloop,
                appname=APP_NAME,
                serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
                maxPoolSize=self.config.max_pool_size,
                minPoolSize=self.config.min_pool_size,
                maxIdleTimeMS=DEFAULT_MAX_IDLE_TIME_MS,
            )
        return self._client

    @property
    def closed(self) -> bool:
        return self._closed

    def db(self, name: str | None = None) -> Database:
        """
        Get the live handle for a database, creating and registering one if
        none is alive.

        Args:
            name: Database name (defaults to ``default_db``)
        """
        name = name or self.default_db
        prune(self.db_register)
        ref = self.db_register.get(name)
        db = ref() if ref is not None else None
        if db is None:
            db = Database(self, name)
            self.db_register[name] = weakref.ref(db)
        return db

    def run(
        self,
        coro: Coroutine[Any, Any, Any],
        callback: Callback | None = None,
        invocant: Any = None,
    ) -> Any:
        """
        Run an operation blocking, or schedule it with a callback.

        Args:
            coro: The operation
            callback: Called as ``callback(invocant, err, result)`` once the
                operation finishes; omit to block instead
            invocant: First argument passed to ``callback``

        Returns:
            The operation's result when blocking. Otherwise the scheduled
            future, or None when the connection's own loop is already closed
            and the callback was invoked immediately.

        Raises:
            MDBHandleError: If asked to block inside the running event loop
            TransportError: If blocking on a connection whose loop is closed
        """
        if self.ioloop.is_closed():
            coro.close()
            err = TransportError("Premature connection close")
            if callback is None:
                raise err
            callback(invocant, err, None)
            return None

        if callback is None:
            if _inside_event_loop():
                coro.close()
                raise MDBHandleError(
                    "Cannot block inside the running event loop, pass a callback instead"
                )
            return self.ioloop.run_until_complete(with_correlation_id(coro))

        future = asyncio.ensure_future(with_correlation_id(coro), loop=self.ioloop)
        future.add_done_callback(partial(_deliver, invocant, callback))
        return future

    def wait(self, *futures: asyncio.Future) -> None:
        """Drive the event loop until the given scheduled operations finish."""
        if not futures:
            return
        if _inside_event_loop():
            raise MDBHandleError("Cannot wait inside the running event loop")
        pending = [f for f in futures if f is not None and not f.done()]
        if pending:
            self.ioloop.run_until_complete(asyncio.wait(pending))

    def query(
        self,
        namespace: str,
        flags: dict[str, bool] | None,
        skip: int,
        limit: int,
        query: dict[str, Any],
        fields: dict[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> Reply | asyncio.Future:
        """
        Query a namespace, blocking or with ``callback(connection, err, reply)``.

        See ``query_async`` for argument semantics.
        """
        return self.run(
            self.query_async(namespace, flags, skip, limit, query, fields), callback, self
        )

    async def query_async(
        self,
        namespace: str,
        flags: dict[str, bool] | None,
        skip: int,
        limit: int,
        query: dict[str, Any],
        fields: dict[str, Any] | None = None,
    ) -> Reply:
        """
        Query a namespace.

        Args:
            namespace: ``"<db>.<collection>"``; ``"<db>.$cmd"`` runs ``query``
                as a command and returns its reply unchecked
            flags: ``tailable_cursor``, ``await_data``, ``no_cursor_timeout``
            skip: Number of documents to skip
            limit: Maximum documents to return (0 for all, negative for a
                single batch of at most ``-limit``)
            query: Filter document, or the command document
            fields: Projection

        Raises:
            TransportError: If the connection is closed or fails
            CommandFailed: If the server rejects the query
        """
        if self._closed:
            raise TransportError("Premature connection close", namespace=namespace)

        db_name, _, collection_name = namespace.partition(".")
        try:
            if collection_name == COMMAND_COLLECTION:
                doc = await self.client[db_name].command(query, check=False)
                return Reply(docs=[doc])

            cursor = self.client[db_name][collection_name].find(
                query,
                projection=fields or None,
                skip=skip,
                limit=abs(limit),
                **self._cursor_options(flags or {}),
            )
            docs = await cursor.to_list(length=None)
            return Reply(docs=docs, starting_from=skip)
        except OperationFailure as e:
            details = e.details or {}
            _log_query_failure(namespace, e)
            raise CommandFailed(
                details.get("errmsg") or str(e),
                code=e.code,
                code_name=details.get("codeName"),
                document=details or None,
                context={"namespace": namespace},
            ) from e
        except (ConnectionFailure, InvalidOperation) as e:
            # InvalidOperation means the client was closed underneath us
            message = (
                "Premature connection close"
                if self._closed or isinstance(e, InvalidOperation)
                else f"Connection failure: {e}"
            )
            _log_query_failure(namespace, e, exc_info=True)
            raise TransportError(message, namespace=namespace) from e

    @staticmethod
    def _cursor_options(flags: dict[str, bool]) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if flags.get("tailable_cursor"):
            options["cursor_type"] = (
                CursorType.TAILABLE_AWAIT if flags.get("await_data") else CursorType.TAILABLE
            )
        if flags.get("no_cursor_timeout"):
            options["no_cursor_timeout"] = True
        return options

    def close(self) -> None:
        """
        Close the driver client. Pending and later operations fail with
        TransportError.

        A loop the connection created itself is run until pending operations
        have settled, then closed.
        """
        if self._closed:
            return
        start_time = time.time()
        self._closed = True
        if self._client is not None:
            try:
                self._client.close()
            except (InvalidOperation, AttributeError, RuntimeError) as e:
                logger.warning(f"Error closing MongoDB client: {e}")
        if self._owns_loop and not _inside_event_loop() and not self.ioloop.is_closed():
            self._close_loop()
        log_operation(
            contextual_logger,
            "connection.close",
            duration_ms=(time.time() - start_time) * 1000,
            live_databases=len(self.db_register),
        )

    def _close_loop(self) -> None:
        loop = self.ioloop
        pending = asyncio.all_tasks(loop)
        if pending:
            logger.debug(f"Settling {len(pending)} pending operations before closing the loop")
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
