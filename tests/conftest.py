"""
Pytest configuration and shared fixtures for MDB_HANDLE tests.

This module provides:
- An in-memory stand-in for the motor client
- Connection and database handle fixtures
- Integration fixtures backed by a MongoDB test container
"""

import asyncio
from collections import OrderedDict
from typing import Any, Dict, List
from unittest.mock import AsyncMock, patch

import pytest
from pymongo.errors import AutoReconnect, InvalidOperation, OperationFailure

from mdb_handle import registry
from mdb_handle.config import ConnectionConfig
from mdb_handle.connection import Connection
from mdb_handle.observability import get_metrics_collector

TEST_DB = "test_db"
TEST_URI = f"mongodb://localhost:27017/{TEST_DB}"


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: requires a MongoDB test container")


# ============================================================================
# FAKE MOTOR CLIENT
# ============================================================================


def _matches(doc: Dict[str, Any], query: Dict[str, Any] | None) -> bool:
    return all(doc.get(key) == value for key, value in (query or {}).items())


class FakeCursor:
    """Cursor returned by FakeCollection.find()."""

    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs

    async def to_list(self, length=None):
        return list(self._docs if length is None else self._docs[:length])


class FakeCollection:
    """Collection answering find() from the client's in-memory store."""

    def __init__(self, database: "FakeDatabase", name: str):
        self.database = database
        self.name = name

    def _docs(self) -> List[Dict[str, Any]]:
        if self.name == "system.namespaces":
            return self.database.namespace_entries()
        return self.database.collections.get(self.name, [])

    def find(self, query=None, projection=None, skip=0, limit=0, **kwargs):
        self.database.client.check_open()
        self.database.client.finds.append((self.database.name, self.name, query, kwargs))
        docs = [doc for doc in self._docs() if _matches(doc, query)][skip:]
        if limit:
            docs = docs[:limit]
        if projection:
            docs = [
                {k: v for k, v in doc.items() if k == "_id" or projection.get(k)} for doc in docs
            ]
        return FakeCursor(docs)


class FakeDatabase:
    """
    Database answering commands like a MongoDB 4.4 server would, for the
    handful of commands the handles use.
    """

    def __init__(self, client: "FakeMotorClient", name: str):
        self.client = client
        self.name = name

    @property
    def collections(self) -> "OrderedDict[str, List[Dict[str, Any]]]":
        return self.client.data.setdefault(self.name, OrderedDict())

    def __getitem__(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def namespace_entries(self) -> List[Dict[str, Any]]:
        entries = [{"name": f"{self.name}.system.indexes"}]
        for name in self.collections:
            entries.append({"name": f"{self.name}.{name}"})
            entries.append({"name": f"{self.name}.{name}.$_id_"})
        entries.append({"name": "other_db.elsewhere"})
        return entries

    async def command(self, command, check=True, **kwargs):
        self.client.check_open()
        self.client.commands.append((self.name, command))
        name = next(iter(command))
        handler = getattr(self, f"_cmd_{name.lower()}", None)
        if handler is None:
            return {
                "ok": 0.0,
                "errmsg": f"no such command: '{name}'",
                "code": 59,
                "codeName": "CommandNotFound",
            }
        return handler(command)

    def _cmd_ping(self, command):
        return {"ok": 1.0}

    def _cmd_getnonce(self, command):
        return {"nonce": "2375531c32080ae8", "ok": 1.0}

    def _cmd_dbstats(self, command):
        return {
            "db": self.name,
            "collections": len(self.collections),
            "objects": sum(len(docs) for docs in self.collections.values()),
            "ok": 1.0,
        }

    def _cmd_listcollections(self, command):
        names = list(self.collections)
        size = self.client.list_batch_size or len(names) or 1
        batch, rest = names[:size], names[size:]
        cursor_id = 0
        if rest:
            cursor_id = len(self.client.cursors) + 1
            self.client.cursors[cursor_id] = (rest, size)
        return {
            "cursor": {
                "id": cursor_id,
                "ns": f"{self.name}.$cmd.listCollections",
                "firstBatch": [{"name": n, "type": "collection"} for n in batch],
            },
            "ok": 1.0,
        }

    def _cmd_getmore(self, command):
        rest, size = self.client.cursors.pop(command["getMore"])
        batch, rest = rest[:size], rest[size:]
        cursor_id = 0
        if rest:
            cursor_id = len(self.client.cursors) + 100
            self.client.cursors[cursor_id] = (rest, size)
        return {
            "cursor": {
                "id": cursor_id,
                "ns": f"{self.name}.{command['collection']}",
                "nextBatch": [{"name": n, "type": "collection"} for n in batch],
            },
            "ok": 1.0,
        }

    def _cmd_insert(self, command):
        docs = self.collections.setdefault(command["insert"], [])
        existing = [doc["_id"] for doc in docs]
        write_errors = []
        inserted = 0
        for index, doc in enumerate(command["documents"]):
            if doc["_id"] in existing:
                write_errors.append(
                    {
                        "index": index,
                        "code": 11000,
                        "errmsg": f"E11000 duplicate key error dup key: {{ _id: {doc['_id']!r} }}",
                    }
                )
                break
            docs.append(dict(doc))
            existing.append(doc["_id"])
            inserted += 1
        reply = {"n": inserted, "ok": 1.0}
        if write_errors:
            reply["writeErrors"] = write_errors
        return reply

    def _cmd_delete(self, command):
        docs = self.collections.get(command["delete"], [])
        removed = 0
        for spec in command["deletes"]:
            for doc in list(docs):
                if _matches(doc, spec["q"]):
                    docs.remove(doc)
                    removed += 1
                    if spec["limit"]:
                        break
        return {"n": removed, "ok": 1.0}

    def _cmd_create(self, command):
        if command["create"] in self.collections:
            return {
                "ok": 0.0,
                "errmsg": f"Collection already exists. NS: {self.name}.{command['create']}",
                "code": 48,
                "codeName": "NamespaceExists",
            }
        self.collections[command["create"]] = []
        return {"ok": 1.0}

    def _cmd_drop(self, command):
        if command["drop"] not in self.collections:
            return {"ok": 0.0, "errmsg": "ns not found", "code": 26, "codeName": "NamespaceNotFound"}
        docs = self.collections.pop(command["drop"])
        return {"ns": f"{self.name}.{command['drop']}", "nIndexesWas": 1, "ok": 1.0, "n": len(docs)}

    def _cmd_distinct(self, command):
        values = []
        for doc in self.collections.get(command["distinct"], []):
            value = doc.get(command["key"])
            if value is not None and value not in values:
                values.append(value)
        return {"values": values, "ok": 1.0}


class FakeMotorClient:
    """In-memory replacement for AsyncIOMotorClient."""

    def __init__(self):
        self.data: Dict[str, "OrderedDict[str, List[Dict[str, Any]]]"] = {}
        self.commands: List[tuple] = []
        self.finds: List[tuple] = []
        self.cursors: Dict[int, tuple] = {}
        self.list_batch_size = 0
        self.closed = False

    def __getitem__(self, name: str) -> FakeDatabase:
        return FakeDatabase(self, name)

    def check_open(self):
        if self.closed:
            raise InvalidOperation("Cannot use MongoClient after close")

    def close(self):
        self.closed = True


# ============================================================================
# CONNECTION FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def reset_global_state():
    """Clear the teardown flag and metrics between tests."""
    registry._global_destruction = False
    get_metrics_collector().reset()
    yield
    registry._global_destruction = False


@pytest.fixture
def fake_client() -> FakeMotorClient:
    return FakeMotorClient()


@pytest.fixture
def failing_transport():
    """Make every command fail as if the server dropped the connection."""
    with patch.object(
        FakeDatabase, "command", AsyncMock(side_effect=AutoReconnect("connection reset"))
    ) as command:
        yield command


@pytest.fixture
def unauthorized_find():
    """Make every find() fail the way a server denying access does."""
    details = {
        "ok": 0.0,
        "errmsg": f"not authorized on {TEST_DB} to execute command",
        "code": 13,
        "codeName": "Unauthorized",
    }
    error = OperationFailure(details["errmsg"], code=13, details=details)
    with patch.object(FakeCollection, "find", side_effect=error) as find:
        yield details


@pytest.fixture
def event_loop_for_connection():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def make_connection(fake_client, event_loop_for_connection):
    """Factory for connections backed by the fake client."""

    def _make(**config: Any) -> Connection:
        config.setdefault("uri", TEST_URI)
        return Connection(
            config=ConnectionConfig(**config),
            ioloop=event_loop_for_connection,
            client=fake_client,
        )

    return _make


@pytest.fixture
def connection(make_connection) -> Connection:
    return make_connection()


@pytest.fixture
def db(connection):
    return connection.db()


@pytest.fixture
def callback_log():
    """Callback recording every invocation as (invocant, err, result)."""
    calls: List[tuple] = []

    def callback(invocant, err, result):
        calls.append((invocant, err, result))

    callback.calls = calls
    return callback


# ============================================================================
# INTEGRATION FIXTURES
# ============================================================================


@pytest.fixture(scope="session")
def mongodb_container():
    """
    Start a MongoDB container for integration tests.

    MongoDB 4.4 still answers getnonce, which the integration scenarios use.
    Session-scoped: container starts once and is reused for all integration tests.
    """
    try:
        from testcontainers.mongodb import MongoDbContainer
    except ImportError:
        pytest.skip("testcontainers not installed. Install with: pip install -e '.[test]'")

    with MongoDbContainer(image="mongo:4.4") as container:
        yield container


@pytest.fixture
def mongodb_connection_string(mongodb_container):
    """Connection string for the test container, pointing at a scratch database."""
    return f"{mongodb_container.get_connection_url()}/handle_it?authSource=admin"


@pytest.fixture
def real_connection(mongodb_connection_string):
    connection = Connection(config=ConnectionConfig(uri=mongodb_connection_string))
    db = connection.db()
    db.command("dropDatabase")
    yield connection
    connection.close()
