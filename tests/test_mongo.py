"""Tests for the MongoDB document store."""

import pytest
from pymongo.errors import (
    BulkWriteError,
    CollectionInvalid,
    OperationFailure,
    ServerSelectionTimeoutError,
)

import mongo
from backup.errors import ConnectivityError, StorageIOError
from mongo import MongoStore
from settings import MongoSettings


class _AsyncCursor:
    def __init__(self, docs):
        self._docs = list(docs)
        self._index = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._index >= len(self._docs):
            raise StopAsyncIteration
        value = self._docs[self._index]
        self._index += 1
        return value


class _InsertResult:
    def __init__(self, ids):
        self.inserted_ids = ids


class _FakeCollection:
    def __init__(self, docs=None, insert_error=None):
        self.docs = list(docs or [])
        self.insert_error = insert_error
        self.queries = []
        self.inserted = []

    def find(self, query):
        self.queries.append(query)
        return _AsyncCursor(self.docs)

    async def insert_many(self, documents, ordered=True):
        if self.insert_error is not None:
            raise self.insert_error
        self.inserted.append((documents, ordered))
        return _InsertResult([doc["_id"] for doc in documents])


class _FakeDB:
    name = "mydb"

    def __init__(self):
        self.collections = {}
        self.drop_error = None
        self.create_error = None
        self.list_filter = None
        self.names = ["users", "orders"]

    def __getitem__(self, name):
        return self.collections.setdefault(name, _FakeCollection())

    async def list_collection_names(self, filter=None):
        self.list_filter = filter
        return list(self.names)

    async def drop_collection(self, name):
        if self.drop_error is not None:
            raise self.drop_error

    async def create_collection(self, name):
        if self.create_error is not None:
            raise self.create_error


def _connected_store(db=None) -> MongoStore:
    store = MongoStore("mongodb://localhost:27017", "mydb")
    store.db = db or _FakeDB()
    store._connected = True
    return store


class _FakeAdmin:
    def __init__(self, error=None):
        self.error = error

    async def command(self, name):
        if self.error is not None:
            raise self.error
        return {"ok": 1}


class _FakeClient:
    instances = []
    ping_error = None

    def __init__(self, url, **kwargs):
        self.url = url
        self.kwargs = kwargs
        self.admin = _FakeAdmin(type(self).ping_error)
        self.closed = False
        type(self).instances.append(self)

    def __getitem__(self, name):
        db = _FakeDB()
        db.name = name
        return db

    def get_default_database(self):
        from pymongo.errors import ConfigurationError

        raise ConfigurationError("No default database name defined or provided.")

    def close(self):
        self.closed = True


@pytest.fixture
def fake_client(monkeypatch):
    _FakeClient.instances = []
    _FakeClient.ping_error = None
    monkeypatch.setattr(mongo, "AsyncIOMotorClient", _FakeClient)
    return _FakeClient


@pytest.mark.asyncio
async def test_connect_pings_and_selects_database(fake_client) -> None:
    store = MongoStore("mongodb://db:27017", "shop", timeout_ms=1500)

    await store.connect()

    assert store.is_connected
    assert store.database_name == "shop"
    assert fake_client.instances[0].kwargs == {"serverSelectionTimeoutMS": 1500}

    await store.close()
    assert not store.is_connected
    assert fake_client.instances[0].closed


@pytest.mark.asyncio
async def test_connect_failure_raises_connectivity_error(fake_client) -> None:
    fake_client.ping_error = ServerSelectionTimeoutError("no servers")
    store = MongoStore("mongodb://db:27017", "shop")

    with pytest.raises(ConnectivityError):
        await store.connect()

    assert not store.is_connected
    assert fake_client.instances[0].closed


@pytest.mark.asyncio
async def test_connect_without_database_name(fake_client) -> None:
    store = MongoStore("mongodb://db:27017")

    with pytest.raises(ConnectivityError, match="mongo_database_missing"):
        await store.connect()
    assert not store.is_connected


@pytest.mark.asyncio
async def test_operations_require_connection() -> None:
    store = MongoStore("mongodb://localhost:27017", "mydb")

    with pytest.raises(ConnectivityError):
        await store.list_collections()
    with pytest.raises(ConnectivityError):
        await store.drop_collection("users")


@pytest.mark.asyncio
async def test_list_collections_skips_system_and_sorts() -> None:
    db = _FakeDB()
    store = _connected_store(db)

    assert await store.list_collections() == ["orders", "users"]
    assert db.list_filter == {"name": {"$not": {"$regex": r"^system\."}}}


@pytest.mark.asyncio
async def test_stream_documents_passes_query() -> None:
    db = _FakeDB()
    db.collections["users"] = _FakeCollection([{"_id": 1}, {"_id": 2}])
    store = _connected_store(db)

    seen = [doc async for doc in store.stream_documents("users", {"status": {"$eq": "paid"}})]

    assert seen == [{"_id": 1}, {"_id": 2}]
    assert db.collections["users"].queries == [{"status": {"$eq": "paid"}}]


@pytest.mark.asyncio
async def test_drop_collection_outcomes() -> None:
    db = _FakeDB()
    store = _connected_store(db)

    assert await store.drop_collection("users") is True

    db.drop_error = OperationFailure("ns not found", code=26)
    assert await store.drop_collection("missing") is True

    db.drop_error = OperationFailure("not authorized", code=13)
    assert await store.drop_collection("users") is False


@pytest.mark.asyncio
async def test_bulk_insert_is_ordered_and_counts() -> None:
    db = _FakeDB()
    store = _connected_store(db)

    inserted = await store.bulk_insert("users", ({"_id": i} for i in range(3)))

    assert inserted == 3
    documents, ordered = db.collections["users"].inserted[0]
    assert ordered is True
    assert [doc["_id"] for doc in documents] == [0, 1, 2]


@pytest.mark.asyncio
async def test_bulk_insert_write_error_is_storage_error() -> None:
    db = _FakeDB()
    db.collections["users"] = _FakeCollection(
        insert_error=BulkWriteError({"writeErrors": [{"code": 11000}], "nInserted": 0})
    )
    store = _connected_store(db)

    with pytest.raises(StorageIOError):
        await store.bulk_insert("users", [{"_id": 1}])


@pytest.mark.asyncio
async def test_create_collection_ignores_existing() -> None:
    db = _FakeDB()
    db.create_error = CollectionInvalid("collection users already exists")
    store = _connected_store(db)

    await store.create_collection("users")


def test_from_settings_builds_uri() -> None:
    settings = MongoSettings(
        host="db", port=27018, username="u@x", password="p:w", database="shop", auth="admin"
    )

    store = MongoStore.from_settings(settings)

    assert store.url == "mongodb://u%40x:p%3Aw@db:27018/admin"
    assert store.database_name == "shop"
    assert MongoStore.from_settings(MongoSettings(uri="mongodb://h/x"), "other").database_name == "other"
