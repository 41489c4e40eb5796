"""MongoDB document store used by the backup and restore pipelines."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

import structlog
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import (
    BulkWriteError,
    CollectionInvalid,
    ConfigurationError,
    OperationFailure,
    PyMongoError,
)

from backup.errors import ConnectivityError, StorageIOError
from settings import MongoSettings

logger = structlog.get_logger(__name__)

# Server error code for "ns not found" (dropping a missing collection).
NAMESPACE_NOT_FOUND = 26


class MongoStore:
    """Wrapper around the asynchronous MongoDB client.

    Parameters
    ----------
    uri:
        MongoDB connection string.
    database:
        Database to dump or restore. When empty, the default database of
        ``uri`` is used.
    timeout_ms:
        Server selection timeout used by :meth:`connect`.

    Notes
    -----
    The client wraps :class:`motor.motor_asyncio.AsyncIOMotorClient`. All
    database operations log exceptions before re-raising them as
    :mod:`backup.errors` exceptions so the caller can surface actionable
    diagnostics to the operator.
    """

    def __init__(self, uri: str, database: str | None = None, *, timeout_ms: int = 5000) -> None:
        self.url = uri
        self._database = database or ""
        self._timeout_ms = timeout_ms
        self.client: AsyncIOMotorClient | None = None
        self.db = None
        self._connected = False

    @classmethod
    def from_settings(cls, settings: MongoSettings, database: str | None = None) -> "MongoStore":
        return cls(
            settings.build_uri(),
            database or settings.database,
            timeout_ms=settings.timeout_ms,
        )

    @property
    def database_name(self) -> str:
        if self.db is not None:
            return self.db.name
        return self._database

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the client and ping the server."""

        if self._connected:
            return
        try:
            self.client = AsyncIOMotorClient(self.url, serverSelectionTimeoutMS=self._timeout_ms)
            if self._database:
                self.db = self.client[self._database]
            else:
                try:
                    self.db = self.client.get_default_database()
                except ConfigurationError as exc:
                    raise ConnectivityError("mongo_database_missing") from exc
            await self.client.admin.command("ping")
        except ConnectivityError:
            await self.close()
            raise
        except (PyMongoError, ValueError) as exc:
            logger.error("mongo_connect_failed", database=self._database or None, error=str(exc))
            await self.close()
            raise ConnectivityError(f"mongo_connect_failed: {exc}") from exc
        self._connected = True
        logger.info("mongo_connected", database=self.database_name)

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()
            if self._connected:
                logger.info("mongo_connection_closed", database=self.database_name)
        self.client = None
        self._connected = False

    def _require_db(self):
        if not self._connected or self.db is None:
            raise ConnectivityError("store_not_connected")
        return self.db

    async def list_collections(self) -> list[str]:
        """Return user collection names (``system.*`` collections are skipped)."""

        db = self._require_db()
        try:
            names = await db.list_collection_names(
                filter={"name": {"$not": {"$regex": r"^system\."}}}
            )
        except PyMongoError as exc:
            logger.error("mongo_list_collections_failed", error=str(exc))
            raise ConnectivityError(f"mongo_list_collections_failed: {exc}") from exc
        return sorted(names)

    async def stream_documents(
        self, collection: str, query: Mapping[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield documents of ``collection`` matching ``query`` one at a time."""

        db = self._require_db()
        try:
            cursor = db[collection].find(dict(query or {}))
            async for document in cursor:
                yield document
        except PyMongoError as exc:
            logger.error("mongo_stream_failed", collection=collection, error=str(exc))
            raise ConnectivityError(f"mongo_stream_failed: {collection}: {exc}") from exc

    async def drop_collection(self, collection: str) -> bool:
        """Drop ``collection``; a missing collection counts as dropped."""

        db = self._require_db()
        try:
            await db.drop_collection(collection)
        except OperationFailure as exc:
            if exc.code == NAMESPACE_NOT_FOUND:
                return True
            logger.error("mongo_drop_failed", collection=collection, error=str(exc))
            return False
        except PyMongoError as exc:
            logger.error("mongo_drop_failed", collection=collection, error=str(exc))
            raise ConnectivityError(f"mongo_drop_failed: {collection}: {exc}") from exc
        return True

    async def bulk_insert(self, collection: str, documents: Sequence[Mapping[str, Any]]) -> int:
        db = self._require_db()
        try:
            result = await db[collection].insert_many(list(documents), ordered=True)
        except BulkWriteError as exc:
            logger.error("mongo_bulk_insert_failed", collection=collection, error=str(exc.details))
            raise StorageIOError(f"mongo_bulk_insert_failed: {collection}") from exc
        except PyMongoError as exc:
            logger.error("mongo_bulk_insert_failed", collection=collection, error=str(exc))
            raise ConnectivityError(f"mongo_bulk_insert_failed: {collection}: {exc}") from exc
        return len(result.inserted_ids)

    async def create_collection(self, collection: str) -> None:
        db = self._require_db()
        try:
            await db.create_collection(collection)
        except CollectionInvalid:
            # Already exists, e.g. recreated by a concurrent writer.
            return
        except PyMongoError as exc:
            logger.error("mongo_create_collection_failed", collection=collection, error=str(exc))
            raise ConnectivityError(f"mongo_create_collection_failed: {collection}: {exc}") from exc
