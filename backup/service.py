"""Backup and restore pipelines for MongoDB snapshot directories.

A snapshot is laid out as::

    <root>/<database>-<YYMMDD>-<HHmmss>/<collection>/<encoded-id>.bson

Backups stream every collection concurrently; restores replay collections one
at a time because each one drops and recreates data on the shared
connection. Neither operation is transactional: an interrupted backup leaves
the files written so far, an interrupted restore leaves the collections
processed so far.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping

import structlog

from models import FilterCondition
from settings import BackupSettings

from .codec import (
    decode_document_filename,
    deserialize_document,
    encode_document_filename,
    serialize_document,
)
from .errors import (
    AuthenticationError,
    BackupError,
    CollisionError,
    ConfigurationError,
    ConnectivityError,
    OperationCancelled,
    SnapshotNotFound,
    StorageIOError,
    UserAbort,
)
from .filters import build_query
from .interfaces import Authenticator, Confirmer, DocumentStore
from .naming import generate_snapshot_name, is_snapshot_name
from .retention import SnapshotInfo, enforce_retention, list_snapshots

logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class BackupResult:
    """Payload returned after a successful backup run."""

    snapshot: str
    path: Path
    documents: Mapping[str, int]
    evicted: tuple[str, ...] = ()

    @property
    def total_documents(self) -> int:
        return sum(self.documents.values())


@dataclass(slots=True, frozen=True)
class RestoreResult:
    """Payload returned after a successful restore run."""

    path: Path
    documents: Mapping[str, int]

    @property
    def total_documents(self) -> int:
        return sum(self.documents.values())


@dataclass(slots=True)
class CompletionTracker:
    """Counts finished collection streams by name.

    Streams finish in any order, so completion is decided by the number of
    distinct collections marked done rather than by which one finished last.
    """

    expected: frozenset[str]
    _done: set[str] = field(default_factory=set)

    def mark_done(self, collection: str) -> None:
        if collection not in self.expected:
            raise KeyError(collection)
        self._done.add(collection)

    @property
    def completed(self) -> int:
        return len(self._done)

    @property
    def pending(self) -> frozenset[str]:
        return self.expected - self._done

    @property
    def all_done(self) -> bool:
        return self.completed == len(self.expected)


def resolve_path(raw: str | os.PathLike[str] | None, *, error: str) -> Path:
    """Expand ``~`` and return an absolute path; empty input is a configuration error."""

    candidate = str(raw or "").strip()
    if not candidate:
        raise ConfigurationError(error)
    return Path(candidate).expanduser().resolve()


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled("operation_cancelled")


def _write_document(path: Path, payload: bytes) -> None:
    # "x" refuses to overwrite: filenames must stay unique within a dump.
    with path.open("xb") as handle:
        handle.write(payload)


async def _dump_collection(
    store: DocumentStore,
    collection: str,
    directory: Path,
    query: Mapping[str, Any],
    tracker: CompletionTracker,
    counts: dict[str, int],
    cancel: asyncio.Event | None,
) -> None:
    written = 0
    async for document in store.stream_documents(collection, query):
        _check_cancel(cancel)
        if "_id" not in document:
            raise StorageIOError(f"document_id_missing: {collection}")
        payload = serialize_document(document)
        target = directory / encode_document_filename(document["_id"])
        try:
            await asyncio.to_thread(_write_document, target, payload)
        except FileExistsError as exc:
            raise CollisionError(f"document_file_exists: {target}") from exc
        except OSError as exc:
            raise StorageIOError(f"document_write_failed: {target}: {exc}") from exc
        written += 1
        logger.debug("backup_document_written", collection=collection, path=str(target))
    counts[collection] = written
    tracker.mark_done(collection)
    logger.info(
        "backup_collection_completed",
        collection=collection,
        documents=written,
        completed=tracker.completed,
        total=len(tracker.expected),
    )


async def perform_backup(
    *,
    root: str | os.PathLike[str] | None,
    store: DocumentStore,
    retention: int,
    conditions: Iterable[FilterCondition] | None = None,
    now: datetime | None = None,
    cancel: asyncio.Event | None = None,
) -> BackupResult:
    """Dump every collection of ``store`` into a new snapshot under ``root``.

    Older snapshots are evicted first so that at most ``retention`` remain
    once this one is written. ``conditions`` restricts the dumped documents;
    without conditions every document is written.

    Raises
    ------
    ConfigurationError
        ``root`` is empty.
    ConnectivityError
        The store is not connected.
    CollisionError
        A snapshot with the same name (same second) already exists.
    StorageIOError
        A document could not be encoded or written. Files written before the
        failure are left in place.
    """

    root_path = resolve_path(root, error="backup_path_missing")
    if not store.is_connected:
        raise ConnectivityError("store_not_connected")
    database = store.database_name
    if not database:
        raise ConfigurationError("database_name_missing")
    query = build_query(conditions)

    evicted = enforce_retention(root_path, retention)

    if not root_path.exists():
        root_path.mkdir(parents=True)
        logger.info("backup_root_created", path=str(root_path))

    collections = await store.list_collections()

    timestamp = now or datetime.now()
    name = generate_snapshot_name(database, timestamp)
    snapshot_path = root_path / name
    if snapshot_path.exists():
        logger.error("backup_snapshot_exists", path=str(snapshot_path))
        raise CollisionError(f"snapshot_exists: {snapshot_path}")

    try:
        snapshot_path.mkdir()
        for collection in collections:
            (snapshot_path / collection).mkdir()
    except FileExistsError as exc:
        raise CollisionError(f"snapshot_exists: {snapshot_path}") from exc
    except OSError as exc:
        raise StorageIOError(f"snapshot_create_failed: {snapshot_path}: {exc}") from exc
    logger.info(
        "backup_snapshot_created",
        path=str(snapshot_path),
        collections=len(collections),
        query=query or None,
    )

    tracker = CompletionTracker(expected=frozenset(collections))
    counts: dict[str, int] = {}
    tasks = [
        asyncio.create_task(
            _dump_collection(
                store,
                collection,
                snapshot_path / collection,
                query,
                tracker,
                counts,
                cancel,
            ),
            name=f"dump:{collection}",
        )
        for collection in collections
    ]
    try:
        await asyncio.gather(*tasks)
    except BaseException as exc:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.error(
            "backup_failed",
            path=str(snapshot_path),
            error=str(exc),
            pending=sorted(tracker.pending),
        )
        raise

    if not tracker.all_done:
        raise BackupError(f"backup_incomplete: {sorted(tracker.pending)}")

    result = BackupResult(
        snapshot=name,
        path=snapshot_path,
        documents={collection: counts[collection] for collection in collections},
        evicted=tuple(evicted),
    )
    logger.info(
        "backup_completed",
        path=str(snapshot_path),
        collections=len(collections),
        documents=result.total_documents,
    )
    return result


def _read_collection_dir(directory: Path) -> list[dict[str, Any]]:
    documents: list[dict[str, Any]] = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_file():
            continue
        try:
            payload = entry.read_bytes()
        except OSError as exc:
            raise StorageIOError(f"document_read_failed: {entry}: {exc}") from exc
        try:
            documents.append(deserialize_document(payload))
        except StorageIOError as exc:
            id_type, document_id = decode_document_filename(entry.name)
            logger.error(
                "restore_document_corrupt",
                path=str(entry),
                collection=directory.name,
                document_id=document_id,
                id_type=id_type,
                error=str(exc),
            )
            raise StorageIOError(f"document_decode_failed: {directory.name}/{document_id}") from exc
    return documents


async def perform_restore(
    *,
    path: str | os.PathLike[str] | None,
    store: DocumentStore,
    authenticator: Authenticator,
    confirmer: Confirmer,
    force: bool = False,
    cancel: asyncio.Event | None = None,
) -> RestoreResult:
    """Replace the collections of ``store`` with the ones saved under ``path``.

    Every immediate subdirectory of ``path`` is one collection. Collections
    are processed in name order; each is decoded completely before its
    destination is dropped, and the first undecodable file aborts the whole
    restore. Collections restored before the failure stay restored.
    """

    candidate = str(path or "").strip()
    if not candidate:
        raise ConfigurationError("restore_path_missing")
    expanded = Path(candidate).expanduser()
    if not expanded.exists():
        raise SnapshotNotFound(f"restore_point_missing: {candidate}")
    snapshot_path = expanded.resolve()
    if not snapshot_path.is_dir():
        raise SnapshotNotFound(f"restore_point_not_directory: {snapshot_path}")

    if not force and not is_snapshot_name(snapshot_path.name):
        prompt = (
            f"'{snapshot_path.name}' does not look like a snapshot directory. "
            "Restore from it anyway?"
        )
        if not confirmer.ask_yes_no(prompt):
            logger.info("restore_aborted_by_user", path=str(snapshot_path))
            raise UserAbort("restore_declined")

    try:
        verified = authenticator.verify()
    except Exception as exc:  # noqa: BLE001 - any failure means "not verified"
        logger.warning("restore_authentication_error", error=str(exc))
        raise AuthenticationError("restore_authentication_failed") from exc
    if not verified:
        logger.warning("restore_authentication_rejected", path=str(snapshot_path))
        raise AuthenticationError("restore_authentication_failed")

    if not store.is_connected:
        raise ConnectivityError("store_not_connected")

    collections = sorted(entry for entry in snapshot_path.iterdir() if entry.is_dir())
    restored: dict[str, int] = {}
    for directory in collections:
        _check_cancel(cancel)
        name = directory.name
        documents = await asyncio.to_thread(_read_collection_dir, directory)

        if not await store.drop_collection(name):
            raise BackupError(f"collection_drop_failed: {name}")

        if documents:
            inserted = await store.bulk_insert(name, documents)
        else:
            await store.create_collection(name)
            inserted = 0
        restored[name] = inserted
        logger.info("restore_collection_restored", collection=name, documents=inserted)

    logger.info(
        "restore_completed",
        path=str(snapshot_path),
        collections=len(restored),
        documents=sum(restored.values()),
    )
    return RestoreResult(path=snapshot_path, documents=restored)


class SnapshotService:
    """Backup operations bound to one configuration and one document store."""

    def __init__(self, settings: BackupSettings, store: DocumentStore) -> None:
        self.settings = settings
        self.store = store

    async def backup(
        self,
        conditions: Iterable[FilterCondition] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> BackupResult:
        return await perform_backup(
            root=self.settings.path,
            store=self.store,
            retention=self.settings.retention,
            conditions=conditions,
            cancel=cancel,
        )

    async def restore(
        self,
        path: str | os.PathLike[str],
        *,
        authenticator: Authenticator,
        confirmer: Confirmer,
        force: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> RestoreResult:
        return await perform_restore(
            path=path,
            store=self.store,
            authenticator=authenticator,
            confirmer=confirmer,
            force=force,
            cancel=cancel,
        )

    def snapshots(self, limit: int | None = None) -> list[SnapshotInfo]:
        root = resolve_path(self.settings.path, error="backup_path_missing")
        return list_snapshots(root, self.settings.list_limit if limit is None else limit)


__all__ = [
    "BackupResult",
    "CompletionTracker",
    "RestoreResult",
    "SnapshotService",
    "perform_backup",
    "perform_restore",
    "resolve_path",
]
