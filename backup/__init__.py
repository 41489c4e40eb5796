"""Snapshot backups of MongoDB databases to per-document BSON files."""

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
from .naming import generate_snapshot_name, is_snapshot_name
from .retention import SnapshotInfo, enforce_retention, list_snapshots, scan_snapshots
from .service import (
    BackupResult,
    RestoreResult,
    SnapshotService,
    perform_backup,
    perform_restore,
)

__all__ = [
    "AuthenticationError",
    "BackupError",
    "BackupResult",
    "CollisionError",
    "ConfigurationError",
    "ConnectivityError",
    "OperationCancelled",
    "RestoreResult",
    "SnapshotInfo",
    "SnapshotNotFound",
    "SnapshotService",
    "StorageIOError",
    "UserAbort",
    "enforce_retention",
    "generate_snapshot_name",
    "is_snapshot_name",
    "list_snapshots",
    "perform_backup",
    "perform_restore",
    "scan_snapshots",
]
