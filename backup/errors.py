"""Exception hierarchy shared by the backup and restore pipelines."""

from __future__ import annotations


class BackupError(RuntimeError):
    """Raised when backup or restore operations cannot be completed."""


class ConfigurationError(BackupError):
    """Required configuration (backup path, database name, ...) is missing."""


class ConnectivityError(BackupError):
    """The document store is unreachable or not connected."""


class CollisionError(BackupError):
    """A snapshot (or document file) with the same name already exists."""


class StorageIOError(BackupError):
    """Writing, reading or decoding a snapshot file failed."""


class AuthenticationError(BackupError):
    """Restore credentials were rejected."""


class UserAbort(BackupError):
    """The operator declined an interactive confirmation."""


class SnapshotNotFound(BackupError):
    """The requested restore point does not exist."""


class OperationCancelled(BackupError):
    """The running operation was interrupted by a shutdown request."""
