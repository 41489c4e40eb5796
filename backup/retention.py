"""Snapshot discovery and retention-based eviction."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import structlog

from .naming import is_snapshot_name, parse_snapshot_timestamp, snapshot_database

logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class SnapshotInfo:
    """A snapshot directory found under the backup root."""

    name: str
    path: Path
    database: str | None
    created_at: datetime | None
    collections: int


def scan_snapshots(root: Path | str, descending: bool = False) -> list[str]:
    """Return valid snapshot names under ``root`` in lexicographic order.

    Names embed ``YYMMDD-HHmmss`` so lexicographic order is chronological for
    snapshots of one database. Entries failing :func:`is_snapshot_name` and
    plain files are ignored; a missing root yields an empty list.
    """

    base = Path(root)
    if not base.is_dir():
        return []
    names = [
        entry.name
        for entry in base.iterdir()
        if entry.is_dir() and is_snapshot_name(entry.name)
    ]
    return sorted(names, key=_chronological_key, reverse=descending)


def _chronological_key(name: str) -> tuple[str, str]:
    # Suffix first so snapshots of differently named databases still sort by time.
    return name[-13:], name


def enforce_retention(root: Path | str, policy: int) -> list[str]:
    """Evict the oldest snapshots until fewer than ``policy`` remain.

    Runs before a new snapshot is created, so the backup root holds at most
    ``policy`` snapshots once that backup completes. ``policy <= 0`` disables
    eviction. Deletion is recursive and permanent.
    """

    if policy <= 0:
        return []

    base = Path(root)
    existing = scan_snapshots(base)
    evicted: list[str] = []
    while len(existing) >= policy:
        oldest = existing.pop(0)
        target = base / oldest
        try:
            shutil.rmtree(target)
        except OSError as exc:
            logger.error("retention_evict_failed", snapshot=str(target), error=str(exc))
            raise
        evicted.append(oldest)
        logger.info("retention_snapshot_evicted", snapshot=str(target), policy=policy)
    return evicted


def list_snapshots(root: Path | str, limit: int = 0) -> list[SnapshotInfo]:
    """Return newest-first snapshot details, at most ``limit`` entries (0 = all)."""

    base = Path(root)
    names = scan_snapshots(base, descending=True)
    if limit > 0:
        names = names[:limit]
    result: list[SnapshotInfo] = []
    for name in names:
        path = base / name
        result.append(
            SnapshotInfo(
                name=name,
                path=path,
                database=snapshot_database(name),
                created_at=parse_snapshot_timestamp(name),
                collections=sum(1 for entry in path.iterdir() if entry.is_dir()),
            )
        )
    return result
