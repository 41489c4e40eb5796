"""Snapshot directory naming: ``<database>-YYMMDD-HHmmss``."""

from __future__ import annotations

import re
from datetime import datetime

SNAPSHOT_TIMESTAMP_FORMAT = "%y%m%d-%H%M%S"

_SNAPSHOT_NAME_RE = re.compile(r"^(?P<database>.*)-(?P<date>\d{6})-(?P<time>\d{6})$")


def generate_snapshot_name(database: str, timestamp: datetime) -> str:
    """Return the snapshot directory name for ``database`` taken at ``timestamp``."""

    return f"{database}-{timestamp:{SNAPSHOT_TIMESTAMP_FORMAT}}"


def is_snapshot_name(name: str) -> bool:
    """Return ``True`` when ``name`` ends with ``-NNNNNN-NNNNNN``.

    The database prefix may be empty (``-240105-031500``).

    Used both when creating snapshots and to skip stray entries (notes,
    partial copies, editor files) found in the backup root.
    """

    return bool(name) and _SNAPSHOT_NAME_RE.match(name) is not None


def parse_snapshot_timestamp(name: str) -> datetime | None:
    match = _SNAPSHOT_NAME_RE.match(name or "")
    if match is None:
        return None
    try:
        return datetime.strptime(
            f"{match['date']}-{match['time']}", SNAPSHOT_TIMESTAMP_FORMAT
        )
    except ValueError:
        return None


def snapshot_database(name: str) -> str | None:
    match = _SNAPSHOT_NAME_RE.match(name or "")
    return match["database"] if match else None
