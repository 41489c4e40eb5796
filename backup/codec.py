"""BSON serialization of documents and filesystem-safe document filenames.

Each document is stored as one BSON file. BSON keeps ``ObjectId``, nested
documents, arrays, dates and ``Binary`` values intact, so decoding a file
yields a document equal to the one read from MongoDB.

File names are derived from ``_id``:

* ``ObjectId`` ids use their 24-character hex form (``<hex>.bson``);
* every other id is prefixed with its type name and a ``~`` separator
  (``str~invoice%2F42.bson``, ``int~7.bson``) so ids of different types with
  the same string form never collide with each other or with ObjectIds;
* the string form is percent-encoded: only ``[A-Za-z0-9_-]`` survive, every
  other byte (including ``.``, ``/``, ``~`` and ``%``) becomes ``%XX``;
* names longer than :data:`MAX_STEM_LENGTH` are replaced by
  ``sha256~<digest>`` to stay below filesystem limits.

Encoding is reversible through :func:`decode_document_filename` except for
the hashed fallback; restore never depends on the filename because ``_id``
is stored inside the BSON payload.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import unquote

import bson
from bson import ObjectId
from bson.errors import BSONError

from .errors import StorageIOError

DOCUMENT_EXTENSION = ".bson"
MAX_STEM_LENGTH = 200
TYPE_SEPARATOR = "~"

_UNRESERVED = re.compile(r"[A-Za-z0-9_-]")


def serialize_document(document: Mapping[str, Any]) -> bytes:
    """Return the BSON encoding of ``document``."""

    try:
        return bson.encode(document)
    except (BSONError, TypeError, ValueError, OverflowError) as exc:
        raise StorageIOError(f"document_encode_failed: {exc}") from exc


def deserialize_document(payload: bytes) -> dict[str, Any]:
    """Decode one BSON document; raise :class:`StorageIOError` when corrupt."""

    try:
        return bson.decode(payload)
    except (BSONError, TypeError, ValueError, IndexError, OverflowError) as exc:
        raise StorageIOError(f"document_decode_failed: {exc}") from exc


def _escape(value: str) -> str:
    parts: list[str] = []
    for char in value:
        if _UNRESERVED.fullmatch(char):
            parts.append(char)
        else:
            parts.extend(f"%{byte:02X}" for byte in char.encode("utf-8"))
    return "".join(parts)


def encode_document_filename(document_id: Any) -> str:
    """Return the filename (with extension) used to store a document."""

    if isinstance(document_id, ObjectId):
        stem = str(document_id)
    else:
        stem = f"{type(document_id).__name__}{TYPE_SEPARATOR}{_escape(str(document_id))}"
    if len(stem) > MAX_STEM_LENGTH:
        digest = hashlib.sha256(stem.encode("utf-8")).hexdigest()
        stem = f"sha256{TYPE_SEPARATOR}{digest}"
    return f"{stem}{DOCUMENT_EXTENSION}"


def decode_document_filename(filename: str) -> tuple[str | None, str]:
    """Return ``(type_name, id_string)`` encoded in ``filename``.

    ``type_name`` is ``None`` for ObjectId files and ``"sha256"`` for hashed
    names, whose original id can only be recovered from the file content.
    """

    stem = Path(filename).name
    if stem.endswith(DOCUMENT_EXTENSION):
        stem = stem[: -len(DOCUMENT_EXTENSION)]
    if TYPE_SEPARATOR not in stem:
        return None, stem
    type_name, _, encoded = stem.partition(TYPE_SEPARATOR)
    return type_name, unquote(encoded)
