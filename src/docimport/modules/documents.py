"""Document normalization.

Per-document structural fixups applied before reference and asset analysis:
shape validation, ID assignment, array ``_key`` assignment, duplicate-ID
detection and system-document filtering. No I/O happens here.
"""

from __future__ import annotations

import re
import secrets
import uuid
from typing import Any, Iterable

from docimport.core.config import RELEASE_ID_PREFIX, SYSTEM_ID_PREFIX
from docimport.core.exceptions import DocumentValidationError, DuplicateIdsError
from docimport.core.types import Document

_ID_RE = re.compile(r"^[a-z0-9_.-]+$", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")

KEY_LENGTH = 8


def validate_document(doc: Any) -> str | None:
    """Return a description of what is wrong with ``doc``, or ``None`` if it is usable."""
    if not isinstance(doc, dict):
        return "Document must be a JSON object"

    doc_id = doc.get("_id")
    if "_id" in doc and not isinstance(doc_id, str):
        return 'Document contained an invalid "_id" property - must be a string'

    if isinstance(doc_id, str) and not _ID_RE.match(doc_id):
        return (
            f'Document ID "{doc_id}" is not valid: Please use alphanumeric document IDs. '
            "Dashes (-) and underscores (_) are also allowed."
        )

    if not isinstance(doc.get("_type"), str):
        return 'Document did not contain required "_type" property of type string'

    return None


def document_has_error(doc: Any, index: int) -> None:
    """Raise if ``doc`` (at 0-based ``index`` of an in-memory array) is invalid."""
    err = validate_document(doc)
    if err:
        raise DocumentValidationError(
            f"Failed to parse document at index #{index}: {err}", index=index
        )


def ensure_unique_ids(documents: Iterable[Document]) -> None:
    """Raise ``DuplicateIdsError`` naming every ID used more than once."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for doc in documents:
        doc_id = doc.get("_id")
        if not doc_id:
            continue
        if doc_id in seen:
            if doc_id not in duplicates:
                duplicates.append(doc_id)
        else:
            seen.add(doc_id)

    if duplicates:
        raise DuplicateIdsError(duplicates)


def is_system_document(doc: Document) -> bool:
    doc_id = doc.get("_id") or ""
    return doc_id.startswith(SYSTEM_ID_PREFIX) and not doc_id.startswith(RELEASE_ID_PREFIX)


def is_release_document(doc: Document) -> bool:
    return (doc.get("_id") or "").startswith(RELEASE_ID_PREFIX)


def assign_document_id(doc: Document) -> Document:
    if doc.get("_id"):
        return doc
    return {"_id": str(uuid.uuid4()), **doc}


def generate_key(length: int = KEY_LENGTH) -> str:
    key = ""
    while len(key) < length:
        key += _NON_ALNUM_RE.sub("", secrets.token_urlsafe(length * 2))
    return key[:length]


def assign_array_keys(value: Any) -> Any:
    """Give every mapping inside every list a ``_key`` (mutates in place).

    Existing ``_key`` values are left alone.
    """
    if isinstance(value, list):
        for item in value:
            if isinstance(item, dict) and "_key" not in item:
                item["_key"] = generate_key()
            assign_array_keys(item)
    elif isinstance(value, dict):
        for item in value.values():
            assign_array_keys(item)
    return value


__all__ = [
    "assign_array_keys",
    "assign_document_id",
    "document_has_error",
    "ensure_unique_ids",
    "generate_key",
    "is_release_document",
    "is_system_document",
    "validate_document",
]
