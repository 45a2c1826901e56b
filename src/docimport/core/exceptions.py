"""Exception hierarchy for docimport.

Every error raised by the import pipeline derives from ``DocImportError`` and
carries a stable ``code``. Callers that only care about "the import failed"
catch the base class; the subclasses let callers tell pre-flight input
problems apart from remote-store and asset failures.

Usage:
    from docimport.core.exceptions import DocImportError, StoreError
"""

from __future__ import annotations

from typing import Any


class DocImportError(Exception):
    """Base exception for docimport."""

    code: str = "IMPORT_ERROR"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def __str__(self) -> str:
        return self.message


class ConfigurationError(DocImportError):
    """Raised when import options are invalid."""

    code = "CONFIGURATION_ERROR"


class InputError(DocImportError):
    """Raised when the import source cannot be read or routed."""

    code = "INVALID_INPUT"


class DocumentValidationError(DocImportError):
    """Raised for a malformed document.

    Exactly one of ``index`` (0-based, in-memory arrays) or ``line``
    (1-based, NDJSON streams) is set.
    """

    code = "INVALID_DOCUMENT"

    def __init__(
        self,
        message: str,
        *,
        index: int | None = None,
        line: int | None = None,
    ) -> None:
        super().__init__(message)
        self.index = index
        self.line = line


class DuplicateIdsError(DocImportError):
    """Raised when two or more documents share an ``_id``."""

    code = "DUPLICATE_IDS"

    def __init__(self, duplicates: list[str]) -> None:
        self.duplicates = duplicates
        listing = "\n- ".join(duplicates)
        super().__init__(
            f"Found {len(duplicates)} duplicate IDs in the source file:\n- {listing}"
        )


class AssetDeclarationError(DocImportError):
    """Raised when an inline asset declaration lacks a valid ``<kind>@<url>`` value."""

    code = "INVALID_ASSET_DECLARATION"


class MissingDatasetError(DocImportError):
    """Raised when cross-dataset references point at datasets that do not exist."""

    code = "MISSING_DATASET"

    def __init__(self, message: str, *, datasets: list[str]) -> None:
        super().__init__(message)
        self.datasets = datasets


class AssetDocumentError(DocImportError):
    """Raised when an asset document in the input is structurally unusable."""

    code = "INVALID_ASSET_DOCUMENT"


class ReplacementCharError(DocImportError):
    """Raised when input contains U+FFFD, usually a sign of broken encoding."""

    code = "REPLACEMENT_CHARACTER"


class AssetError(DocImportError):
    """Raised when an asset cannot be downloaded, looked up or uploaded."""

    code = "ASSET_ERROR"

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        kind: str = "",
        attempts: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.kind = kind
        self.attempts = attempts


class StoreError(DocImportError):
    """Raised by (or on behalf of) the remote document store.

    ``status_code`` mirrors the HTTP status of the failed request when the
    store reported one; ``step`` names the pipeline step that gave up.
    """

    code = "STORE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        step: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.step = step
        self.details = details


def is_conflict(error: BaseException) -> bool:
    """True if ``error`` is a store conflict (HTTP 409)."""
    return getattr(error, "status_code", None) == 409


__all__ = [
    "AssetDeclarationError",
    "AssetDocumentError",
    "AssetError",
    "ConfigurationError",
    "DocImportError",
    "DocumentValidationError",
    "DuplicateIdsError",
    "InputError",
    "MissingDatasetError",
    "ReplacementCharError",
    "StoreError",
    "is_conflict",
]
