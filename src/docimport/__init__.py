"""docimport: bulk import of documents and assets into a hosted document store."""

from __future__ import annotations

from .core.config import ImportOptions
from .core.exceptions import (
    AssetDeclarationError,
    AssetDocumentError,
    AssetError,
    ConfigurationError,
    DocImportError,
    DocumentValidationError,
    DuplicateIdsError,
    InputError,
    MissingDatasetError,
    ReplacementCharError,
    StoreError,
)
from .core.interfaces import BaseDocumentStore
from .core.types import ImportResult, ImportWarning, MutationOutcome, MutationResult, ProgressEvent
from .modules.sources import import_dataset

__version__ = "0.1.0"

__all__ = [
    "AssetDeclarationError",
    "AssetDocumentError",
    "AssetError",
    "BaseDocumentStore",
    "ConfigurationError",
    "DocImportError",
    "DocumentValidationError",
    "DuplicateIdsError",
    "ImportOptions",
    "ImportResult",
    "ImportWarning",
    "InputError",
    "MissingDatasetError",
    "MutationOutcome",
    "MutationResult",
    "ProgressEvent",
    "ReplacementCharError",
    "StoreError",
    "import_dataset",
]
