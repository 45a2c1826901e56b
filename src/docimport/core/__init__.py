"""Core primitives: configuration, errors, store contract and value types."""

from .config import ImportOptions, validate_options
from .exceptions import DocImportError
from .interfaces import BaseDocumentStore, Patch, Transaction

__all__ = [
    "BaseDocumentStore",
    "DocImportError",
    "ImportOptions",
    "Patch",
    "Transaction",
    "validate_options",
]
