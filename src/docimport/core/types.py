"""Shared value types for the import pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

Document = dict[str, Any]
PathSegment = str | int


@dataclass(frozen=True)
class ProgressEvent:
    """A progress notification for one named pipeline step.

    ``current``/``total`` are ``None`` for steps that are announced but not counted.
    """

    step: str
    current: int | None = None
    total: int | None = None


@dataclass(frozen=True)
class StrongRefsTask:
    """Serialized reference paths within one document to strengthen after import."""

    document_id: str
    references: list[str]


@dataclass(frozen=True)
class AssetRef:
    """An inline asset declaration found in a document."""

    document_id: str
    path: str
    url: str
    kind: str

    @property
    def key(self) -> str:
        return f"{self.kind}#{self.url}"


@dataclass(frozen=True)
class AssetTarget:
    """A document path waiting for an asset reference."""

    document_id: str
    path: str


@dataclass
class ImportWarning:
    message: str
    type: str | None = None
    url: str | None = None
    documents: list[AssetTarget] = field(default_factory=list)


@dataclass(frozen=True)
class MutationOutcome:
    id: str
    operation: str


@dataclass(frozen=True)
class MutationResult:
    """What the store reports back for a committed transaction."""

    results: list[MutationOutcome] = field(default_factory=list)


@dataclass(frozen=True)
class BatchImportResult:
    """Documents written by the batch writer.

    ``imported_ids`` excludes documents the store reported as no-ops, so
    follow-up patches only target documents that actually changed.
    """

    count: int
    imported_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class UploadAssetsResult:
    batches: int
    failures: list[ImportWarning]


@dataclass(frozen=True)
class ImportResult:
    documents_imported: int
    warnings: list[ImportWarning] = field(default_factory=list)


__all__ = [
    "AssetRef",
    "AssetTarget",
    "BatchImportResult",
    "Document",
    "ImportResult",
    "ImportWarning",
    "MutationOutcome",
    "MutationResult",
    "PathSegment",
    "ProgressEvent",
    "StrongRefsTask",
    "UploadAssetsResult",
]
