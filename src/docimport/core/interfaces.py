"""Remote document store contract and mutation builders.

The store client itself lives outside this package. Anything passed as
``ImportOptions.client`` must implement ``BaseDocumentStore`` (subclassing is
optional; the methods are checked by name when options are validated).

Mutations use the store's wire shape::

    {"create": {...}}
    {"createIfNotExists": {...}}
    {"createOrReplace": {...}}
    {"patch": {"id": "...", "setIfMissing": {...}, "set": {...}, "unset": [...]}}
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from .types import Document, MutationResult

STORE_METHODS = ("mutate", "action", "fetch", "upload_asset", "list_datasets", "config")


class BaseDocumentStore(ABC):
    """Async client for a hosted document store."""

    @abstractmethod
    def config(self) -> dict[str, Any]:
        """Client configuration: ``project_id``, ``dataset``, ``token``, ``request_tag_prefix``."""

    def with_config(self, config: dict[str, Any]) -> BaseDocumentStore:
        """Return a client using ``config``; stores without tag prefixes may return ``self``."""
        return self

    @abstractmethod
    async def mutate(
        self,
        mutations: list[dict[str, Any]],
        *,
        visibility: str = "async",
        tag: str | None = None,
    ) -> MutationResult:
        """Commit ``mutations`` as one transaction."""

    @abstractmethod
    async def action(self, action: dict[str, Any], *, tag: str | None = None) -> Any:
        """Run a single store action (e.g. a release import)."""

    @abstractmethod
    async def fetch(
        self,
        query: str,
        params: dict[str, Any] | None = None,
        *,
        tag: str | None = None,
    ) -> Any:
        """Run a point-lookup query."""

    @abstractmethod
    async def upload_asset(
        self,
        kind: str,
        data: bytes,
        *,
        filename: str | None = None,
        tag: str | None = None,
    ) -> Document:
        """Upload asset bytes, returning the created asset document."""

    @abstractmethod
    async def list_datasets(self) -> list[dict[str, Any]]:
        """List datasets in the target project (each with a ``name``)."""


class Patch:
    """Accumulates patch operations for a single document."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        self._set_if_missing: dict[str, Any] = {}
        self._set: dict[str, Any] = {}
        self._unset: list[str] = []

    def set_if_missing(self, values: dict[str, Any]) -> Patch:
        self._set_if_missing.update(values)
        return self

    def set(self, values: dict[str, Any]) -> Patch:
        self._set.update(values)
        return self

    def unset(self, paths: list[str]) -> Patch:
        self._unset.extend(paths)
        return self

    def serialize(self) -> dict[str, Any]:
        body: dict[str, Any] = {"id": self.document_id}
        if self._set_if_missing:
            body["setIfMissing"] = dict(self._set_if_missing)
        if self._set:
            body["set"] = dict(self._set)
        if self._unset:
            body["unset"] = list(self._unset)
        return body


class Transaction:
    """Builds a list of mutations and commits them through a store client."""

    def __init__(self, client: BaseDocumentStore) -> None:
        self._client = client
        self._mutations: list[dict[str, Any]] = []

    def __len__(self) -> int:
        return len(self._mutations)

    @property
    def mutations(self) -> list[dict[str, Any]]:
        return list(self._mutations)

    def create(self, doc: Document) -> Transaction:
        self._mutations.append({"create": doc})
        return self

    def create_if_not_exists(self, doc: Document) -> Transaction:
        self._mutations.append({"createIfNotExists": doc})
        return self

    def create_or_replace(self, doc: Document) -> Transaction:
        self._mutations.append({"createOrReplace": doc})
        return self

    def add(self, operation: str, doc: Document) -> Transaction:
        """Append ``doc`` using a named write mode (``create``/``createIfNotExists``/...)."""
        builders = {
            "create": self.create,
            "createIfNotExists": self.create_if_not_exists,
            "createOrReplace": self.create_or_replace,
        }
        if operation not in builders:
            raise ValueError(f"Unknown operation: {operation}")
        return builders[operation](doc)

    def patch(self, patch: Patch) -> Transaction:
        self._mutations.append({"patch": patch.serialize()})
        return self

    async def commit(self, *, visibility: str = "async", tag: str | None = None) -> MutationResult:
        return await self._client.mutate(self.mutations, visibility=visibility, tag=tag)


__all__ = ["BaseDocumentStore", "Patch", "STORE_METHODS", "Transaction"]
