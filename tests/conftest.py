"""Shared fixtures: an in-memory document store and a fake asset host."""

from __future__ import annotations

import copy
import hashlib
import re
from typing import Any

import httpx
import pytest

from docimport.core.config import ImportOptions
from docimport.core.exceptions import StoreError
from docimport.core.interfaces import BaseDocumentStore
from docimport.core.types import Document, MutationOutcome, MutationResult, ProgressEvent

_PATH_TOKEN_RE = re.compile(r'([A-Za-z_$][\w$]*)|\[(\d+)\]|\["([^"]*)"\]')


def parse_path(path: str) -> list[str | int]:
    segments: list[str | int] = []
    for name, index, quoted in _PATH_TOKEN_RE.findall(path):
        if name:
            segments.append(name)
        elif index:
            segments.append(int(index))
        else:
            segments.append(quoted)
    return segments


def _container(doc: Document, segments: list[str | int], *, create: bool) -> Any:
    current: Any = doc
    for segment in segments:
        if isinstance(current, list):
            current = current[segment] if 0 <= segment < len(current) else None
        elif isinstance(current, dict):
            if segment not in current and create:
                current[segment] = {}
            current = current.get(segment)
        else:
            return None
        if current is None:
            return None
    return current


def apply_patch(doc: Document, patch: dict[str, Any]) -> None:
    for path, value in patch.get("setIfMissing", {}).items():
        *parents, leaf = parse_path(path)
        parent = _container(doc, parents, create=True)
        if isinstance(parent, dict) and leaf not in parent:
            parent[leaf] = copy.deepcopy(value)

    for path, value in patch.get("set", {}).items():
        *parents, leaf = parse_path(path)
        parent = _container(doc, parents, create=True)
        if isinstance(parent, dict):
            parent[leaf] = copy.deepcopy(value)
        elif isinstance(parent, list):
            parent[leaf] = copy.deepcopy(value)

    for path in patch.get("unset", []):
        *parents, leaf = parse_path(path)
        parent = _container(doc, parents, create=False)
        if isinstance(parent, dict):
            parent.pop(leaf, None)
        elif isinstance(parent, list) and 0 <= leaf < len(parent):
            del parent[leaf]


class FakeStore(BaseDocumentStore):
    """In-memory document store.

    Transactions are atomic. ``create`` of an existing ID fails with a 409,
    ``createIfNotExists`` of an existing ID reports ``operation: none``.
    Errors queued in ``mutation_errors`` / ``action_errors`` are raised by the
    next calls, in order.
    """

    def __init__(
        self,
        *,
        documents: dict[str, Document] | None = None,
        datasets: tuple[str, ...] = ("bar",),
        token: str | None = "secret",
        request_tag_prefix: str | None = None,
    ) -> None:
        self.documents: dict[str, Document] = copy.deepcopy(documents or {})
        self.datasets = list(datasets)
        self._config: dict[str, Any] = {
            "project_id": "foo",
            "dataset": "bar",
            "token": token,
        }
        if request_tag_prefix:
            self._config["request_tag_prefix"] = request_tag_prefix

        self.transactions: list[list[dict[str, Any]]] = []
        self.tags: list[str | None] = []
        self.actions: list[dict[str, Any]] = []
        self.queries: list[tuple[str, dict[str, Any]]] = []
        self.uploads: list[dict[str, Any]] = []
        self.mutation_errors: list[Exception] = []
        self.action_errors: list[Exception] = []
        self.mutate_calls = 0

    # -- config --------------------------------------------------------------

    def config(self) -> dict[str, Any]:
        return dict(self._config)

    def with_config(self, config: dict[str, Any]) -> FakeStore:
        clone = copy.copy(self)
        clone._config = dict(config)
        return clone

    # -- helpers -------------------------------------------------------------

    @property
    def mutations(self) -> list[dict[str, Any]]:
        return [m for trx in self.transactions for m in trx]

    def patches(self) -> list[dict[str, Any]]:
        return [m["patch"] for m in self.mutations if "patch" in m]

    def add_asset(self, kind: str, data: bytes, *, url: str | None = None) -> Document:
        sha1 = hashlib.sha1(data).hexdigest()
        if kind == "image":
            asset_id = f"image-{sha1}-1x1-png"
            asset_url = url or f"https://cdn.sanity.io/images/foo/bar/{sha1}-1x1.png"
            asset_type = "sanity.imageAsset"
        else:
            asset_id = f"file-{sha1}-bin"
            asset_url = url or f"https://cdn.sanity.io/files/foo/bar/{sha1}.bin"
            asset_type = "sanity.fileAsset"
        doc = {"_id": asset_id, "_type": asset_type, "sha1hash": sha1, "url": asset_url}
        self.documents[asset_id] = doc
        return doc

    # -- store API -----------------------------------------------------------

    async def mutate(
        self,
        mutations: list[dict[str, Any]],
        *,
        visibility: str = "async",
        tag: str | None = None,
    ) -> MutationResult:
        self.mutate_calls += 1
        if self.mutation_errors:
            raise self.mutation_errors.pop(0)

        staged = copy.deepcopy(self.documents)
        results = []
        for mutation in mutations:
            ((operation, body),) = mutation.items()
            if operation == "patch":
                doc_id = body["id"]
                if doc_id not in staged:
                    raise StoreError(f'Document "{doc_id}" not found', status_code=404)
                apply_patch(staged[doc_id], body)
                results.append(MutationOutcome(id=doc_id, operation="update"))
                continue

            doc_id = body["_id"]
            exists = doc_id in staged
            if operation == "create" and exists:
                raise StoreError(
                    f'Document by ID "{doc_id}" already exists', status_code=409
                )
            if operation == "createIfNotExists" and exists:
                results.append(MutationOutcome(id=doc_id, operation="none"))
                continue
            staged[doc_id] = copy.deepcopy(body)
            results.append(
                MutationOutcome(id=doc_id, operation="update" if exists else "create")
            )

        self.documents = staged
        self.transactions.append(copy.deepcopy(mutations))
        self.tags.append(tag)
        return MutationResult(results=results)

    async def action(self, action: dict[str, Any], *, tag: str | None = None) -> Any:
        if self.action_errors:
            raise self.action_errors.pop(0)
        self.actions.append(copy.deepcopy(action))
        attributes = action["attributes"]
        self.documents[attributes["_id"]] = copy.deepcopy(attributes)
        return {"transactionId": f"trx-{len(self.actions)}"}

    async def fetch(
        self,
        query: str,
        params: dict[str, Any] | None = None,
        *,
        tag: str | None = None,
    ) -> Any:
        params = params or {}
        self.queries.append((query, dict(params)))
        for doc in self.documents.values():
            if doc.get("_type") == params.get("dataType") and doc.get("sha1hash") == params.get(
                "sha1hash"
            ):
                return {"_id": doc["_id"], "url": doc["url"]}
        return None

    async def upload_asset(
        self,
        kind: str,
        data: bytes,
        *,
        filename: str | None = None,
        tag: str | None = None,
    ) -> Document:
        doc = self.add_asset(kind, data)
        self.uploads.append({"kind": kind, "filename": filename, "tag": tag, "id": doc["_id"]})
        return copy.deepcopy(doc)

    async def list_datasets(self) -> list[dict[str, Any]]:
        return [{"name": name} for name in self.datasets]


class AssetHost:
    """Serves ``files`` over an ``httpx.MockTransport`` and records requests."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.requests: list[tuple[str, str]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, str(request.url)))
        key = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        if key not in self.files:
            return httpx.Response(404)
        if request.method == "HEAD":
            return httpx.Response(200)
        return httpx.Response(200, content=self.files[key])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.requests if m == method)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def store_factory() -> type[FakeStore]:
    return FakeStore


@pytest.fixture
def asset_host() -> AssetHost:
    return AssetHost()


@pytest.fixture
def progress_events() -> list[ProgressEvent]:
    return []


@pytest.fixture
def make_options(store: FakeStore, asset_host: AssetHost, progress_events: list[ProgressEvent]):
    """Factory for ``ImportOptions`` bound to the fake store and asset host."""

    def factory(**overrides: Any) -> ImportOptions:
        values: dict[str, Any] = {
            "client": store,
            "http_client": asset_host.client(),
            "on_progress": progress_events.append,
        }
        values.update(overrides)
        return ImportOptions(**values)

    return factory
