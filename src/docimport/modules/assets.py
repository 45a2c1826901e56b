"""Asset resolution, upload and reference patch-back.

Asset declarations are deduplicated by ``<kind>#<url>``: each unique asset is
downloaded and hashed once, reused if the store already holds an asset with
the same SHA-1 (and its file still resolves), or uploaded otherwise. The
resulting asset IDs are then patched into every consuming document.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlparse

from docimport.core.config import ImportOptions
from docimport.core.exceptions import AssetError, StoreError
from docimport.core.interfaces import Patch, Transaction
from docimport.core.types import (
    AssetRef,
    AssetTarget,
    Document,
    ImportWarning,
    UploadAssetsResult,
)
from docimport.utils.concurrency import map_concurrent
from docimport.utils.fetch import AssetFetcher
from docimport.utils.progress import progress_stepper
from docimport.utils.retry import retry_on_failure
from docimport.utils.tags import suffix_tag

logger = logging.getLogger(__name__)

ASSET_PATCH_CONCURRENCY = 30
ASSET_PATCH_BATCH_SIZE = 50
ASSET_PATCH_BATCH_TASK_SIZE = 1000
ASSET_LOOKUP_RETRIES = 3

ASSET_DOCUMENT_TYPES = {"file": "sanity.fileAsset", "image": "sanity.imageAsset"}
ASSET_HASH_QUERY = "*[_type == $dataType && sha1hash == $sha1hash][0]{_id, url}"

_STORE_IMAGE_URL_RE = re.compile(r"^https://cdn\.sanity\.[a-z]+/images/")


@dataclass(frozen=True)
class PatchTask:
    path: str
    asset_id: str


@dataclass
class DocumentTasks:
    document_id: str
    tasks: list[PatchTask]


def get_asset_ref_map(assets: list[AssetRef]) -> dict[str, list[AssetTarget]]:
    """Group consumers by ``<kind>#<url>``, preserving first-seen order."""
    ref_map: dict[str, list[AssetTarget]] = {}
    for ref in assets:
        ref_map.setdefault(ref.key, []).append(
            AssetTarget(document_id=ref.document_id, path=ref.path)
        )
    return ref_map


async def upload_assets(
    assets: list[AssetRef],
    options: ImportOptions,
    fetcher: AssetFetcher,
    *,
    imported_ids: frozenset[str] | None = None,
) -> UploadAssetsResult:
    """Ensure every referenced asset exists remotely and patch references in.

    Args:
        assets: Asset declarations extracted from the documents.
        options: Import options.
        fetcher: Downloads asset bytes and probes existing asset URLs.
        imported_ids: Documents actually written by the batch writer. When
            given, only these documents receive asset-reference patches.

    Returns:
        Number of patched reference paths and the list of tolerated failures.
    """
    concurrency = options.asset_concurrency
    ref_map = get_asset_ref_map(assets)

    # Assets shipped with the dataset but not referenced by any document
    for key in options.unreferenced_assets:
        ref_map.setdefault(key, [])

    if not ref_map:
        return UploadAssetsResult(batches=0, failures=[])

    logger.info("Uploading %d assets with a concurrency of %d", len(ref_map), concurrency)
    progress = progress_stepper(
        options.on_progress, step="Importing assets (files/images)", total=len(ref_map)
    )

    async def ensure(item: tuple[int, str]) -> str | AssetError:
        index, key = item
        try:
            return await ensure_asset_with_retries(key, index, options, fetcher, progress)
        except AssetError as e:
            if not options.allow_failing_assets:
                raise
            logger.warning("Skipping asset %s: %s", e.url, e)
            return e

    asset_ids = await map_concurrent(list(enumerate(ref_map)), ensure, concurrency=concurrency)

    failures = get_upload_failures(ref_map, asset_ids)
    batches = await set_asset_references(ref_map, asset_ids, options, imported_ids=imported_ids)
    return UploadAssetsResult(batches=sum(batches), failures=failures)


async def ensure_asset_with_retries(
    key: str,
    index: int,
    options: ImportOptions,
    fetcher: AssetFetcher,
    progress: Callable[[], None],
) -> str:
    kind, _, url = key.partition("#")

    logger.debug("[Asset #%d] Downloading %s", index, url)
    try:
        hashed = await fetcher.get_hashed_buffer(url)
    except Exception as e:
        progress()
        raise _asset_error(e, "download", kind, url) from e

    try:
        asset_id = await retry_on_failure(
            lambda: ensure_asset(
                kind, url, hashed.buffer, hashed.sha1hash, index, options, fetcher
            )
        )
    except Exception as e:
        progress()
        raise _asset_error(e, "upload", kind, url) from e

    progress()
    return asset_id


def _asset_error(error: Exception, action: str, kind: str, url: str) -> AssetError:
    message = str(error)
    if url not in message:
        message = f"Failed to {action} {kind} @ {url}:\n{message}"
    return AssetError(message, url=url, kind=kind, attempts=getattr(error, "attempts", None))


async def ensure_asset(
    kind: str,
    url: str,
    data: bytes,
    sha1hash: str,
    index: int,
    options: ImportOptions,
    fetcher: AssetFetcher,
) -> str:
    """Return the ID of an asset with ``sha1hash``, uploading ``data`` if none is reusable."""
    client = options.client

    if not options.replace_assets:
        logger.debug("[Asset #%d] Checking for asset with hash %s", index, sha1hash)
        existing = await get_asset_document_id_for_hash(kind, sha1hash, options, fetcher)
        if existing:
            logger.debug("[Asset #%d] Found %s for hash %s", index, kind, sha1hash)
            return existing

    asset_meta: dict[str, Any] = options.asset_map.get(f"{kind}-{sha1hash}") or {}
    filename = asset_meta.get("originalFilename") or posixpath.basename(urlparse(url).path)
    has_extra_meta = any(k != "originalFilename" for k in asset_meta)

    logger.debug("[Asset #%d] Uploading %s with URL %s", index, kind, url)
    asset_doc: Document = await client.upload_asset(
        kind,
        data,
        filename=filename or None,
        tag=suffix_tag(options.tag, "asset.upload"),
    )

    if has_extra_meta:
        await (
            Transaction(client)
            .patch(Patch(asset_doc["_id"]).set(asset_meta))
            .commit(tag=suffix_tag(options.tag, "asset.add-meta"))
        )

    return asset_doc["_id"]


async def get_asset_document_id_for_hash(
    kind: str,
    sha1hash: str,
    options: ImportOptions,
    fetcher: AssetFetcher,
) -> str | None:
    """Look up a reusable asset document by hash.

    An asset document whose file no longer resolves is treated as missing,
    so the asset gets uploaded again.
    """
    data_type = ASSET_DOCUMENT_TYPES["file"] if kind == "file" else ASSET_DOCUMENT_TYPES["image"]
    params = {"dataType": data_type, "sha1hash": sha1hash}
    tag = suffix_tag(options.tag, "asset.get-id")

    attempt = 0
    while True:
        try:
            asset_doc = await options.client.fetch(ASSET_HASH_QUERY, params, tag=tag)
            if not asset_doc or not asset_doc.get("url"):
                return None

            # Cheaper probe for store-hosted images
            asset_url = asset_doc["url"]
            if _STORE_IMAGE_URL_RE.match(asset_url):
                asset_url = f"{asset_url}?fm=json"

            if not await fetcher.url_exists(asset_url):
                logger.info(
                    "Asset document %s exists, but file does not. Overwriting.", asset_doc["_id"]
                )
                return None
            return asset_doc["_id"]
        except Exception as e:
            if attempt < ASSET_LOOKUP_RETRIES:
                attempt += 1
                continue
            error = StoreError(
                f"Error while attempting to query the store API:\n{e}",
                status_code=getattr(e, "status_code", None),
            )
            raise error from e


def get_upload_failures(
    ref_map: dict[str, list[AssetTarget]],
    asset_ids: list[str | AssetError],
) -> list[ImportWarning]:
    failures = []
    for targets, result in zip(ref_map.values(), asset_ids):
        if isinstance(result, str):
            continue
        failures.append(
            ImportWarning(
                message=f"Failed to upload asset: {result.url}",
                type="asset",
                url=result.url,
                documents=list(targets),
            )
        )
    return failures


def build_patch_batches(document_tasks: list[DocumentTasks]) -> list[list[DocumentTasks]]:
    """Group per-document tasks, bounded by document count and total task count."""
    batches: list[list[DocumentTasks]] = []
    for doc_tasks in document_tasks:
        if not batches:
            batches.append([doc_tasks])
            continue

        current = batches[-1]
        size = sum(len(d.tasks) for d in current)
        if (
            size + len(doc_tasks.tasks) > ASSET_PATCH_BATCH_TASK_SIZE
            or len(current) >= ASSET_PATCH_BATCH_SIZE
        ):
            batches.append([doc_tasks])
        else:
            current.append(doc_tasks)
    return batches


async def set_asset_references(
    ref_map: dict[str, list[AssetTarget]],
    asset_ids: list[str | AssetError],
    options: ImportOptions,
    *,
    imported_ids: frozenset[str] | None = None,
) -> list[int]:
    """Patch resolved asset IDs into consuming documents.

    Returns the number of reference paths set per batch.
    """
    per_doc: dict[str, list[PatchTask]] = {}
    for targets, asset_id in zip(ref_map.values(), asset_ids):
        if not isinstance(asset_id, str):
            continue
        for target in targets:
            if imported_ids is not None and target.document_id not in imported_ids:
                continue
            per_doc.setdefault(target.document_id, []).append(
                PatchTask(path=target.path, asset_id=asset_id)
            )

    batches = build_patch_batches(
        [DocumentTasks(document_id=doc_id, tasks=tasks) for doc_id, tasks in per_doc.items()]
    )
    if not batches:
        return [0]

    progress = progress_stepper(
        options.on_progress, step="Setting asset references to documents", total=len(batches)
    )

    async def set_batch(batch: list[DocumentTasks]) -> int:
        logger.debug("Setting asset references on %d documents", len(batch))

        async def commit() -> int:
            trx = Transaction(options.client)
            for doc_tasks in batch:
                trx.patch(_build_asset_patch(doc_tasks))
            await trx.commit(tag=suffix_tag(options.tag, "asset.set-refs"))
            return sum(len(d.tasks) for d in batch)

        count = await retry_on_failure(commit)
        progress()
        return count

    return await map_concurrent(batches, set_batch, concurrency=ASSET_PATCH_CONCURRENCY)


def get_asset_type(asset_id: str) -> str:
    """``image-abc123-200x200-png`` -> ``image``."""
    return asset_id.partition("-")[0]


def _build_asset_patch(doc_tasks: DocumentTasks) -> Patch:
    patch = Patch(doc_tasks.document_id)
    for task in doc_tasks.tasks:
        patch.set_if_missing({task.path: {"_type": get_asset_type(task.asset_id)}})
        patch.set({f"{task.path}.asset": {"_type": "reference", "_ref": task.asset_id}})
    return patch


__all__ = [
    "ASSET_PATCH_BATCH_SIZE",
    "ASSET_PATCH_BATCH_TASK_SIZE",
    "DocumentTasks",
    "PatchTask",
    "build_patch_batches",
    "ensure_asset",
    "get_asset_document_id_for_hash",
    "get_asset_ref_map",
    "get_asset_type",
    "get_upload_failures",
    "set_asset_references",
    "upload_assets",
]
