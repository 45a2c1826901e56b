"""Document batching and transactional batch writes."""

from __future__ import annotations

import asyncio
import json
import logging

from docimport.core.config import DEFAULT_BATCH_MAX_BYTES, ImportOptions
from docimport.core.exceptions import StoreError, is_conflict
from docimport.core.interfaces import Transaction
from docimport.core.types import BatchImportResult, Document
from docimport.utils.concurrency import map_concurrent
from docimport.utils.progress import progress_stepper
from docimport.utils.retry import retry_on_failure
from docimport.utils.tags import suffix_tag

from .documents import is_release_document

logger = logging.getLogger(__name__)

DOCUMENT_IMPORT_CONCURRENCY = 6
RELEASE_IMPORT_ACTION = "sanity.action.release.import"


def document_size(doc: Document) -> int:
    """Serialized size of ``doc`` in bytes."""
    return len(json.dumps(doc, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def batch_documents(
    docs: list[Document],
    max_bytes: int = DEFAULT_BATCH_MAX_BYTES,
) -> list[list[Document]]:
    """Split ``docs`` into insertion-ordered batches of at most ``max_bytes``.

    A document larger than ``max_bytes`` on its own gets a batch to itself.
    """
    batches: list[list[Document]] = []
    current: list[Document] = []
    current_size = 0

    for doc in docs:
        size = document_size(doc)
        if current and current_size + size > max_bytes:
            batches.append(current)
            current = []
            current_size = 0
        current.append(doc)
        current_size += size

    if current:
        batches.append(current)
    return batches


async def import_batches(
    batches: list[list[Document]],
    options: ImportOptions,
) -> BatchImportResult:
    """Write every batch, at most ``DOCUMENT_IMPORT_CONCURRENCY`` at a time."""
    progress = progress_stepper(options.on_progress, step="Importing documents", total=len(batches))

    async def run(batch: list[Document]) -> BatchImportResult:
        result = await import_batch(batch, options)
        progress()
        return result

    results = await map_concurrent(batches, run, concurrency=DOCUMENT_IMPORT_CONCURRENCY)

    imported: set[str] = set()
    for res in results:
        imported.update(res.imported_ids)
    return BatchImportResult(
        count=sum(res.count for res in results), imported_ids=frozenset(imported)
    )


async def import_batch(batch: list[Document], options: ImportOptions) -> BatchImportResult:
    """Write one batch as a unit: one transaction plus one action per release document.

    The whole unit is retried on conflicts; ``create`` mode is attempted once.
    """
    max_tries = 1 if options.operation == "create" else 3
    release_docs = [doc for doc in batch if is_release_document(doc)]
    docs = [doc for doc in batch if not is_release_document(doc)]

    async def attempt() -> BatchImportResult:
        # Let every call in the unit settle before deciding whether to retry it
        parts = await asyncio.gather(
            _commit_documents(docs, options),
            *(_import_release(doc, options) for doc in release_docs),
            return_exceptions=True,
        )
        for part in parts:
            if isinstance(part, BaseException):
                raise part

        count = 0
        imported: set[str] = set()
        for part in parts:
            count += part.count
            imported.update(part.imported_ids)
        return BatchImportResult(count=count, imported_ids=frozenset(imported))

    logger.debug(
        "Importing batch of %d documents (%d releases)", len(batch), len(release_docs)
    )
    return await retry_on_failure(attempt, max_tries=max_tries, is_retriable=is_conflict)


async def _commit_documents(docs: list[Document], options: ImportOptions) -> BatchImportResult:
    if not docs:
        return BatchImportResult(count=0)

    trx = Transaction(options.client)
    for doc in docs:
        trx.add(options.operation, doc)
    res = await trx.commit(tag=suffix_tag(options.tag, "doc.create"))
    return BatchImportResult(
        count=len(res.results),
        imported_ids=frozenset(r.id for r in res.results if r.operation != "none"),
    )


async def _import_release(doc: Document, options: ImportOptions) -> BatchImportResult:
    action = {
        "actionType": RELEASE_IMPORT_ACTION,
        "releaseId": doc.get("name"),
        "attributes": doc,
        "ifExists": options.releases_operation,
    }
    try:
        await options.client.action(action, tag=suffix_tag(options.tag, "release.import"))
    except Exception as e:
        logger.warning("Release import failed for %s: %s", doc["_id"], e)
        raise StoreError(
            f"Release import failed for {doc['_id']}: {e}",
            status_code=getattr(e, "status_code", None),
        ) from e
    return BatchImportResult(count=1, imported_ids=frozenset([doc["_id"]]))


__all__ = [
    "DOCUMENT_IMPORT_CONCURRENCY",
    "batch_documents",
    "document_size",
    "import_batch",
    "import_batches",
]
