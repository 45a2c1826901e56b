"""Import pipeline orchestration.

Sequences the stages for one in-memory document set:

    normalize -> extract refs/assets -> weaken -> batch -> validate assets
    -> write documents -> upload assets and patch them in -> strengthen refs

Every check that can reject the input runs before the first write.
"""

from __future__ import annotations

import logging
from typing import Any

from docimport.core.config import ImportOptions
from docimport.core.types import (
    AssetRef,
    Document,
    ImportResult,
    ProgressEvent,
    StrongRefsTask,
)
from docimport.utils.fetch import AssetFetcher, create_http_client

from .asset_refs import absolutify_paths, get_asset_refs, unset_asset_refs
from .assets import upload_assets
from .batches import batch_documents, import_batches
from .documents import (
    assign_array_keys,
    assign_document_id,
    document_has_error,
    ensure_unique_ids,
    is_system_document,
)
from .references import (
    cleanup_references,
    get_strong_refs,
    strengthen_references,
    weaken_strong_refs,
)
from .validation import (
    validate_asset_documents,
    validate_asset_map_for_replacement_chars,
    validate_cdr_datasets,
)

logger = logging.getLogger(__name__)


async def import_documents(documents: list[Any], options: ImportOptions) -> ImportResult:
    """Import an in-memory list of documents.

    Args:
        documents: Raw documents. They are normalized in place.
        options: Validated import options.

    Returns:
        Number of documents written and any tolerated asset failures.

    Raises:
        DocImportError: For invalid input (before anything is written) or when
            a remote stage gives up.
    """
    options.on_progress(ProgressEvent(step="Reading/validating data file"))
    for index, doc in enumerate(documents):
        document_has_error(doc, index)

    if options.asset_map and not options.allow_replacement_characters:
        validate_asset_map_for_replacement_chars(options.asset_map)

    if not options.skip_cross_dataset_references:
        await validate_cdr_datasets(documents, options)

    if options.allow_system_documents:
        filtered = list(documents)
    else:
        filtered = [doc for doc in documents if not is_system_document(doc)]
        if len(filtered) != len(documents):
            logger.info("Skipping %d system documents", len(documents) - len(filtered))

    docs = [
        assign_document_id(absolutify_paths(doc, options.assets_base)) for doc in filtered
    ]
    ensure_unique_ids(docs)

    for doc in docs:
        assign_array_keys(doc)
        cleanup_references(doc, options)

    strong_refs: list[StrongRefsTask] = [
        task for task in (get_strong_refs(doc) for doc in docs) if task is not None
    ]
    asset_refs: list[AssetRef] = [ref for doc in docs for ref in get_asset_refs(doc)]

    for doc in docs:
        unset_asset_refs(doc)
        weaken_strong_refs(doc)

    batches = batch_documents(docs, options.batch_max_bytes)
    logger.info("Importing %d documents in %d batches", len(docs), len(batches))

    if options.http_client is not None:
        return await _run_remote_stages(
            docs, batches, strong_refs, asset_refs, options, AssetFetcher(options.http_client)
        )

    async with create_http_client() as http_client:
        return await _run_remote_stages(
            docs, batches, strong_refs, asset_refs, options, AssetFetcher(http_client)
        )


async def _run_remote_stages(
    docs: list[Document],
    batches: list[list[Document]],
    strong_refs: list[StrongRefsTask],
    asset_refs: list[AssetRef],
    options: ImportOptions,
    fetcher: AssetFetcher,
) -> ImportResult:
    logger.debug("Validating asset documents")
    await validate_asset_documents(docs, options, fetcher)

    logger.debug("Starting import of documents")
    written = await import_batches(batches, options)

    logger.debug("Uploading assets")
    uploaded = await upload_assets(
        asset_refs, options, fetcher, imported_ids=written.imported_ids
    )

    logger.debug("Strengthening references")
    await strengthen_references(strong_refs, options)

    logger.info(
        "Imported %d documents (%d asset warnings)", written.count, len(uploaded.failures)
    )
    return ImportResult(documents_imported=written.count, warnings=uploaded.failures)


__all__ = ["import_documents"]
