"""Reference handling: cleanup, weakening and post-import strengthening.

The store enforces referential integrity for strong references at write time.
Every strong reference is weakened before documents are written, so batches can
be committed in any order (cycles included). The recorded paths are flipped
back to strong once all documents exist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from docimport.core.config import ImportOptions
from docimport.core.exceptions import StoreError, is_conflict
from docimport.core.interfaces import Patch, Transaction
from docimport.core.types import Document, PathSegment, StrongRefsTask
from docimport.utils.concurrency import map_concurrent
from docimport.utils.progress import progress_stepper
from docimport.utils.retry import retry_on_failure
from docimport.utils.tags import suffix_tag

from .paths import find_key_paths, get_in, serialize_path

logger = logging.getLogger(__name__)

REF_KEY = "_ref"
STRENGTHEN_CONCURRENCY = 30
STRENGTHEN_BATCH_SIZE = 30
STRENGTHEN_STEP = "strengthen-references"


@dataclass
class RefPathItem:
    path: list[PathSegment]
    ref: dict[str, Any]


def _find_refs(doc: Document) -> list[RefPathItem]:
    items = []
    for match in find_key_paths(doc, REF_KEY):
        path = match[:-1]
        ref = get_in(doc, path)
        if isinstance(ref, dict):
            items.append(RefPathItem(path=path, ref=ref))
    return items


def find_strong_refs(doc: Document) -> list[RefPathItem]:
    return [item for item in _find_refs(doc) if item.ref.get("_weak") is not True]


def get_strong_refs(doc: Document) -> StrongRefsTask | None:
    refs = [serialize_path(item.path) for item in find_strong_refs(doc)]
    if not refs:
        return None
    return StrongRefsTask(document_id=doc["_id"], references=refs)


def weaken_strong_refs(doc: Document) -> Document:
    """Mark every strong reference ``_weak`` (mutates in place)."""
    for item in find_strong_refs(doc):
        item.ref["_weak"] = True
    return doc


def is_cross_dataset_reference(ref: Any) -> bool:
    return isinstance(ref, dict) and "_dataset" in ref


def cleanup_references(doc: Document, options: ImportOptions) -> Document:
    """Normalize references in place.

    Cross-dataset references are removed together with the key holding them
    when ``skip_cross_dataset_references`` is set. Otherwise references get a
    ``_type`` of ``reference`` and any ``_projectId`` is pointed at the target
    project.
    """
    # Reverse order keeps earlier list indexes valid while removing.
    for item in reversed(_find_refs(doc)):
        ref = item.ref
        if options.skip_cross_dataset_references and is_cross_dataset_reference(ref):
            _remove_holder(doc, item.path)
            continue

        if "_type" not in ref:
            ref["_type"] = "reference"

        if "_projectId" in ref:
            ref["_projectId"] = options.target_project_id
    return doc


def _remove_holder(doc: Document, path: list[PathSegment]) -> None:
    parent = get_in(doc, path[:-1]) if len(path) > 1 else doc
    leaf = path[-1]
    if isinstance(parent, dict):
        parent.pop(leaf, None)
    elif isinstance(parent, list) and isinstance(leaf, int) and 0 <= leaf < len(parent):
        del parent[leaf]


def find_cross_dataset_names(doc: Document) -> set[str]:
    return {
        item.ref["_dataset"]
        for item in _find_refs(doc)
        if isinstance(item.ref.get("_dataset"), str)
    }


async def strengthen_references(
    strong_refs: list[StrongRefsTask],
    options: ImportOptions,
) -> list[int]:
    """Unset ``_weak`` at every recorded path, in batched transactions.

    Returns the number of patched documents per batch.
    """
    batches = [
        strong_refs[i : i + STRENGTHEN_BATCH_SIZE]
        for i in range(0, len(strong_refs), STRENGTHEN_BATCH_SIZE)
    ]
    if not batches:
        return [0]

    logger.info(
        "Strengthening references in %d documents (%d batches)", len(strong_refs), len(batches)
    )
    progress = progress_stepper(
        options.on_progress, step="Strengthening references", total=len(batches)
    )

    async def unset_weak_batch(batch: list[StrongRefsTask]) -> int:
        logger.debug("Strengthening batch of %d documents", len(batch))

        async def commit() -> int:
            trx = Transaction(options.client)
            for task in batch:
                trx.patch(
                    Patch(task.document_id).unset([f"{path}._weak" for path in task.references])
                )
            try:
                res = await trx.commit(tag=suffix_tag(options.tag, "ref.strengthen"))
            except StoreError as e:
                e.step = STRENGTHEN_STEP
                raise
            except Exception as e:
                raise StoreError(
                    str(e), status_code=getattr(e, "status_code", None), step=STRENGTHEN_STEP
                ) from e
            progress()
            return len(res.results)

        return await retry_on_failure(commit, is_retriable=is_conflict)

    return await map_concurrent(batches, unset_weak_batch, concurrency=STRENGTHEN_CONCURRENCY)


__all__ = [
    "RefPathItem",
    "STRENGTHEN_STEP",
    "cleanup_references",
    "find_cross_dataset_names",
    "find_strong_refs",
    "get_strong_refs",
    "is_cross_dataset_reference",
    "strengthen_references",
    "weaken_strong_refs",
]
