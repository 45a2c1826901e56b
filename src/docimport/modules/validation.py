"""Pre-flight validation.

Everything here runs before the first remote mutation, so bad input aborts the
import without leaving partial writes behind.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

from docimport.core.config import ImportOptions
from docimport.core.exceptions import AssetDocumentError, MissingDatasetError, ReplacementCharError
from docimport.core.types import Document, ProgressEvent
from docimport.utils.concurrency import map_concurrent
from docimport.utils.fetch import AssetFetcher

from .references import find_cross_dataset_names

logger = logging.getLogger(__name__)

REPLACEMENT_CHAR = "\ufffd"

ASSET_TYPE_RE = re.compile(r"^sanity\.[a-zA-Z]+Asset$")
REQUIRED_ASSET_PROPERTIES: dict[str, type | tuple[type, ...]] = {
    "_id": str,
    "_type": str,
    "assetId": str,
    "extension": str,
    "mimeType": str,
    "path": str,
    "sha1hash": str,
    "size": (int, float),
    "url": str,
}
IMAGE_DIMENSION_PROPERTIES = ("width", "height", "aspectRatio")

_CDN_PREFIX_RE = re.compile(r"^https://cdn\.sanity\.[a-z]+/")
_PLAIN_KEY_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


# ---- Replacement characters -------------------------------------------------


def validate_line_for_replacement_char(line: str, line_number: int) -> str | None:
    if REPLACEMENT_CHAR in line:
        return (
            f"Unicode replacement character (U+FFFD) found on line {line_number}. "
            "This usually indicates encoding issues in the source data."
        )
    return None


def find_replacement_char_in_object(value: Any, current_path: str = "") -> str | None:
    """Path to the first string (or key) containing U+FFFD, or ``None``."""
    if isinstance(value, str):
        return current_path if REPLACEMENT_CHAR in value else None

    if isinstance(value, list):
        for i, item in enumerate(value):
            found = find_replacement_char_in_object(item, f"{current_path}[{i}]")
            if found is not None:
                return found
        return None

    if isinstance(value, dict):
        for key, item in value.items():
            if REPLACEMENT_CHAR in key:
                return f'{current_path}["{key}"]' if current_path else f'["{key}"]'

            if not current_path:
                key_path = key
            elif _PLAIN_KEY_RE.match(key):
                key_path = f"{current_path}.{key}"
            else:
                key_path = f'{current_path}["{key}"]'

            found = find_replacement_char_in_object(item, key_path)
            if found is not None:
                return found
    return None


def validate_asset_map_for_replacement_chars(asset_map: dict[str, Any]) -> None:
    suffix = "This usually indicates encoding issues in the source data."
    for key in asset_map:
        if REPLACEMENT_CHAR in key:
            raise ReplacementCharError(
                f'Unicode replacement character (U+FFFD) found at assetMap["{key}"] (in key). '
                f"{suffix}"
            )

    for key, value in asset_map.items():
        path = find_replacement_char_in_object(value, "")
        if path is None:
            continue
        if not path:
            full_path = f'assetMap["{key}"]'
        elif path.startswith("["):
            full_path = f'assetMap["{key}"]{path}'
        else:
            full_path = f'assetMap["{key}"].{path}'
        raise ReplacementCharError(
            f"Unicode replacement character (U+FFFD) found at {full_path}. {suffix}"
        )


# ---- Cross-dataset references -----------------------------------------------


async def validate_cdr_datasets(docs: list[Document], options: ImportOptions) -> None:
    """Ensure every dataset targeted by a cross-dataset reference exists."""
    datasets: list[str] = []
    for doc in docs:
        for name in sorted(find_cross_dataset_names(doc)):
            if name not in datasets:
                datasets.append(name)
    if not datasets:
        return

    existing = {ds.get("name") for ds in await options.client.list_datasets()}
    missing = [ds for ds in datasets if ds not in existing]

    if len(missing) > 1:
        names = ", ".join(f'"{ds}"' for ds in missing)
        raise MissingDatasetError(
            "\n".join(
                [
                    "The data to be imported contains one or more cross-dataset references, "
                    "which refers to datasets that do not exist in the target project.",
                    f"Missing datasets: {names}",
                    "Either create these datasets in the given project, or use the "
                    "`skip_cross_dataset_references` option to skip these references.",
                ]
            ),
            datasets=missing,
        )

    if len(missing) == 1:
        raise MissingDatasetError(
            "\n".join(
                [
                    "The data to be imported contains one or more cross-dataset references, "
                    "which refers to a dataset that do not exist in the target project.",
                    f'Missing dataset: "{missing[0]}"',
                    "Either create this dataset in the given project, or use the "
                    "`skip_cross_dataset_references` option to skip these references.",
                ]
            ),
            datasets=missing,
        )


# ---- Asset documents --------------------------------------------------------


def is_asset_document(doc: Document) -> bool:
    return bool(ASSET_TYPE_RE.match(doc.get("_type") or ""))


async def validate_asset_documents(
    docs: list[Document],
    options: ImportOptions,
    fetcher: AssetFetcher,
) -> None:
    """Check asset documents in the input before anything is written.

    Raises:
        AssetDocumentError: On missing properties, missing image dimensions,
            a foreign project/dataset, or an asset file that does not resolve.
    """
    asset_docs = [doc for doc in docs if is_asset_document(doc)]
    if not asset_docs:
        return

    options.on_progress(ProgressEvent(step="Validating asset documents"))

    for doc in asset_docs:
        validate_asset_document_properties(doc)

    if not options.allow_assets_in_different_dataset:
        for doc in asset_docs:
            _validate_asset_location(doc, options)

    if not options.allow_failing_assets:

        async def ensure_url_exists(doc: Document) -> None:
            url = doc["url"]
            start = time.monotonic()
            exists = await fetcher.url_exists(url)
            logger.debug(
                "%s: %s (%d ms)",
                url,
                "exists" if exists else "does not exist",
                (time.monotonic() - start) * 1000,
            )
            if not exists:
                raise AssetDocumentError(
                    f"Document {doc['_id']} points to a URL that does not exist ({url})."
                )

        await map_concurrent(
            asset_docs, ensure_url_exists, concurrency=options.asset_verification_concurrency
        )


def validate_asset_document_properties(doc: Document) -> None:
    for prop, expected in REQUIRED_ASSET_PROPERTIES.items():
        value = doc.get(prop)
        if not isinstance(value, expected) or isinstance(value, bool):
            problem = "is missing" if prop not in doc else "has invalid type for"
            raise AssetDocumentError(
                f'Asset document {doc.get("_id")} {problem} required property "{prop}"'
            )

    if doc["_type"] == "sanity.imageAsset":
        _validate_image_metadata(doc)


def _validate_image_metadata(doc: Document) -> None:
    doc_id = doc.get("_id")
    metadata = doc.get("metadata")
    if not metadata or not isinstance(metadata, dict):
        raise AssetDocumentError(f'Asset document {doc_id} is missing required property "metadata"')

    dimensions = metadata.get("dimensions")
    if not dimensions or not isinstance(dimensions, dict):
        raise AssetDocumentError(
            f'Asset document {doc_id} is missing required property "metadata.dimensions"'
        )

    for prop in IMAGE_DIMENSION_PROPERTIES:
        value = dimensions.get(prop)
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise AssetDocumentError(
                f'Asset document {doc_id} is missing required property "metadata.dimensions.{prop}"'
            )


def get_location_from_document(doc: Document) -> tuple[str, str]:
    """``(project_id, dataset)`` encoded in an asset document's path or URL."""
    url = doc.get("path") or doc.get("url") or ""
    parts = _CDN_PREFIX_RE.sub("", url).split("/")
    project_id = parts[1] if len(parts) > 1 else ""
    dataset = parts[2] if len(parts) > 2 else ""
    return project_id, dataset


def _validate_asset_location(doc: Document, options: ImportOptions) -> None:
    asset_id = doc.get("_id") or doc.get("url")
    project_id, dataset = get_location_from_document(doc)
    if project_id != options.target_project_id:
        raise AssetDocumentError(
            f"Asset {asset_id} references a different project ID than the specified target "
            f"(asset is in {project_id}, importing to {options.target_project_id})."
        )
    if dataset != options.target_dataset:
        raise AssetDocumentError(
            f"Asset {asset_id} references a different dataset than the specified target "
            f"(asset is in {dataset}, importing to {options.target_dataset})."
        )


__all__ = [
    "find_replacement_char_in_object",
    "get_location_from_document",
    "is_asset_document",
    "validate_asset_document_properties",
    "validate_asset_documents",
    "validate_asset_map_for_replacement_chars",
    "validate_cdr_datasets",
    "validate_line_for_replacement_char",
]
