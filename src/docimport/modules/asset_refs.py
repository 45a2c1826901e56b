"""Inline asset declarations.

Documents declare assets with a marker object::

    {"image": {"_sanityAsset": "image@https://example.com/photo.jpg"}}

Markers are collected into ``AssetRef`` work items and stripped from the
document before it is written; the asset reference is patched in once the
asset exists remotely.
"""

from __future__ import annotations

import re
from pathlib import Path

from docimport.core.exceptions import AssetDeclarationError
from docimport.core.types import AssetRef, Document, PathSegment

from .paths import find_key_paths, get_in, serialize_path, set_in, unset_in

ASSET_KEY = "_sanityAsset"
ASSET_MATCHER = re.compile(r"^(file|image)@([a-z]+://.*)")

_RELATIVE_FILE_RE = re.compile(r"file://\./", re.IGNORECASE)
_RELATIVE_HTTP_RE = re.compile(r"(https?)://\./")


def find_asset_refs(doc: Document) -> list[list[PathSegment]]:
    """Paths to every asset marker value (each path ends with ``_sanityAsset``)."""
    return find_key_paths(doc, ASSET_KEY)


def validate_asset_import_key(path: list[PathSegment], doc: Document) -> list[PathSegment]:
    _match_asset_import_key(path, doc)
    return path


def _match_asset_import_key(path: list[PathSegment], doc: Document) -> re.Match[str]:
    value = get_in(doc, path)
    match = ASSET_MATCHER.match(value) if isinstance(value, str) else None
    if match is None:
        raise AssetDeclarationError(
            "\n".join(
                [
                    "Asset type is not specified.",
                    f"`{ASSET_KEY}` values must be prefixed with a type, eg image@url or file@url.",
                    f'See document with ID "{doc.get("_id")}", path: {serialize_path(path)}',
                ]
            )
        )
    return match


def get_asset_refs(doc: Document) -> list[AssetRef]:
    refs: list[AssetRef] = []
    for path in find_asset_refs(doc):
        match = _match_asset_import_key(path, doc)
        refs.append(
            AssetRef(
                document_id=doc["_id"],
                path=serialize_path([p for p in path if p != ASSET_KEY]),
                url=match.group(2),
                kind=match.group(1),
            )
        )
    return refs


def unset_asset_refs(doc: Document) -> Document:
    """Strip asset markers (mutates in place).

    A marker that is the only key of its object removes the whole object, so no
    empty placeholder shows up while the import runs; the asset patch recreates
    it with ``setIfMissing``.
    """
    for path in find_asset_refs(doc):
        parent_path = path[:-1]
        parent = get_in(doc, parent_path)
        is_only_key = isinstance(parent, dict) and len(parent) == 1 and ASSET_KEY in parent
        unset_in(doc, parent_path if is_only_key else path)
    return doc


def absolutify_paths(doc: Document, base: str | None = None) -> Document:
    """Resolve relative asset URLs against ``base`` (mutates in place).

    ``file://./images/a.png`` becomes ``file:///abs/base/images/a.png``;
    ``https://./a.png`` becomes ``https://<base>/a.png``. No-op without a base.
    """
    if not base:
        return doc

    file_base = Path(base).resolve().as_uri() + "/"
    for path in find_asset_refs(doc):
        value = get_in(doc, path)
        if not isinstance(value, str):
            continue
        value = _RELATIVE_FILE_RE.sub(lambda _m: file_base, value, count=1)
        value = _RELATIVE_HTTP_RE.sub(lambda m: f"{m.group(1)}://{base}/", value, count=1)
        set_in(doc, path, value)
    return doc


__all__ = [
    "ASSET_KEY",
    "absolutify_paths",
    "find_asset_refs",
    "get_asset_refs",
    "unset_asset_refs",
    "validate_asset_import_key",
]
