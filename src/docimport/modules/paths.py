"""Path helpers for nested document data.

A path is a list of segments: ``str`` for mapping keys, ``int`` for list
indexes. ``serialize_path`` renders one into the store's patch-path syntax
(``body[0].children[2].image``, with numeric-looking keys quoted: ``map["12"]``).
"""

from __future__ import annotations

import re
from typing import Any, Iterator

from docimport.core.types import PathSegment

_NUMERIC_RE = re.compile(r"^\s*([+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?)?\s*$")


def iter_key_paths(value: Any, key: str) -> Iterator[list[PathSegment]]:
    """Yield the path to every occurrence of ``key`` in nested mappings, depth first.

    Each yielded path ends with ``key`` itself.
    """
    yield from _walk(value, key, [])


def _walk(value: Any, key: str, path: list[PathSegment]) -> Iterator[list[PathSegment]]:
    if isinstance(value, dict):
        for k, v in value.items():
            if k == key:
                yield [*path, k]
            yield from _walk(v, key, [*path, k])
    elif isinstance(value, list):
        for i, item in enumerate(value):
            yield from _walk(item, key, [*path, i])


def find_key_paths(value: Any, key: str) -> list[list[PathSegment]]:
    return list(iter_key_paths(value, key))


def get_in(value: Any, path: list[PathSegment]) -> Any:
    """Return the value at ``path``, or ``None`` if any segment is missing."""
    if not path:
        return None
    current = value
    for segment in path:
        if isinstance(current, dict) and isinstance(segment, str):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, list) and isinstance(segment, int):
            if not 0 <= segment < len(current):
                return None
            current = current[segment]
        else:
            return None
    return current


def set_in(value: Any, path: list[PathSegment], new_value: Any) -> None:
    parent = get_in(value, path[:-1]) if len(path) > 1 else value
    leaf = path[-1]
    if isinstance(parent, dict):
        parent[leaf] = new_value
    elif isinstance(parent, list) and isinstance(leaf, int) and 0 <= leaf < len(parent):
        parent[leaf] = new_value


def unset_in(value: Any, path: list[PathSegment]) -> None:
    """Remove the value at ``path``.

    Mapping keys are deleted. List slots are set to ``None`` so sibling
    indexes (and paths already recorded against them) stay valid.
    """
    if not path:
        return
    parent = get_in(value, path[:-1]) if len(path) > 1 else value
    leaf = path[-1]
    if isinstance(parent, dict):
        parent.pop(leaf, None)
    elif isinstance(parent, list) and isinstance(leaf, int) and 0 <= leaf < len(parent):
        parent[leaf] = None


def serialize_path(path: list[PathSegment]) -> str:
    out = ""
    for i, part in enumerate(path):
        if isinstance(part, int):
            out += f"[{part}]"
        elif _NUMERIC_RE.match(part):
            out += f'["{part}"]'
        else:
            out += part if i == 0 else f".{part}"
    return out


__all__ = [
    "find_key_paths",
    "get_in",
    "iter_key_paths",
    "serialize_path",
    "set_in",
    "unset_in",
]
