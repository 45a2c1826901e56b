"""Request tag helpers."""

from __future__ import annotations


def suffix_tag(tag: str, suffix: str) -> str:
    """Append an operation name: ``sanity.import`` -> ``sanity.import.doc.create``."""
    return f"{tag.rstrip('.')}.{suffix}"


__all__ = ["suffix_tag"]
