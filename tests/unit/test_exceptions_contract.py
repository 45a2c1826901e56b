"""Contract tests for the docimport exception hierarchy.

Verifies that:
1. Every error derives from DocImportError
2. All error subclasses have stable, unique error codes
3. Conflict detection only matches HTTP 409
"""

from __future__ import annotations

import pytest

from docimport.core import exceptions as exc
from docimport.core.exceptions import (
    AssetError,
    DocImportError,
    DuplicateIdsError,
    StoreError,
    is_conflict,
)

_ERROR_CLASSES = [
    getattr(exc, name)
    for name in exc.__all__
    if isinstance(getattr(exc, name), type) and issubclass(getattr(exc, name), Exception)
]


@pytest.mark.parametrize("cls", _ERROR_CLASSES, ids=lambda c: c.__name__)
def test_errors_inherit_from_base(cls) -> None:
    assert issubclass(cls, DocImportError)


def test_error_codes_are_stable_and_unique() -> None:
    codes = [cls.code for cls in _ERROR_CLASSES]
    assert all(isinstance(code, str) and code.strip() for code in codes)
    assert len(codes) == len(set(codes))
    assert DocImportError.code == "IMPORT_ERROR"
    assert StoreError.code == "STORE_ERROR"


def test_code_can_be_overridden_per_instance() -> None:
    err = DocImportError("boom", code="CUSTOM")
    assert err.code == "CUSTOM"
    assert str(err) == "boom"
    assert DocImportError.code == "IMPORT_ERROR"


def test_duplicate_ids_message() -> None:
    err = DuplicateIdsError(["a", "b"])
    assert err.duplicates == ["a", "b"]
    assert str(err) == "Found 2 duplicate IDs in the source file:\n- a\n- b"


def test_asset_error_carries_context() -> None:
    err = AssetError("failed", url="https://x/y.png", kind="image", attempts=3)
    assert (err.url, err.kind, err.attempts) == ("https://x/y.png", "image", 3)


def test_is_conflict() -> None:
    assert is_conflict(StoreError("conflict", status_code=409))
    assert not is_conflict(StoreError("server", status_code=500))
    assert not is_conflict(StoreError("unknown"))
    assert not is_conflict(RuntimeError("no status"))
