from __future__ import annotations

import pytest

from docimport.core.exceptions import StoreError
from docimport.modules.batches import (
    RELEASE_IMPORT_ACTION,
    batch_documents,
    document_size,
    import_batch,
    import_batches,
)


def _docs(count: int, *, payload: str = "") -> list[dict]:
    return [{"_id": f"doc{i}", "_type": "t", "payload": payload} for i in range(count)]


class TestBatchDocuments:
    def test_empty_input(self):
        assert batch_documents([]) == []

    def test_respects_byte_ceiling_and_order(self):
        docs = _docs(10, payload="x" * 100)
        size = document_size(docs[0])

        batches = batch_documents(docs, max_bytes=size * 3)

        assert [len(b) for b in batches] == [3, 3, 3, 1]
        assert [d["_id"] for b in batches for d in b] == [d["_id"] for d in docs]

    def test_oversized_document_gets_its_own_batch(self):
        small = {"_id": "small", "_type": "t"}
        big = {"_id": "big", "_type": "t", "payload": "x" * 1000}

        batches = batch_documents([small, big, small], max_bytes=200)

        assert [[d["_id"] for d in b] for b in batches] == [["small"], ["big"], ["small"]]

    def test_default_ceiling_fits_many_small_documents(self):
        assert len(batch_documents(_docs(100))) == 1


@pytest.mark.asyncio
async def test_import_batches_writes_everything(store, make_options, progress_events):
    docs = _docs(5, payload="x" * 50)
    batches = batch_documents(docs, max_bytes=document_size(docs[0]) * 2)

    result = await import_batches(batches, make_options())

    assert result.count == 5
    assert result.imported_ids == frozenset(d["_id"] for d in docs)
    assert set(store.documents) == result.imported_ids
    assert set(store.tags) == {"sanity.import.doc.create"}

    steps = [e for e in progress_events if e.step == "Importing documents"]
    assert steps[0].current == 0
    assert steps[-1].current == steps[-1].total == 3


@pytest.mark.asyncio
async def test_create_if_not_exists_excludes_noops(store, make_options):
    store.documents["doc0"] = {"_id": "doc0", "_type": "t"}
    options = make_options(operation="createIfNotExists")

    result = await import_batch(_docs(3), options)

    assert result.count == 3
    assert result.imported_ids == frozenset({"doc1", "doc2"})


@pytest.mark.asyncio
async def test_conflicts_are_retried(store, make_options):
    store.mutation_errors.append(StoreError("conflict", status_code=409))

    result = await import_batch(_docs(2), make_options(operation="createOrReplace"))

    assert result.count == 2
    assert store.mutate_calls == 2


@pytest.mark.asyncio
async def test_conflicts_are_not_retried_in_create_mode(store, make_options):
    store.mutation_errors.append(StoreError("conflict", status_code=409))

    with pytest.raises(StoreError):
        await import_batch(_docs(2), make_options(operation="create"))
    assert store.mutate_calls == 1


@pytest.mark.asyncio
async def test_non_conflict_errors_are_not_retried(store, make_options):
    store.mutation_errors.append(StoreError("bad request", status_code=400))

    with pytest.raises(StoreError) as exc_info:
        await import_batch(_docs(2), make_options(operation="createOrReplace"))
    assert exc_info.value.status_code == 400
    assert store.mutate_calls == 1


@pytest.mark.asyncio
async def test_gives_up_after_three_conflicts(store, make_options):
    store.mutation_errors.extend(StoreError("conflict", status_code=409) for _ in range(3))

    with pytest.raises(StoreError):
        await import_batch(_docs(1), make_options(operation="createIfNotExists"))
    assert store.mutate_calls == 3


@pytest.mark.asyncio
async def test_release_documents_use_actions(store, make_options):
    release = {"_id": "_.releases.summer", "_type": "system.release", "name": "summer"}
    batch = [release, *_docs(2)]

    result = await import_batch(batch, make_options(releases_operation="replace"))

    assert result.count == 3
    assert "_.releases.summer" in result.imported_ids
    assert store.actions == [
        {
            "actionType": RELEASE_IMPORT_ACTION,
            "releaseId": "summer",
            "attributes": release,
            "ifExists": "replace",
        }
    ]
    assert all("_.releases." not in str(m) for m in store.mutations)


@pytest.mark.asyncio
async def test_release_failure_names_the_document(store, make_options):
    store.action_errors.append(RuntimeError("release exists"))
    release = {"_id": "_.releases.summer", "_type": "system.release", "name": "summer"}

    with pytest.raises(StoreError) as exc_info:
        await import_batch([release], make_options())
    assert "Release import failed for _.releases.summer: release exists" in str(exc_info.value)
