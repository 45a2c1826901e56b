from __future__ import annotations

import asyncio

import httpx
import pytest

from docimport.core.exceptions import AssetError, StoreError, is_conflict
from docimport.core.types import ProgressEvent
from docimport.utils.concurrency import map_concurrent
from docimport.utils.fetch import AssetFetcher
from docimport.utils.progress import progress_stepper
from docimport.utils.retry import retry_on_failure
from docimport.utils.tags import suffix_tag


class TestRetryOnFailure:
    def test_succeeds_after_transient_failures(self):
        calls = 0

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise RuntimeError("transient")
            return "ok"

        assert asyncio.run(retry_on_failure(flaky, delay=0)) == "ok"
        assert calls == 3

    def test_gives_up_after_max_tries(self):
        calls = 0

        async def failing() -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("down")

        with pytest.raises(RuntimeError, match="down"):
            asyncio.run(retry_on_failure(failing, max_tries=2, delay=0))
        assert calls == 2

    def test_non_retriable_errors_propagate_immediately(self):
        calls = 0

        async def failing() -> None:
            nonlocal calls
            calls += 1
            raise StoreError("bad request", status_code=400)

        with pytest.raises(StoreError):
            asyncio.run(retry_on_failure(failing, delay=0, is_retriable=is_conflict))
        assert calls == 1


class TestMapConcurrent:
    def test_preserves_order_and_bounds_concurrency(self):
        in_flight = 0
        peak = 0

        async def work(n: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001 * (n % 3))
            in_flight -= 1
            return n * 2

        result = asyncio.run(map_concurrent(range(20), work, concurrency=4))

        assert result == [n * 2 for n in range(20)]
        assert peak <= 4

    def test_first_failure_propagates(self):
        async def work(n: int) -> int:
            if n == 3:
                raise ValueError("bad item")
            await asyncio.sleep(0)
            return n

        with pytest.raises(ValueError, match="bad item"):
            asyncio.run(map_concurrent(range(10), work, concurrency=2))

    def test_empty(self):
        assert asyncio.run(map_concurrent([], lambda n: n, concurrency=3)) == []


def test_progress_stepper_emits_initial_event_and_caps():
    events: list[ProgressEvent] = []
    advance = progress_stepper(events.append, step="Importing documents", total=2)

    advance()
    advance()
    advance()

    assert [(e.current, e.total) for e in events] == [(0, 2), (1, 2), (2, 2), (2, 2)]
    assert {e.step for e in events} == {"Importing documents"}


@pytest.mark.parametrize(
    ("tag", "expected"),
    [
        ("sanity.import", "sanity.import.doc.create"),
        ("sanity.import.", "sanity.import.doc.create"),
        ("migration..", "migration.doc.create"),
    ],
)
def test_suffix_tag(tag, expected):
    assert suffix_tag(tag, "doc.create") == expected


class TestAssetFetcher:
    @pytest.mark.asyncio
    async def test_hashes_remote_content(self, asset_host):
        asset_host.files["https://example.com/a.txt"] = b"hello"
        fetcher = AssetFetcher(asset_host.client(), retry_delay=0)

        hashed = await fetcher.get_hashed_buffer("https://example.com/a.txt")

        assert hashed.buffer == b"hello"
        assert hashed.sha1hash == "aaf4c61ddcc5e8a2dabede0f3b482cd9aea9434d"

    @pytest.mark.asyncio
    async def test_reads_local_files(self, tmp_path, asset_host):
        path = tmp_path / "with space.txt"
        path.write_bytes(b"hello")
        fetcher = AssetFetcher(asset_host.client(), retry_delay=0)

        hashed = await fetcher.get_hashed_buffer(path.as_uri())

        assert hashed.sha1hash == "aaf4c61ddcc5e8a2dabede0f3b482cd9aea9434d"

    @pytest.mark.asyncio
    async def test_missing_local_file(self, tmp_path, asset_host):
        fetcher = AssetFetcher(asset_host.client(), retry_delay=0)
        with pytest.raises(AssetError):
            await fetcher.get_hashed_buffer((tmp_path / "nope.png").as_uri())

    @pytest.mark.asyncio
    async def test_url_exists(self, asset_host):
        asset_host.files["https://example.com/a.txt"] = b"hello"
        fetcher = AssetFetcher(asset_host.client(), retry_delay=0)

        assert await fetcher.url_exists("https://example.com/a.txt")
        assert not await fetcher.url_exists("https://example.com/b.txt")

    @pytest.mark.asyncio
    async def test_url_exists_retries_transport_errors(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = AssetFetcher(client, retry_delay=0)

        assert await fetcher.url_exists("https://example.com/a.txt")
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_url_exists_raises_last_transport_error(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError(f"refused #{attempts}", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = AssetFetcher(client, retry_delay=0)

        with pytest.raises(httpx.ConnectError, match="refused #5"):
            await fetcher.url_exists("https://example.com/a.txt")
        assert attempts == 5
