"""Import sources: streams, in-memory arrays and dataset folders.

``import_dataset`` is the public entry point. It routes the source to one of
three importers, which feed each other:

- a stream is gunzipped if needed; a tarball is extracted to a temporary
  folder and imported from there, anything else is parsed as NDJSON;
- a folder holds exactly one ``*.ndjson`` file plus optional ``images/``,
  ``files/`` and ``assets.json``, and is imported through its data file stream;
- an array goes straight into the pipeline.
"""

from __future__ import annotations

import asyncio
import copy
import gzip
import io
import json
import logging
import os
import tarfile
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import IO, Any

from docimport.core.config import ImportOptions, validate_options
from docimport.core.exceptions import (
    DocumentValidationError,
    InputError,
    ReplacementCharError,
)
from docimport.core.types import Document, ImportResult

from .documents import validate_document
from .pipeline import import_documents
from .validation import validate_line_for_replacement_char

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
TAR_MAGIC = b"ustar"
TAR_MAGIC_OFFSET = 257
TAR_PEEK_SIZE = TAR_MAGIC_OFFSET + len(TAR_MAGIC)

ASSET_MAP_FILE = "assets.json"
FIRST_LINE_HINT = "\n\nMake sure this is valid ndjson (one JSON-document *per line*)"


async def import_dataset(
    source: Any,
    options: ImportOptions | Mapping[str, Any],
) -> ImportResult:
    """Import documents (and their assets) from ``source``.

    Args:
        source: A readable binary (or text) stream of NDJSON, optionally
            gzipped and/or tarred; a list of documents; or the path of a
            dataset folder.
        options: ``ImportOptions`` or a mapping of option values.

    Returns:
        The number of imported documents and any tolerated asset failures.

    Raises:
        ConfigurationError: If ``options`` are invalid.
        InputError: If ``source`` is none of the supported kinds.
    """
    opts = validate_options(options)

    if _is_readable(source):
        return await import_from_stream(source, opts)

    if isinstance(source, list):
        # The pipeline normalizes documents in place; keep the caller's copy intact
        return await import_documents(copy.deepcopy(source), opts)

    if isinstance(source, (str, os.PathLike)):
        return await import_from_folder(source, opts)

    raise InputError(
        "Input does not seem to be a readable stream, an array or a path to a directory"
    )


async def import_from_stream(stream: IO[Any], options: ImportOptions) -> ImportResult:
    logger.debug("Importing from stream")
    reader, is_tarball = await asyncio.to_thread(_open_stream, stream)

    if is_tarball:
        return await _import_from_tarball(reader, options)

    documents = await asyncio.to_thread(read_ndjson, reader, options)
    return await import_documents(documents, options)


async def import_from_folder(
    from_dir: str | os.PathLike[str],
    options: ImportOptions,
) -> ImportResult:
    """Import a dataset folder (one ``*.ndjson`` data file plus assets)."""
    folder = Path(from_dir)
    logger.debug("Importing from folder %s", folder)

    data_files = sorted(folder.glob("*.ndjson"))
    if not data_files:
        raise InputError(f"No .ndjson file found in {folder}")
    if len(data_files) > 1:
        raise InputError(
            f"More than one .ndjson file found in {folder} - only one is supported"
        )

    asset_map = _read_asset_map(folder / ASSET_MAP_FILE)

    unreferenced_assets = [
        *(f"image#{p.resolve().as_uri()}" for p in _list_files(folder / "images")),
        *(f"file#{p.resolve().as_uri()}" for p in _list_files(folder / "files")),
    ]
    logger.debug("Queueing %d assets", len(unreferenced_assets))

    stream_options = options.model_copy(
        update={
            "unreferenced_assets": unreferenced_assets,
            "assets_base": str(folder),
            "asset_map": asset_map,
        }
    )

    data_file = data_files[0]
    logger.debug("Importing from file %s", data_file)
    with data_file.open("rb") as stream:
        return await import_from_stream(stream, stream_options)


async def _import_from_tarball(reader: IO[bytes], options: ImportOptions) -> ImportResult:
    # The extracted folder only lives for the duration of the import
    with tempfile.TemporaryDirectory(prefix="docimport-", ignore_cleanup_errors=True) as output:
        logger.debug("Stream is a tarball, extracting to %s", output)
        await asyncio.to_thread(_extract_tarball, reader, output)

        logger.debug("Tarball extracted, looking for ndjson")
        data_files = _find_ndjson_files(Path(output))
        if not data_files:
            raise InputError("ndjson-file not found in tarball")

        return await import_from_folder(data_files[0].parent, options)


def read_ndjson(stream: IO[bytes], options: ImportOptions) -> list[Document]:
    """Parse an NDJSON byte stream into documents.

    Blank lines are skipped. Line numbers in errors are 1-based.

    Raises:
        ReplacementCharError: If a line contains U+FFFD (unless allowed).
        DocumentValidationError: If a line is not valid JSON or not a usable
            document.
    """
    documents: list[Document] = []
    text = io.TextIOWrapper(stream, encoding="utf-8", errors="replace", newline=None)

    for line_number, raw in enumerate(text, start=1):
        line = raw.strip()
        if not line:
            continue

        if not options.allow_replacement_characters:
            problem = validate_line_for_replacement_char(line, line_number)
            if problem:
                raise ReplacementCharError(problem)

        try:
            doc = json.loads(line)
        except ValueError as e:
            raise DocumentValidationError(
                _line_error(line_number, str(e)), line=line_number
            ) from e

        err = validate_document(doc)
        if err:
            raise DocumentValidationError(_line_error(line_number, err), line=line_number)
        documents.append(doc)

    logger.debug("Read %d documents from stream", len(documents))
    return documents


def _line_error(line_number: int, message: str) -> str:
    suffix = FIRST_LINE_HINT if line_number == 1 else ""
    return f"Failed to parse line #{line_number}: {message}{suffix}"


def is_tar(head: bytes) -> bool:
    return head[TAR_MAGIC_OFFSET:TAR_PEEK_SIZE] == TAR_MAGIC


def _is_readable(source: Any) -> bool:
    return not isinstance(source, (str, bytes, os.PathLike)) and callable(
        getattr(source, "read", None)
    )


def _open_stream(stream: IO[Any]) -> tuple[IO[bytes], bool]:
    """Return a byte reader over ``stream`` (gunzipped if needed) and whether it is a tarball."""
    head, reader = _peek(stream, len(GZIP_MAGIC))
    if head == GZIP_MAGIC:
        logger.debug("Stream is gzipped")
        reader = gzip.GzipFile(fileobj=reader, mode="rb")

    head, reader = _peek(reader, TAR_PEEK_SIZE)
    return reader, is_tar(head)


def _peek(stream: IO[Any], size: int) -> tuple[bytes, io.BufferedReader]:
    """Read up to ``size`` bytes without consuming them from the returned reader."""
    head = b""
    while len(head) < size:
        chunk = _to_bytes(stream.read(size - len(head)))
        if not chunk:
            break
        head += chunk
    return head, io.BufferedReader(_ChainedStream(head, stream))


def _to_bytes(data: bytes | str | None) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        return data.encode("utf-8")
    return data


class _ChainedStream(io.RawIOBase):
    """Replays ``head`` before continuing with ``rest``.

    ``rest`` may be a text stream; its output is encoded as UTF-8.
    """

    def __init__(self, head: bytes, rest: IO[Any]) -> None:
        self._pending = head
        self._rest = rest

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        if not self._pending:
            self._pending = _to_bytes(self._rest.read(len(buffer)))
            if not self._pending:
                return 0

        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


def _extract_tarball(reader: IO[bytes], output: str) -> None:
    try:
        with tarfile.open(fileobj=reader, mode="r|") as archive:
            archive.extractall(output, filter="data")
    except tarfile.TarError as e:
        raise InputError(f"Failed to extract tarball: {e}") from e


def _find_ndjson_files(root: Path) -> list[Path]:
    # At most one directory level below the extraction root
    return [*sorted(root.glob("*.ndjson")), *sorted(root.glob("*/*.ndjson"))]


def _list_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file())


def _read_asset_map(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug("No usable asset map at %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


__all__ = [
    "import_dataset",
    "import_from_folder",
    "import_from_stream",
    "is_tar",
    "read_ndjson",
]
