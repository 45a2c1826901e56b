"""Import pipeline stages."""

from __future__ import annotations

from .pipeline import import_documents
from .sources import import_dataset, import_from_folder, import_from_stream

__all__ = [
    "import_dataset",
    "import_documents",
    "import_from_folder",
    "import_from_stream",
]
