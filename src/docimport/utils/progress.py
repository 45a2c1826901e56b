"""Progress stepping for pipeline stages."""

from __future__ import annotations

from typing import Callable

from docimport.core.types import ProgressEvent

ProgressCallback = Callable[[ProgressEvent], None]


def progress_stepper(on_progress: ProgressCallback, *, step: str, total: int) -> Callable[[], None]:
    """Emit ``current=0`` for ``step`` now and return a function that advances it.

    Each call reports one more completed unit, capped at ``total``. The stepper
    owns its counter, so concurrent stages never share progress state.
    """
    current = -1

    def advance() -> None:
        nonlocal current
        current += 1
        on_progress(ProgressEvent(step=step, current=min(current, total), total=total))

    advance()
    return advance


__all__ = ["ProgressCallback", "progress_stepper"]
