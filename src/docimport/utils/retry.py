"""Retry helper with linear backoff."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_DELAY = 0.15  # seconds, multiplied by the attempt number
DEFAULT_MAX_TRIES = 3


def _always(_: BaseException) -> bool:
    return True


async def retry_on_failure(
    operation: Callable[[], Awaitable[T]],
    *,
    max_tries: int = DEFAULT_MAX_TRIES,
    delay: float = DEFAULT_RETRY_DELAY,
    is_retriable: Callable[[BaseException], bool] = _always,
) -> T:
    """Run ``operation`` until it succeeds or ``max_tries`` is exhausted.

    Waits ``delay * attempt`` seconds between attempts. Errors for which
    ``is_retriable`` returns False propagate immediately.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retriable(e):
                logger.debug("Encountered error which is not retriable, giving up: %s", e)
                raise
            if attempt >= max_tries:
                logger.debug(
                    "Error encountered, max retries hit - giving up (attempt #%d)", attempt
                )
                raise

            wait = delay * attempt
            logger.debug(
                "Error encountered, waiting %.2fs before retrying (attempt #%d): %s",
                wait,
                attempt,
                e,
            )
            await asyncio.sleep(wait)
            attempt += 1


__all__ = ["DEFAULT_MAX_TRIES", "DEFAULT_RETRY_DELAY", "retry_on_failure"]
