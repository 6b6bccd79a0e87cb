"""Retry budget for flaky network primitives."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

import httpx

from assetsync.exceptions import LocalErrorKind, LocalProviderError, TransferError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRIES = 2


def is_retryable(exc: BaseException) -> bool:
    """Return True for failures that may succeed on a second attempt."""
    if isinstance(exc, LocalProviderError):
        return exc.kind == LocalErrorKind.OTHER
    return isinstance(exc, (TransferError, httpx.TransportError))


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int = DEFAULT_RETRIES,
    description: str = "request",
    delay: float = 0.0,
) -> T:
    """Await ``operation()``, retrying retryable failures up to ``retries`` extra times.

    The last failure is re-raised once the budget is exhausted. Non-retryable
    failures propagate immediately.
    """
    for attempt in range(retries + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= retries:
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying",
                description,
                attempt + 1,
                retries + 1,
                exc,
            )
            if delay:
                await asyncio.sleep(delay * (2**attempt))
    raise AssertionError("unreachable")  # pragma: no cover
