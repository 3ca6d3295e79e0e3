"""Exponential backoff for transient network failures."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import aiohttp

from .errors import TransientRpcError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behaviour."""

    max_retries: int = 3
    retry_delay: float = 1.0
    backoff_factor: float = 2.0
    retry_on_status: tuple[int, ...] = (429, 500, 502, 503, 504)

    def delay_for(self, attempt: int) -> float:
        return self.retry_delay * (self.backoff_factor**attempt)


def is_transient(error: BaseException) -> bool:
    """True for errors worth retrying at the call site."""
    return isinstance(
        error, (TransientRpcError, aiohttp.ClientConnectionError, asyncio.TimeoutError)
    )


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    retryable: Callable[[BaseException], bool] = is_transient,
    description: str = "call",
) -> T:
    """Await ``fn`` until it succeeds, retrying retryable errors with backoff.

    Non-retryable errors propagate immediately. After ``max_retries`` retries
    the last error is raised.
    """
    config = config or RetryConfig()
    for attempt in range(config.max_retries + 1):
        try:
            return await fn()
        except Exception as e:
            if not retryable(e) or attempt == config.max_retries:
                raise
            delay = config.delay_for(attempt)
            logger.warning(
                "%s failed (%s), retrying in %.1fs (%d/%d)",
                description, e, delay, attempt + 1, config.max_retries,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
