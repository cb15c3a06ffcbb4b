"""Bounded exponential-backoff retry for calls into unstable collaborators."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from config.settings import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_INITIAL_DELAY_SECONDS,
    DEFAULT_MAX_DELAY_SECONDS,
    DEFAULT_MAX_RETRIES,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            backoff_factor=settings.backoff_factor,
        )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """Await ``operation`` until it succeeds or the attempts run out.

    The last error is re-raised unchanged. ``on_retry`` receives the error and
    the 1-based index of the attempt that just failed; it is only an observer.
    ``should_retry`` can stop early on errors that another attempt won't fix.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, int(policy.max_retries))
    delay = float(policy.initial_delay)
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if attempt >= attempts:
                raise
            if should_retry is not None and not should_retry(exc):
                raise
            if on_retry is not None:
                try:
                    on_retry(exc, attempt)
                except Exception:
                    logger.exception("[RETRY] observer failed attempt=%s", attempt)
            wait_for = min(delay, policy.max_delay)
            logger.info("[RETRY] attempt=%s/%s delay=%.3fs error=%s", attempt, attempts, wait_for, exc)
            await asyncio.sleep(wait_for)
            delay = delay * policy.backoff_factor
