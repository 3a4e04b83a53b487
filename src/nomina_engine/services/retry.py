"""Bounded retry policy for snapshot restores."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an async operation a fixed number of times with linear backoff.

    The delay before attempt ``n + 1`` is ``backoff_seconds * n``. When every
    attempt fails, :class:`tenacity.RetryError` is raised carrying the last
    attempt.
    """

    max_attempts: int = 3
    backoff_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return self.backoff_seconds * attempt

    def retrying(
        self,
        description: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> AsyncRetrying:
        def log_failure(state: RetryCallState) -> None:
            logger.warning(
                "%s failed (attempt %d/%d): %s",
                description,
                state.attempt_number,
                self.max_attempts,
                state.outcome.exception() if state.outcome else None,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
            retry=retry_if_exception_type(Exception),
            before_sleep=log_failure,
            sleep=sleep,
            reraise=False,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """Run ``operation`` until it succeeds or attempts run out.

        Raises:
            tenacity.RetryError: Every attempt failed
        """
        return await self.retrying(description, sleep=sleep)(operation)
