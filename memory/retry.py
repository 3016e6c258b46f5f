"""Retry policy with exponential backoff for backing-store calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from memory.errors import GateClosedError, MemoryValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a failing store call.

    Delays double from ``base_delay`` up to ``max_delay``. Validation errors
    and a closed gate are never retried; they fail the same way every time.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0

    async def call(self, operation: Callable[[], Awaitable[T]], *, label: str = "store call") -> T:
        def _log_retry(state: RetryCallState):
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                f"{label} failed (attempt {state.attempt_number}/{self.max_attempts}): {exc}"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_not_exception_type((MemoryValidationError, GateClosedError)),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await operation()
        raise AssertionError("retry loop exited without a result")


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0, max_delay=0.0)
