"""Concurrency gate - caps simultaneous backing-store operations."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from loguru import logger

from memory.errors import GateClosedError

T = TypeVar("T")

DEFAULT_MAX_CONCURRENT = 10


class ConcurrencyGate:
    """
    Admission control for async operations.

    At most ``max_concurrent`` operations run at once. Excess callers wait in
    arrival order; when a running operation finishes (success or failure) its
    slot is handed straight to the oldest waiter, so nobody starves.
    """

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self._active = 0
        self._waiters: deque[asyncio.Future] = deque()
        self._idle: asyncio.Event | None = None
        self._closed = False

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` once a slot is free."""
        if self._closed:
            raise GateClosedError("concurrency gate is shut down")

        await self._acquire()
        try:
            return await operation()
        finally:
            self._release()

    async def batch(self, operations: Iterable[Callable[[], Awaitable[T]]]) -> list[T]:
        """Run all operations through the gate; results keep input order."""
        return list(await asyncio.gather(*(self.run(op) for op in operations)))

    def metrics(self) -> dict[str, int]:
        return {
            "active": self._active,
            "queued": self.queued,
            "max_concurrent": self.max_concurrent,
        }

    async def drain(self):
        """Wait until nothing is running or queued."""
        while self._active or self.queued:
            if self._idle is None or self._idle.is_set():
                self._idle = asyncio.Event()
            await self._idle.wait()

    async def shutdown(self):
        """Refuse new work and wait for in-flight work to finish."""
        self._closed = True
        await self.drain()
        logger.info("Concurrency gate shut down")

    async def _acquire(self):
        if self._active < self.max_concurrent and not self.queued:
            self._active += 1
            return

        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        logger.debug(f"Gate full ({self._active}/{self.max_concurrent}), queued={self.queued}")
        try:
            await fut
        except asyncio.CancelledError:
            # Slot already handed over before the cancel landed: pass it on
            if fut.done() and not fut.cancelled():
                self._release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
                self._notify_idle()
            raise

    def _release(self):
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # Slot transfers to the waiter, active count unchanged
                fut.set_result(None)
                return

        self._active -= 1
        self._notify_idle()

    def _notify_idle(self):
        if self._idle is not None and not self._active and not self.queued:
            self._idle.set()
