"""Process-wide runtime context: the shared TTL cache and concurrency gate."""

from __future__ import annotations

from typing import Callable

from loguru import logger

from memory.cache import TTLCache
from memory.gate import ConcurrencyGate
from memory.models import now_ms
from memory.retry import RetryPolicy


def memory_cache_key(owner_id: str, name: str) -> str:
    return f"memory:{owner_id}:{name}"


def teacher_cache_key(owner_id: str, name: str) -> str:
    return f"teacher:{owner_id}:{name}"


class MemoryRuntime:
    """
    Built once at startup and handed to every consumer.

    Owns the shared cache and gate so their lifetime is explicit;
    ``shutdown`` drains in-flight work and empties the cache.
    """

    def __init__(
        self,
        cache: TTLCache | None = None,
        gate: ConcurrencyGate | None = None,
        retry: RetryPolicy | None = None,
    ):
        self.cache = cache or TTLCache()
        self.gate = gate or ConcurrencyGate()
        self.retry = retry or RetryPolicy()

    @classmethod
    def from_config(cls, settings, clock: Callable[[], int] = now_ms) -> "MemoryRuntime":
        """Build from a ``Settings`` object (cache, gate and retry sections)."""
        return cls(
            cache=TTLCache(
                default_ttl_ms=settings.cache.default_ttl_seconds * 1000,
                clock=clock,
            ),
            gate=ConcurrencyGate(max_concurrent=settings.gate.max_concurrent),
            retry=RetryPolicy(
                max_attempts=settings.retry.max_attempts,
                base_delay=settings.retry.base_delay_seconds,
                max_delay=settings.retry.max_delay_seconds,
            ),
        )

    def invalidate_owner(self, owner_id: str) -> int:
        """Drop every cached entry derived from one owner's memories."""
        removed = self.cache.invalidate(memory_cache_key(owner_id, "*"))
        removed += self.cache.invalidate(teacher_cache_key(owner_id, "*"))
        return removed

    def metrics(self) -> dict:
        return {
            "cache": self.cache.stats().to_dict(),
            "gate": self.gate.metrics(),
        }

    async def shutdown(self):
        """Drain the gate and empty the cache."""
        await self.gate.shutdown()
        self.cache.clear()
        logger.info("Memory runtime shut down")
