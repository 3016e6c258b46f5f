"""Memory service - wires storage, extraction, context composition and maintenance."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping, Optional

from loguru import logger

from config.settings import Settings
from core.context_composer import ComposedContext, ContextComposer
from core.runtime import MemoryRuntime, teacher_cache_key
from memory.extractor import TeacherFactExtractor
from memory.maintenance import CleanupResult, MemoryMaintenance, MemoryStatistics
from memory.models import MemoryCandidate, MemoryRecord, MemoryType, now_ms
from memory.storage import MemoryStorage
from memory.store import MemoryStore


class MemoryService:
    """Caller-facing API of the teacher memory engine."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        runtime: MemoryRuntime | None = None,
        storage: MemoryStorage | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings or Settings()
        self.runtime = runtime or MemoryRuntime.from_config(self.settings, clock=clock)
        self.storage = storage or MemoryStorage(self.settings.storage.sqlite_path)

        memory_cfg = self.settings.memory
        cache_cfg = self.settings.cache

        self.store = MemoryStore(
            self.storage,
            self.runtime.gate,
            self.runtime.retry,
            clock=clock,
            default_confidence=memory_cfg.default_confidence,
            default_limit=memory_cfg.max_memories_per_teacher,
        )
        self.store.add_listener(self.runtime.invalidate_owner)

        self.extractor = TeacherFactExtractor()
        self.composer = ContextComposer(
            self.store,
            self.runtime.cache,
            confidence_threshold=memory_cfg.confidence_threshold,
            cache_ttl_ms=cache_cfg.context_ttl_seconds * 1000,
        )
        self.maintenance = MemoryMaintenance(
            self.store,
            confidence_threshold=memory_cfg.confidence_threshold,
            retention_days=memory_cfg.auto_expire_days,
        )

        self._cleanup_task: asyncio.Task | None = None
        self._running = False

    async def initialize(self):
        """Initialize storage and, if enabled, the periodic cleanup loop."""
        await self.storage.initialize()
        self._running = True
        if self.settings.memory.auto_cleanup:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Memory service initialized")

    # ── store operations ───────────────────────────────

    async def save(
        self,
        owner_id: str,
        key: str,
        value: Any,
        memory_type: MemoryType | str,
        **options: Any,
    ) -> str:
        return await self.store.save(owner_id, key, value, memory_type, **options)

    async def get_many(
        self,
        owner_id: str,
        memory_type: MemoryType | str | None = None,
        **options: Any,
    ) -> list[MemoryRecord]:
        return await self.store.get_many(owner_id, memory_type, **options)

    async def get_one(
        self,
        owner_id: str,
        key: str,
        memory_type: MemoryType | str,
    ) -> Optional[MemoryRecord]:
        return await self.store.get_one(owner_id, key, memory_type)

    async def update(self, memory_id: str, fields: Mapping[str, Any]):
        await self.store.update(memory_id, fields)

    async def soft_delete(self, memory_id: str):
        await self.store.soft_delete(memory_id)

    async def verify(self, memory_id: str):
        """Mark a memory as confirmed by the teacher; exempts it from cleanup."""
        await self.store.update(memory_id, {"verified": True})

    # ── extraction ─────────────────────────────────────

    def extract(self, text: str) -> list[MemoryCandidate]:
        return self.extractor.extract(text)

    async def ingest_message(self, owner_id: str, message: dict) -> list[str]:
        """Extract facts from one chat message and merge them into the store."""
        result = self.extractor.extract_from_message(message)
        saved: list[str] = []
        for candidate in result.candidates:
            memory_id = await self.store.save(
                owner_id,
                candidate.key,
                candidate.value,
                candidate.memory_type,
                confidence=candidate.confidence,
                source_session_id=result.source_session_id,
            )
            saved.append(memory_id)
        if saved:
            logger.info(f"Stored {len(saved)} extracted memories for {owner_id}")
        return saved

    # ── context ────────────────────────────────────────

    async def compose(self, owner_id: str, messages: list[dict]) -> ComposedContext:
        return await self.composer.compose(owner_id, messages)

    async def get_teacher_preferences(self, owner_id: str) -> dict[str, Any]:
        """Live preference memories as ``{key: value}``, cached for an hour."""
        cache_key = teacher_cache_key(owner_id, "prefs")
        cached = self.runtime.cache.get(cache_key)
        if cached is not None:
            return dict(cached)

        records = await self.store.get_many(owner_id, MemoryType.PREFERENCE)
        preferences = {record.key: record.value for record in records}
        self.runtime.cache.set(
            cache_key,
            preferences,
            self.settings.cache.preferences_ttl_seconds * 1000,
        )
        return dict(preferences)

    # ── maintenance ────────────────────────────────────

    async def cleanup(self, owner_id: str) -> CleanupResult:
        return await self.maintenance.cleanup(owner_id)

    async def statistics(self, owner_id: str) -> MemoryStatistics:
        return await self.maintenance.statistics(owner_id)

    async def cleanup_all(self) -> dict[str, CleanupResult]:
        """Run cleanup for every owner with stored memories."""
        try:
            owner_ids = await self.store.list_owner_ids()
        except Exception as exc:
            logger.error(f"Failed to list memory owners for cleanup: {exc}")
            return {}
        return {owner_id: await self.maintenance.cleanup(owner_id) for owner_id in owner_ids}

    def metrics(self) -> dict:
        return self.runtime.metrics()

    async def _cleanup_loop(self):
        """Periodic cleanup loop."""
        interval = self.settings.memory.cleanup_interval_hours * 3600
        while self._running:
            await asyncio.sleep(interval)
            try:
                results = await self.cleanup_all()
                logger.debug(f"Scheduled memory cleanup covered {len(results)} owners")
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error(f"Scheduled memory cleanup failed: {exc}")

    async def shutdown(self):
        """Stop background work and release resources."""
        self._running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
        await self.store.drain()
        await self.runtime.shutdown()
        await self.storage.cleanup()
