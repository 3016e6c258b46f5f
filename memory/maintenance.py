"""Memory maintenance - expiry sweep and per-owner statistics."""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from memory.store import MemoryStore

DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class CleanupResult:
    expired_removed_count: int = 0
    low_confidence_removed_count: int = 0


@dataclass(frozen=True)
class MemoryStatistics:
    total_memories: int = 0
    memories_by_type: dict[str, int] = field(default_factory=dict)
    average_confidence: float = 0.0
    verified_memories: int = 0
    expired_memories: int = 0

    def to_dict(self) -> dict:
        return {
            "total_memories": self.total_memories,
            "memories_by_type": dict(self.memories_by_type),
            "average_confidence": self.average_confidence,
            "verified_memories": self.verified_memories,
            "expired_memories": self.expired_memories,
        }


class MemoryMaintenance:
    """Best-effort housekeeping; never raises to its caller."""

    def __init__(
        self,
        store: MemoryStore,
        *,
        confidence_threshold: float = 0.7,
        retention_days: int = 90,
    ):
        self.store = store
        self.confidence_threshold = confidence_threshold
        self.retention_days = retention_days

    async def cleanup(self, owner_id: str) -> CleanupResult:
        """Expire stale, unverified, low-confidence memories for one owner."""
        try:
            records = await self.store.get_all(owner_id)
            now = self.store.now()
            cutoff = now - self.retention_days * DAY_MS

            expired = [record for record in records if record.is_expired(now)]
            stale = [
                record
                for record in records
                if not record.verified
                and record.confidence < self.confidence_threshold
                and record.created_at < cutoff
                and not record.is_expired(now)
            ]

            if stale:
                await self.store.soft_delete_many(record.id for record in stale)

            logger.info(
                f"Memory cleanup for {owner_id}: {len(expired)} expired, "
                f"{len(stale)} low confidence removed"
            )
            return CleanupResult(
                expired_removed_count=len(expired),
                low_confidence_removed_count=len(stale),
            )
        except Exception as exc:
            logger.error(f"Failed to cleanup memories for {owner_id}: {exc}")
            return CleanupResult()

    async def statistics(self, owner_id: str) -> MemoryStatistics:
        """Counts by type, average confidence, verified and expired totals."""
        try:
            records = await self.store.get_all(owner_id)
        except Exception as exc:
            logger.error(f"Failed to get memory statistics for {owner_id}: {exc}")
            return MemoryStatistics()

        now = self.store.now()
        by_type: dict[str, int] = {}
        for record in records:
            by_type[record.memory_type.value] = by_type.get(record.memory_type.value, 0) + 1

        total = len(records)
        return MemoryStatistics(
            total_memories=total,
            memories_by_type=by_type,
            average_confidence=sum(r.confidence for r in records) / total if total else 0.0,
            verified_memories=sum(1 for r in records if r.verified),
            expired_memories=sum(1 for r in records if r.is_expired(now)),
        )
