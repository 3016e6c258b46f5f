"""Tests for memory cleanup and statistics"""
import pytest

from memory.gate import ConcurrencyGate
from memory.maintenance import DAY_MS, CleanupResult, MemoryMaintenance
from memory.retry import NO_RETRY
from memory.store import MemoryStore


@pytest.fixture
def maintenance(store):
    return MemoryMaintenance(store)


@pytest.mark.asyncio
async def test_cleanup_expires_old_low_confidence_memory(store, maintenance, clock):
    """An unverified 0.3 memory created 100 days ago is soft-deleted"""
    stale_id = await store.save("t1", "guess", "maybe", "preference", confidence=0.3)
    clock.advance(100 * DAY_MS)

    result = await maintenance.cleanup("t1")

    assert result == CleanupResult(expired_removed_count=0, low_confidence_removed_count=1)
    assert await store.get_many("t1") == []
    everything = await store.get_many("t1", include_expired=True)
    assert [r.id for r in everything] == [stale_id]


@pytest.mark.asyncio
async def test_cleanup_keeps_recent_confident_and_verified(store, maintenance, clock):
    await store.save("t1", "confident", 1, "context", confidence=0.9)
    await store.save("t1", "verified", 2, "context", confidence=0.2, verified=True)
    clock.advance(100 * DAY_MS)
    await store.save("t1", "recent", 3, "context", confidence=0.2)

    result = await maintenance.cleanup("t1")

    assert result.low_confidence_removed_count == 0
    assert {r.key for r in await store.get_many("t1")} == {"confident", "verified", "recent"}


@pytest.mark.asyncio
async def test_cleanup_counts_already_expired(store, maintenance, clock):
    memory_id = await store.save("t1", "old", 1, "context")
    await store.soft_delete(memory_id)
    clock.advance(1)

    result = await maintenance.cleanup("t1")

    assert result.expired_removed_count == 1
    assert result.low_confidence_removed_count == 0


@pytest.mark.asyncio
async def test_cleanup_failure_returns_zero_counts(store, maintenance, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("storage down")

    monkeypatch.setattr(store, "get_all", broken)

    assert await maintenance.cleanup("t1") == CleanupResult()


@pytest.mark.asyncio
async def test_statistics(store, maintenance, clock):
    await store.save("t1", "style", "structured", "preference", confidence=0.6)
    await store.save("t1", "subjects", ["art"], "context", confidence=0.8, verified=True)
    gone = await store.save("t1", "grades", [2], "context", confidence=1.0)
    await store.soft_delete(gone)
    await store.save("t2", "other", 1, "skill")

    stats = await maintenance.statistics("t1")

    assert stats.total_memories == 3
    assert stats.memories_by_type == {"preference": 1, "context": 2}
    assert stats.average_confidence == pytest.approx(0.8)
    assert stats.verified_memories == 1
    assert stats.expired_memories == 1
    assert stats.to_dict()["total_memories"] == 3


@pytest.mark.asyncio
async def test_statistics_for_unknown_owner(maintenance):
    stats = await maintenance.statistics("nobody")

    assert stats.total_memories == 0
    assert stats.memories_by_type == {}
    assert stats.average_confidence == 0.0


@pytest.mark.asyncio
async def test_cleanup_reaches_records_beyond_read_limit(storage, clock):
    """Old stale memories are found even behind many newer ones"""
    store = MemoryStore(storage, ConcurrencyGate(4), NO_RETRY, clock=clock, default_limit=20)
    maintenance = MemoryMaintenance(store)
    stale_id = await store.save("t1", "old_guess", "maybe", "preference", confidence=0.3)
    clock.advance(100 * DAY_MS)
    for i in range(store.default_limit):
        await store.save("t1", f"fresh{i}", i, "context", confidence=0.9)

    result = await maintenance.cleanup("t1")

    assert result.low_confidence_removed_count == 1
    assert await store.get_one("t1", "old_guess", "preference") is None
    assert stale_id not in {r.id for r in await store.get_many("t1", touch=False)}

    stats = await maintenance.statistics("t1")
    assert stats.total_memories == store.default_limit + 1
    assert stats.expired_memories == 1
