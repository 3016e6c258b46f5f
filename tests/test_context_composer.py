"""Tests for context composition"""
import pytest

from core.context_composer import ContextComposer, build_context_text
from core.runtime import MemoryRuntime
from memory.cache import TTLCache
from memory.errors import StorageError
from memory.models import MemoryRecord, MemoryType, MemoryValue

MESSAGES = [{"role": "user", "content": "Can you help me plan a lesson?"}]


@pytest.fixture
def runtime(clock):
    return MemoryRuntime(cache=TTLCache(clock=clock))


@pytest.fixture
def composer(store, runtime):
    store.add_listener(runtime.invalidate_owner)
    return ContextComposer(store, runtime.cache)


def test_build_context_text_sections():
    memories = [
        MemoryRecord("1", "t1", MemoryType.PATTERN, "wrap_up", MemoryValue.wrap("exit tickets")),
        MemoryRecord("2", "t1", MemoryType.PREFERENCE, "teaching_style", MemoryValue.wrap("structured")),
        MemoryRecord("3", "t1", MemoryType.CONTEXT, "grade_levels", MemoryValue.wrap([3, 4])),
        MemoryRecord("4", "t1", MemoryType.SKILL, "tools", MemoryValue.wrap({"slides": True})),
    ]

    text = build_context_text(memories)

    assert text == (
        "Teacher Context (use to personalize responses): "
        'Teaching preferences: teaching_style: "structured". '
        "Teaching context: grade_levels: [3, 4]. "
        'Teaching skills/patterns: wrap_up: "exit tickets", tools: {"slides": true}.'
    )


def test_build_context_text_empty():
    assert build_context_text([]) == ""


@pytest.mark.asyncio
async def test_compose_without_memories_returns_input(composer):
    result = await composer.compose("t1", MESSAGES)

    assert result.augmented_messages is MESSAGES
    assert result.context_text == ""
    assert result.applied_memories == []


@pytest.mark.asyncio
async def test_compose_prepends_system_message(store, composer, clock):
    await store.save("t1", "teaching_style", "collaborative", "preference", confidence=0.8)
    clock.advance(1)
    await store.save("t1", "subjects", ["math", "science"], "context", confidence=0.9)
    clock.advance(1)
    await store.save("t1", "low", "ignored", "skill", confidence=0.5)

    result = await composer.compose("t1", MESSAGES)

    assert len(result.augmented_messages) == 2
    system = result.augmented_messages[0]
    assert system["role"] == "system"
    assert system["metadata"] == {"type": "teacher_memory", "memory_count": 2}
    assert system["content"] == (
        "Teacher Context (use to personalize responses): "
        'Teaching preferences: teaching_style: "collaborative". '
        'Teaching context: subjects: ["math", "science"].'
    )
    assert result.augmented_messages[1:] == MESSAGES
    assert {m.key for m in result.applied_memories} == {"teaching_style", "subjects"}
    # Input list is not mutated
    assert len(MESSAGES) == 1


@pytest.mark.asyncio
async def test_compose_degrades_on_storage_failure(store, composer, monkeypatch):
    async def broken(*args, **kwargs):
        raise StorageError("Failed to get memories", OSError("unreachable"))

    monkeypatch.setattr(store, "get_many", broken)

    result = await composer.compose("t1", MESSAGES)

    assert result.augmented_messages is MESSAGES


@pytest.mark.asyncio
async def test_compose_uses_cache_until_owner_changes(store, storage, composer, monkeypatch):
    await store.save("t1", "teaching_style", "structured", "preference")
    await composer.compose("t1", MESSAGES)

    real_query = storage.query
    calls = []

    async def counting(shape):
        calls.append(shape)
        return await real_query(shape)

    monkeypatch.setattr(storage, "query", counting)

    cached = await composer.compose("t1", MESSAGES)
    assert calls == []
    assert "structured" in cached.context_text

    # A write invalidates the owner's cached context
    await store.save("t1", "teaching_style", "flexible", "preference")
    fresh = await composer.compose("t1", MESSAGES)
    assert "flexible" in fresh.context_text


@pytest.mark.asyncio
async def test_cached_snapshot_drops_records_that_expired(store, composer, clock):
    await store.save("t1", "k", "v", "preference", expires_at=clock.now + 100)

    first = await composer.compose("t1", MESSAGES)
    assert len(first.applied_memories) == 1

    clock.advance(100)
    second = await composer.compose("t1", MESSAGES)

    assert second.augmented_messages is MESSAGES
