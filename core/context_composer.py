"""Context composer - prepends a teacher memory card to a conversation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from core.runtime import memory_cache_key
from memory.cache import TTLCache
from memory.models import MemoryRecord, MemoryType
from memory.store import MemoryStore

CONTEXT_LABEL = "Teacher Context (use to personalize responses)"
MEMORY_MESSAGE_TYPE = "teacher_memory"

# (section title, memory types rendered in it)
_SECTIONS = (
    ("Teaching preferences", (MemoryType.PREFERENCE,)),
    ("Teaching context", (MemoryType.CONTEXT,)),
    ("Teaching skills/patterns", (MemoryType.SKILL, MemoryType.PATTERN)),
)


@dataclass
class ComposedContext:
    """Result of composing memory context for one conversation turn."""

    augmented_messages: list[dict]
    context_text: str = ""
    applied_memories: list[MemoryRecord] = field(default_factory=list)


def _render_value(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def build_context_text(memories: list[MemoryRecord]) -> str:
    """Render memories into the prompt text; empty string when nothing to say."""
    sections: list[str] = []
    for title, types in _SECTIONS:
        items = [m for m in memories if m.memory_type in types]
        if not items:
            continue
        body = ", ".join(f"{m.key}: {_render_value(m.value)}" for m in items)
        sections.append(f"{title}: {body}")

    if not sections:
        return ""
    return f"{CONTEXT_LABEL}: {'. '.join(sections)}."


class ContextComposer:
    """Builds the system message carrying what is known about a teacher.

    Composition is best effort: any failure returns the conversation as it
    was, so a broken memory layer never breaks the chat.
    """

    def __init__(
        self,
        store: MemoryStore,
        cache: TTLCache,
        *,
        confidence_threshold: float = 0.7,
        cache_ttl_ms: int = 5 * 60 * 1000,
    ):
        self.store = store
        self.cache = cache
        self.confidence_threshold = confidence_threshold
        self.cache_ttl_ms = cache_ttl_ms

    async def compose(self, owner_id: str, messages: list[dict]) -> ComposedContext:
        try:
            memories = await self._load_memories(owner_id)
            if not memories:
                return ComposedContext(augmented_messages=messages)

            context_text = build_context_text(memories)
            if not context_text:
                return ComposedContext(augmented_messages=messages)

            system_message = {
                "role": "system",
                "content": context_text,
                "metadata": {"type": MEMORY_MESSAGE_TYPE, "memory_count": len(memories)},
            }
            logger.debug(f"Applied {len(memories)} memories to conversation for {owner_id}")
            return ComposedContext(
                augmented_messages=[system_message, *messages],
                context_text=context_text,
                applied_memories=memories,
            )
        except Exception as exc:
            logger.warning(f"Failed to apply memory context for {owner_id}: {exc}")
            return ComposedContext(augmented_messages=messages)

    async def _load_memories(self, owner_id: str) -> list[MemoryRecord]:
        key = memory_cache_key(owner_id, "context")
        cached = self.cache.get(key)
        if cached is None:
            records = await self.store.get_many(
                owner_id,
                min_confidence=self.confidence_threshold,
            )
            cached = tuple(records)
            self.cache.set(key, cached, self.cache_ttl_ms)

        # A cached snapshot may outlive some of its records
        now = self.store.now()
        return [record for record in cached if record.is_live(now)]
