"""Memory record and candidate types."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from memory.errors import MemoryValidationError


def now_ms() -> int:
    """Wall clock in milliseconds since epoch."""
    return int(time.time() * 1000)


class MemoryType(str, Enum):
    """Kinds of facts kept about a teacher."""

    PREFERENCE = "preference"
    PATTERN = "pattern"
    CONTEXT = "context"
    SKILL = "skill"

    @classmethod
    def parse(cls, raw: "MemoryType | str") -> "MemoryType":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise MemoryValidationError(f"unknown memory_type: {raw!r}") from None


class ValueKind(str, Enum):
    """Type tag stored next to a memory payload."""

    NULL = "null"
    TEXT = "text"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"
    RECORD = "record"


@dataclass(frozen=True)
class MemoryValue:
    """Tagged payload: the store never looks inside ``data``."""

    kind: ValueKind
    data: Any

    @classmethod
    def wrap(cls, value: Any) -> "MemoryValue":
        if isinstance(value, MemoryValue):
            return value
        if value is None:
            return cls(ValueKind.NULL, None)
        # bool is a subclass of int, check it first
        if isinstance(value, bool):
            return cls(ValueKind.BOOLEAN, value)
        if isinstance(value, int):
            return cls(ValueKind.INTEGER, value)
        if isinstance(value, float):
            return cls(ValueKind.NUMBER, value)
        if isinstance(value, str):
            return cls(ValueKind.TEXT, value)

        if isinstance(value, (list, tuple)):
            kind, data = ValueKind.LIST, list(value)
        elif isinstance(value, dict):
            kind, data = ValueKind.RECORD, dict(value)
        else:
            raise MemoryValidationError(f"unsupported memory value type: {type(value).__name__}")

        try:
            json.dumps(data)
        except (TypeError, ValueError) as exc:
            raise MemoryValidationError(f"memory value is not JSON serializable: {exc}") from exc
        return cls(kind, data)

    @classmethod
    def load(cls, kind: str | None, data: Any) -> "MemoryValue":
        """Rebuild from stored columns; rows without a tag are re-inferred."""
        if kind is None:
            return cls.wrap(data)
        return cls(ValueKind(kind), data)


@dataclass(frozen=True)
class MemoryCandidate:
    """A fact proposed by the extractor, not yet persisted."""

    key: str
    value: Any
    memory_type: MemoryType
    confidence: float


@dataclass
class MemoryRecord:
    """One stored fact about one owner."""

    id: str
    owner_id: str
    memory_type: MemoryType
    key: str
    payload: MemoryValue
    confidence: float = 0.8
    verified: bool = False
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    last_accessed_at: int = field(default_factory=now_ms)
    source_session_id: Optional[str] = None
    expires_at: Optional[int] = None

    @property
    def value(self) -> Any:
        return self.payload.data

    @property
    def value_kind(self) -> ValueKind:
        return self.payload.kind

    def is_expired(self, now: int | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now_ms() if now is None else now
        return self.expires_at <= now

    def is_live(self, now: int | None = None) -> bool:
        return not self.is_expired(now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "memory_type": self.memory_type.value,
            "key": self.key,
            "value": self.value,
            "value_kind": self.value_kind.value,
            "confidence": self.confidence,
            "verified": self.verified,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_accessed_at": self.last_accessed_at,
            "source_session_id": self.source_session_id,
            "expires_at": self.expires_at,
        }
