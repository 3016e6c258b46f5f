"""Memory store - per-owner CRUD and filtered queries over memory records."""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, TypeVar

from loguru import logger

from memory.errors import GateClosedError, MemoryValidationError, StorageError
from memory.gate import ConcurrencyGate
from memory.models import MemoryRecord, MemoryType, MemoryValue, now_ms
from memory.retry import RetryPolicy
from memory.storage import (
    PATCHABLE_FIELDS,
    REQUIRED_FIELDS,
    MemoryQuery,
    MemoryStorage,
    Mutation,
    TransactResult,
)

T = TypeVar("T")

DEFAULT_CONFIDENCE = 0.8
DEFAULT_LIMIT = 1000

ChangeListener = Callable[[str], None]


def _check_confidence(confidence: Optional[float], name: str = "confidence"):
    if confidence is None:
        return
    if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
        raise MemoryValidationError(f"{name} must be a number")
    if not 0.0 <= float(confidence) <= 1.0:
        raise MemoryValidationError(f"{name} must be within [0, 1], got {confidence}")


def _require(value: Any, name: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise MemoryValidationError(f"{name} is required")
    return text


class MemoryStore:
    """
    Memory records for one owner at a time.

    Every backing-store call is admitted through the concurrency gate and
    wrapped by the retry policy; failures surface as ``StorageError``.
    Saves for the same (owner, type, key) are serialized in-process so a
    triple never ends up with two live records from this process.
    """

    def __init__(
        self,
        storage: MemoryStorage,
        gate: ConcurrencyGate | None = None,
        retry: RetryPolicy | None = None,
        *,
        clock: Callable[[], int] = now_ms,
        default_confidence: float = DEFAULT_CONFIDENCE,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self.storage = storage
        self.gate = gate or ConcurrencyGate()
        self.retry = retry or RetryPolicy()
        self.default_confidence = default_confidence
        self.default_limit = default_limit
        self._clock = clock
        self._triple_locks: dict[tuple[str, str, str], list] = {}
        self._touch_tasks: set[asyncio.Task] = set()
        self._listeners: list[ChangeListener] = []

    def add_listener(self, listener: ChangeListener):
        """Register a callback invoked with the owner id after each write."""
        self._listeners.append(listener)

    def now(self) -> int:
        return self._clock()

    # ── public operations ───────────────────────────────

    async def save(
        self,
        owner_id: str,
        key: str,
        value: Any,
        memory_type: MemoryType | str,
        *,
        confidence: Optional[float] = None,
        source_session_id: Optional[str] = None,
        expires_at: Optional[int] = None,
        verified: Optional[bool] = None,
    ) -> str:
        """Merge-or-create the live record for (owner, type, key); returns its id."""
        owner_id = _require(owner_id, "owner_id")
        key = _require(key, "key")
        memory_type = MemoryType.parse(memory_type)
        _check_confidence(confidence)
        payload = MemoryValue.wrap(value)

        async with self._lock_triple(owner_id, memory_type, key):
            existing = await self._find_live(owner_id, key, memory_type)
            now = self._clock()

            if existing:
                fields: dict[str, Any] = {
                    "value": payload,
                    "updated_at": now,
                    "last_accessed_at": now,
                }
                if confidence is not None:
                    fields["confidence"] = float(confidence)
                if source_session_id is not None:
                    fields["source_session_id"] = source_session_id
                if expires_at is not None:
                    fields["expires_at"] = expires_at
                if verified is not None:
                    fields["verified"] = bool(verified)

                await self._transact([Mutation.patch(existing.id, **fields)], label="save memory")
                logger.info(f"Updated memory {existing.id} for {owner_id}: {key}")
                return existing.id

            record = MemoryRecord(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                memory_type=memory_type,
                key=key,
                payload=payload,
                confidence=float(confidence) if confidence is not None else self.default_confidence,
                verified=bool(verified) if verified is not None else False,
                created_at=now,
                updated_at=now,
                last_accessed_at=now,
                source_session_id=source_session_id,
                expires_at=expires_at,
            )
            await self._transact([Mutation.insert(record)], label="save memory")
            logger.info(f"Created memory {record.id} for {owner_id}: {key}")
            return record.id

    async def get_many(
        self,
        owner_id: str,
        memory_type: MemoryType | str | None = None,
        *,
        include_expired: bool = False,
        min_confidence: Optional[float] = None,
        limit: Optional[int] = None,
        touch: bool = True,
    ) -> list[MemoryRecord]:
        """Memories for an owner, newest update first."""
        owner_id = _require(owner_id, "owner_id")
        _check_confidence(min_confidence, "min_confidence")
        if limit is not None and limit < 1:
            raise MemoryValidationError("limit must be positive")

        shape = MemoryQuery(
            owner_id=owner_id,
            memory_type=MemoryType.parse(memory_type).value if memory_type else None,
            live_at=None if include_expired else self._clock(),
            min_confidence=min_confidence,
            limit=limit or self.default_limit,
        )
        records = await self._call(lambda: self.storage.query(shape), label="get memories")
        if touch and records:
            self._touch_later([record.id for record in records])
        return records

    async def get_all(self, owner_id: str) -> list[MemoryRecord]:
        """Every record for an owner, expired ones included, with no cap.

        Used by maintenance; does not bump ``last_accessed_at``.
        """
        owner_id = _require(owner_id, "owner_id")
        shape = MemoryQuery(owner_id=owner_id, limit=None)
        return await self._call(lambda: self.storage.query(shape), label="get all memories")

    async def get_one(
        self,
        owner_id: str,
        key: str,
        memory_type: MemoryType | str,
    ) -> Optional[MemoryRecord]:
        """The live record for (owner, type, key), or None."""
        owner_id = _require(owner_id, "owner_id")
        key = _require(key, "key")
        record = await self._find_live(owner_id, key, MemoryType.parse(memory_type))
        if record:
            self._touch_later([record.id])
        return record

    async def update(self, memory_id: str, fields: Mapping[str, Any]):
        """Apply a partial update; ``updated_at`` is always stamped."""
        memory_id = _require(memory_id, "memory_id")
        unknown = set(fields) - PATCHABLE_FIELDS
        if unknown:
            raise MemoryValidationError(f"unknown memory fields: {sorted(unknown)}")
        missing = sorted(name for name in REQUIRED_FIELDS & set(fields) if fields[name] is None)
        if missing:
            raise MemoryValidationError(f"memory fields cannot be null: {missing}")
        _check_confidence(fields.get("confidence"))

        values = dict(fields)
        for name in ("owner_id", "key"):
            if name in values:
                values[name] = _require(values[name], name)
        if "value" in values:
            values["value"] = MemoryValue.wrap(values["value"])
        if "memory_type" in values:
            values["memory_type"] = MemoryType.parse(values["memory_type"])
        values["updated_at"] = self._clock()

        result = await self._transact([Mutation.patch(memory_id, **values)], label="update memory")
        if not result.affected:
            logger.warning(f"Update skipped, memory {memory_id} not found")
            return
        logger.info(f"Updated memory {memory_id}")

    async def soft_delete(self, memory_id: str):
        """Expire a memory now instead of removing it; keeps the audit trail."""
        await self.update(memory_id, {"expires_at": self._clock()})
        logger.info(f"Marked memory {memory_id} as expired")

    async def soft_delete_many(self, memory_ids: Iterable[str]) -> int:
        """Expire several memories in one transaction; returns the count."""
        now = self._clock()
        mutations = [
            Mutation.patch(memory_id, expires_at=now, updated_at=now)
            for memory_id in memory_ids
        ]
        if not mutations:
            return 0
        result = await self._transact(mutations, label="expire memories")
        return result.affected

    async def list_owner_ids(self) -> list[str]:
        return await self._call(self.storage.list_owner_ids, label="list memory owners")

    async def drain(self):
        """Wait for pending last-accessed updates."""
        while self._touch_tasks:
            await asyncio.gather(*list(self._touch_tasks), return_exceptions=True)

    # ── internals ───────────────────────────────────────

    async def _find_live(
        self,
        owner_id: str,
        key: str,
        memory_type: MemoryType,
    ) -> Optional[MemoryRecord]:
        shape = MemoryQuery(
            owner_id=owner_id,
            memory_type=memory_type.value,
            key=key,
            live_at=self._clock(),
            limit=1,
        )
        records = await self._call(lambda: self.storage.query(shape), label="get memory")
        return records[0] if records else None

    async def _call(self, operation: Callable[[], Awaitable[T]], *, label: str) -> T:
        try:
            return await self.retry.call(lambda: self.gate.run(operation), label=label)
        except (MemoryValidationError, GateClosedError):
            raise
        except Exception as exc:
            logger.error(f"{label} failed: {exc}")
            raise StorageError(f"Failed to {label}", exc) from exc

    async def _transact(
        self,
        mutations: list[Mutation],
        *,
        label: str,
        notify: bool = True,
    ) -> TransactResult:
        result = await self._call(lambda: self.storage.transact(mutations), label=label)
        if notify:
            for owner_id in result.owner_ids:
                self._notify(owner_id)
        return result

    def _notify(self, owner_id: str):
        for listener in self._listeners:
            try:
                listener(owner_id)
            except Exception as exc:
                logger.warning(f"Memory change listener failed for {owner_id}: {exc}")

    def _touch_later(self, memory_ids: list[str]):
        task = asyncio.create_task(self._touch(memory_ids))
        self._touch_tasks.add(task)
        task.add_done_callback(self._touch_tasks.discard)

    async def _touch(self, memory_ids: list[str]):
        now = self._clock()
        mutations = [Mutation.patch(memory_id, last_accessed_at=now) for memory_id in memory_ids]
        try:
            await self._transact(mutations, label="update memory access", notify=False)
        except Exception as exc:
            # Staleness of last_accessed_at is harmless
            logger.warning(f"Failed to update memory access timestamps: {exc}")

    @asynccontextmanager
    async def _lock_triple(self, owner_id: str, memory_type: MemoryType, key: str):
        triple = (owner_id, memory_type.value, key)
        slot = self._triple_locks.get(triple)
        if slot is None:
            slot = self._triple_locks[triple] = [asyncio.Lock(), 0]
        slot[1] += 1
        try:
            async with slot[0]:
                yield
        finally:
            slot[1] -= 1
            if slot[1] == 0:
                self._triple_locks.pop(triple, None)
