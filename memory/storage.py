"""SQLite backing store for teacher memory records.

Exposes the two primitives the memory layer relies on: ``query`` (filtered,
ordered, limited reads) and ``transact`` (a batch of inserts and partial
updates committed together).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from loguru import logger
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Float,
    Index,
    String,
    or_,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from memory.models import MemoryRecord, MemoryType, MemoryValue

Base = declarative_base()


class TeacherMemoryRow(Base):
    """Teacher memory table."""

    __tablename__ = "teacher_memory"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    memory_type = Column(String(20), nullable=False)
    memory_key = Column("key", String(100), nullable=False)
    value_kind = Column(String(10), nullable=False, default="null")
    value_json = Column("value", JSON, nullable=True)
    confidence = Column(Float, nullable=False, default=0.8)
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False, index=True)
    last_accessed_at = Column(BigInteger, nullable=False)
    source_session_id = Column(String(64), nullable=True)
    expires_at = Column(BigInteger, nullable=True)

    __table_args__ = (
        Index("ix_teacher_memory_triple", "owner_id", "memory_type", "key"),
    )


# Record attribute -> row column attribute
_PLAIN_FIELDS = {
    "owner_id": "owner_id",
    "key": "memory_key",
    "confidence": "confidence",
    "verified": "verified",
    "created_at": "created_at",
    "updated_at": "updated_at",
    "last_accessed_at": "last_accessed_at",
    "source_session_id": "source_session_id",
    "expires_at": "expires_at",
}
PATCHABLE_FIELDS = frozenset({*_PLAIN_FIELDS, "value", "memory_type"})
# Columns declared NOT NULL
REQUIRED_FIELDS = frozenset(PATCHABLE_FIELDS - {"value", "source_session_id", "expires_at"})


@dataclass(frozen=True)
class MemoryQuery:
    """Shape of a read against the memory table."""

    owner_id: str
    memory_type: Optional[str] = None
    key: Optional[str] = None
    live_at: Optional[int] = None
    min_confidence: Optional[float] = None
    limit: Optional[int] = 1000


@dataclass(frozen=True)
class Mutation:
    """One insert or partial update inside a transaction."""

    record_id: str
    fields: dict[str, Any]
    create: bool = False

    @classmethod
    def insert(cls, record: MemoryRecord) -> "Mutation":
        return cls(
            record_id=record.id,
            create=True,
            fields={
                "owner_id": record.owner_id,
                "memory_type": record.memory_type,
                "key": record.key,
                "value": record.payload,
                "confidence": record.confidence,
                "verified": record.verified,
                "created_at": record.created_at,
                "updated_at": record.updated_at,
                "last_accessed_at": record.last_accessed_at,
                "source_session_id": record.source_session_id,
                "expires_at": record.expires_at,
            },
        )

    @classmethod
    def patch(cls, record_id: str, **fields: Any) -> "Mutation":
        return cls(record_id=record_id, fields=fields)


@dataclass(frozen=True)
class TransactResult:
    """Acknowledgement of a committed transaction."""

    affected: int = 0
    owner_ids: frozenset[str] = field(default_factory=frozenset)


def _to_columns(fields: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name, raw in fields.items():
        if name == "value":
            payload = MemoryValue.wrap(raw)
            values["value_kind"] = payload.kind.value
            values["value_json"] = payload.data
        elif name == "memory_type":
            values["memory_type"] = MemoryType.parse(raw).value
        elif name in _PLAIN_FIELDS:
            values[_PLAIN_FIELDS[name]] = raw
        else:
            raise KeyError(f"unknown memory field: {name}")
    return values


def _to_record(row: TeacherMemoryRow) -> MemoryRecord:
    return MemoryRecord(
        id=row.id,
        owner_id=row.owner_id,
        memory_type=MemoryType(row.memory_type),
        key=row.memory_key,
        payload=MemoryValue.load(row.value_kind, row.value_json),
        confidence=float(row.confidence if row.confidence is not None else 0.0),
        verified=bool(row.verified),
        created_at=int(row.created_at),
        updated_at=int(row.updated_at),
        last_accessed_at=int(row.last_accessed_at),
        source_session_id=row.source_session_id,
        expires_at=int(row.expires_at) if row.expires_at is not None else None,
    )


class MemoryStorage:
    """SQLite storage manager."""

    def __init__(self, db_path: str = "data/memory.db"):
        self.db_path = db_path
        self.engine = None
        self.session_factory = None

    async def initialize(self):
        """Initialize database."""
        from pathlib import Path

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_async_engine(f"sqlite+aiosqlite:///{self.db_path}", echo=False)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info(f"Memory database ready: {self.db_path}")

    def _session(self) -> AsyncSession:
        if self.session_factory is None:
            raise RuntimeError("MemoryStorage used before initialize()")
        return self.session_factory()

    async def query(self, shape: MemoryQuery) -> list[MemoryRecord]:
        """Filtered read ordered by ``updated_at`` descending; ``limit=None`` reads every match."""
        stmt = select(TeacherMemoryRow).where(TeacherMemoryRow.owner_id == shape.owner_id)
        if shape.memory_type:
            stmt = stmt.where(TeacherMemoryRow.memory_type == shape.memory_type)
        if shape.key is not None:
            stmt = stmt.where(TeacherMemoryRow.memory_key == shape.key)
        if shape.live_at is not None:
            stmt = stmt.where(
                or_(
                    TeacherMemoryRow.expires_at.is_(None),
                    TeacherMemoryRow.expires_at > shape.live_at,
                )
            )
        if shape.min_confidence is not None:
            stmt = stmt.where(TeacherMemoryRow.confidence >= shape.min_confidence)

        stmt = stmt.order_by(
            TeacherMemoryRow.updated_at.desc(),
            TeacherMemoryRow.created_at.desc(),
        )
        if shape.limit is not None:
            stmt = stmt.limit(shape.limit)

        async with self._session() as session:
            result = await session.execute(stmt)
            return [_to_record(row) for row in result.scalars().all()]

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        """Fetch one record by id regardless of expiry."""
        async with self._session() as session:
            row = await session.get(TeacherMemoryRow, record_id)
            return _to_record(row) if row else None

    async def list_owner_ids(self) -> list[str]:
        """Owners with at least one stored record."""
        async with self._session() as session:
            result = await session.execute(
                select(TeacherMemoryRow.owner_id).distinct().order_by(TeacherMemoryRow.owner_id)
            )
            return [row[0] for row in result.fetchall()]

    async def transact(self, mutations: Sequence[Mutation]) -> TransactResult:
        """Apply inserts and partial updates in one commit."""
        if not mutations:
            return TransactResult()

        affected = 0
        owners: set[str] = set()
        async with self._session() as session:
            patch_ids = [m.record_id for m in mutations if not m.create]
            if patch_ids:
                result = await session.execute(
                    select(TeacherMemoryRow.id, TeacherMemoryRow.owner_id).where(
                        TeacherMemoryRow.id.in_(patch_ids)
                    )
                )
                known = {row[0]: row[1] for row in result.fetchall()}
            else:
                known = {}

            for mutation in mutations:
                values = _to_columns(mutation.fields)
                if mutation.create:
                    session.add(TeacherMemoryRow(id=mutation.record_id, **values))
                    owners.add(values["owner_id"])
                    affected += 1
                    continue

                if mutation.record_id not in known:
                    logger.debug(f"Skipping update for missing memory {mutation.record_id}")
                    continue
                if values:
                    await session.execute(
                        update(TeacherMemoryRow)
                        .where(TeacherMemoryRow.id == mutation.record_id)
                        .values(**values)
                    )
                owners.add(known[mutation.record_id])
                affected += 1

            await session.commit()

        return TransactResult(affected=affected, owner_ids=frozenset(owners))

    async def cleanup(self):
        """Cleanup resources."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
