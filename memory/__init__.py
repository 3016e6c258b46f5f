"""Memory system - teacher memory store, TTL cache and concurrency gate"""
from memory.cache import CacheStats, TTLCache
from memory.errors import GateClosedError, MemoryEngineError, MemoryValidationError, StorageError
from memory.extractor import ExtractionResult, TeacherFactExtractor
from memory.gate import ConcurrencyGate
from memory.maintenance import CleanupResult, MemoryMaintenance, MemoryStatistics
from memory.models import MemoryCandidate, MemoryRecord, MemoryType, MemoryValue, ValueKind
from memory.retry import RetryPolicy
from memory.storage import MemoryStorage
from memory.store import MemoryStore

__all__ = [
    "CacheStats",
    "TTLCache",
    "GateClosedError",
    "MemoryEngineError",
    "MemoryValidationError",
    "StorageError",
    "ExtractionResult",
    "TeacherFactExtractor",
    "ConcurrencyGate",
    "CleanupResult",
    "MemoryMaintenance",
    "MemoryStatistics",
    "MemoryCandidate",
    "MemoryRecord",
    "MemoryType",
    "MemoryValue",
    "ValueKind",
    "RetryPolicy",
    "MemoryStorage",
    "MemoryStore",
]
