"""Error types raised by the memory engine."""

from __future__ import annotations


class MemoryEngineError(Exception):
    """Base class for memory engine errors."""


class StorageError(MemoryEngineError):
    """Backing store unreachable or rejected the call."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        base = super().__str__()
        if self.cause is None:
            return base
        return f"{base} ({type(self.cause).__name__}: {self.cause})"


class MemoryValidationError(MemoryEngineError, ValueError):
    """Malformed input rejected before touching the backing store."""


class GateClosedError(MemoryEngineError, RuntimeError):
    """Work submitted to a concurrency gate after shutdown."""
