"""Shared fixtures for memory engine tests"""
import pytest
import pytest_asyncio

from memory.gate import ConcurrencyGate
from memory.retry import NO_RETRY
from memory.storage import MemoryStorage
from memory.store import MemoryStore

START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced millisecond clock"""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def storage(tmp_path):
    storage = MemoryStorage(db_path=str(tmp_path / "memory.db"))
    await storage.initialize()
    yield storage
    await storage.cleanup()


@pytest_asyncio.fixture
async def store(storage, clock):
    store = MemoryStore(storage, ConcurrencyGate(4), NO_RETRY, clock=clock)
    yield store
    await store.drain()
