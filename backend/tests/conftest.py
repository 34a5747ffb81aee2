import pytest

from magda.config import Settings
from magda.db.secure_store import MemorySecureStore
from magda.exceptions import StorageUnavailable
from magda.security import CipherCodec, KeyManager
from magda.services.record_service import RecordRepository


class FlakyStore(MemorySecureStore):
    """Memory store whose writes can be switched off to simulate an unavailable device store."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_writes = False
        self.fail_reads = False
        self.writes = 0

    async def get(self, key):
        if self.fail_reads:
            raise StorageUnavailable("store offline")
        return await super().get(key)

    async def set(self, key, value):
        if self.fail_writes:
            raise StorageUnavailable("store offline")
        self.writes += 1
        await super().set(key, value)

    async def delete(self, key):
        if self.fail_writes:
            raise StorageUnavailable("store offline")
        await super().delete(key)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def codec(store):
    return CipherCodec(KeyManager(store))


@pytest.fixture
def repository(store, codec):
    return RecordRepository(store, codec)


@pytest.fixture
def settings():
    return Settings(
        SECURE_STORE_BACKEND="memory",
        OPENAI_API_KEY=None,
        AI_ENRICHMENT_TIMEOUT_SECONDS=0.5,
        _env_file=None,
    )
