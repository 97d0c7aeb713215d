import pytest
import pytest_asyncio

from stash.config import StoreConfig
from stash.sessions.flush import FlushMode
from stash.sessions.store import SessionStore

T0 = 1_700_000_000_000


class FakeClock:
    """Epoch-millis clock that only moves when told to."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> int:
        self.now += millis
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store_config(tmp_path):
    return StoreConfig(
        db_path=str(tmp_path / "sessions.db"),
        table_name="test_sessions",
        max_inactive_interval_seconds=1800,
    )


@pytest_asyncio.fixture
async def store(store_config, clock):
    async with SessionStore(store_config, clock=clock) as s:
        yield s


@pytest_asyncio.fixture
async def immediate_store(store_config, clock):
    config = store_config.model_copy(update={"flush_mode": FlushMode.IMMEDIATE})
    async with SessionStore(config, clock=clock) as s:
        yield s


@pytest_asyncio.fixture
async def second_handle(store_config, clock):
    """Independent connection to the same database, for reader-side checks."""
    async with SessionStore(store_config, clock=clock) as s:
        yield s
