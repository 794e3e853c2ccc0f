import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure project root is on sys.path so `import tests.factories` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Force test database URL before any txnwatch imports build the default engine
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from txnwatch.db.base import Base, make_session_factory  # noqa: E402
from txnwatch.sync.config import SyncConfig  # noqa: E402

from tests.factories import RecordingChannel, make_config  # noqa: E402


@pytest_asyncio.fixture(scope="function")
async def engine():
    """Fresh in-memory database per test; one shared connection keeps it alive."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    """Session factory bound to the per-test database."""
    return make_session_factory(engine)


@pytest.fixture
def config() -> SyncConfig:
    return make_config()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()
