# tests/conftest.py
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import SourceConfig
from app.domain.provenance import tag
from app.domain.types import SyncEnvelope
from app.models import Base


@pytest.fixture(autouse=True)
async def _reset_db(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
async def engine():
    """
    Fresh in-memory DB per test. StaticPool makes all connections share the same
    in-memory database for the lifetime of this engine fixture.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


async def no_sleep(_delay: float) -> None:
    """Backoff stand-in: retries fire on the next loop turn."""
    return None


@pytest.fixture
def source_a() -> SourceConfig:
    return SourceConfig(source_id="sourceA", collection="Form")


@pytest.fixture
def source_b() -> SourceConfig:
    return SourceConfig(source_id="sourceB", collection="ContactPageForm")


def make_candidate(source_id: str = "sourceA", original_id: str = "L1", **fields):
    env = SyncEnvelope(
        source_id=source_id,
        original_id=original_id,
        original_collection="Form",
        payload=fields or {"name": "Asha", "phone": "9999900000"},
        received_at=datetime.now(timezone.utc),
    )
    return tag(env)
