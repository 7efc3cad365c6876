import pytest
from sqlalchemy import func, select

from app.adapters.repos.canonical import CanonicalLeadRepository
from app.adapters.sources.adapter import SourceAdapter
from app.domain.errors import TransientInfraError
from app.domain.provenance import canonical_id
from app.domain.types import CreationEvent, WriteResult
from app.models import CanonicalLead, DeadLetterEntry
from app.service_layer.pipeline import SourcePipeline
from app.service_layer.retry import AttemptState, DbDeadLetterSink, RetryController
from app.service_layer.writer import IdempotentUpsertWriter

from conftest import no_sleep


class FlakyWriter:
    """Times out `failures` times, then hands off to the real writer."""

    def __init__(self, inner, failures: int):
        self.inner = inner
        self.failures = failures
        self.calls = 0

    async def upsert(self, candidate, *, attempt_number: int = 1) -> WriteResult:
        self.calls += 1
        if self.calls <= self.failures:
            return WriteResult(ok=False, error=TransientInfraError("deadline exceeded"))
        return await self.inner.upsert(candidate, attempt_number=attempt_number)


def _pipeline(source_cfg, session_maker, writer=None, max_attempts=5):
    writer = writer or IdempotentUpsertWriter(session_maker)
    controller = RetryController(
        writer,
        DbDeadLetterSink(session_maker),
        max_attempts=max_attempts,
        sleep=no_sleep,
        name=source_cfg.source_id,
    )
    return SourcePipeline(SourceAdapter(source_cfg), controller)


async def _rows(session_maker, model):
    async with session_maker() as session:
        return list((await session.execute(select(model))).scalars().all())


ASHA = CreationEvent(id="L1", data={"name": "Asha", "phone": "9999900000"})


@pytest.mark.asyncio
async def test_scenario_a_single_creation(async_session_maker, source_a):
    p = _pipeline(source_a, async_session_maker)

    attempt = await (await p.handle(ASHA))

    assert attempt.state is AttemptState.success
    leads = await _rows(async_session_maker, CanonicalLead)
    assert len(leads) == 1
    doc = leads[0].to_document()
    assert doc["original_id"] == "L1"
    assert doc["source_database"] == "sourceA"
    assert doc["name"] == "Asha"
    assert doc["phone"] == "9999900000"
    assert doc["synced_at"] is not None
    assert leads[0].id == canonical_id("sourceA", "L1")


@pytest.mark.asyncio
async def test_scenario_b_redelivery_keeps_one_document(async_session_maker, source_a):
    p = _pipeline(source_a, async_session_maker)

    for _ in range(3):
        await (await p.handle(ASHA))

    leads = await _rows(async_session_maker, CanonicalLead)
    assert len(leads) == 1
    assert leads[0].fields == {"name": "Asha", "phone": "9999900000"}
    assert p.stats.received == 3


@pytest.mark.asyncio
async def test_scenario_c_two_timeouts_then_success(async_session_maker, source_a):
    writer = FlakyWriter(IdempotentUpsertWriter(async_session_maker), failures=2)
    p = _pipeline(source_a, async_session_maker, writer=writer)

    attempt = await (await p.handle(ASHA))

    assert attempt.state is AttemptState.success
    assert attempt.attempt_number == 3
    assert writer.calls == 3

    async with async_session_maker() as session:
        row = await CanonicalLeadRepository(session).get(canonical_id("sourceA", "L1"))
    assert row is not None
    assert row.sync_attempt_count == 3
    assert await _rows(async_session_maker, DeadLetterEntry) == []


@pytest.mark.asyncio
async def test_scenario_d_five_timeouts_dead_letters(async_session_maker, source_a):
    writer = FlakyWriter(IdempotentUpsertWriter(async_session_maker), failures=10**6)
    p = _pipeline(source_a, async_session_maker, writer=writer, max_attempts=5)

    attempt = await (await p.handle(ASHA))
    await p.controller.join()

    assert attempt.state is AttemptState.dead_letter
    assert writer.calls == 5
    assert p.controller.scheduled_retries == 0

    dead = await _rows(async_session_maker, DeadLetterEntry)
    assert len(dead) == 1
    assert dead[0].attempts == 5
    assert dead[0].original_id == "L1"
    assert dead[0].source_id == "sourceA"
    assert "deadline" in dead[0].error

    async with async_session_maker() as session:
        n = (await session.execute(select(func.count()).select_from(CanonicalLead))).scalar_one()
    assert n == 0


@pytest.mark.asyncio
async def test_malformed_event_is_dropped_without_write(async_session_maker, source_a):
    writer = FlakyWriter(IdempotentUpsertWriter(async_session_maker), failures=0)
    p = _pipeline(source_a, async_session_maker, writer=writer)

    out = await p.handle(CreationEvent(id="L2", data="not-a-document"))

    assert out is None
    assert writer.calls == 0
    assert p.stats.dropped == 1
    assert await _rows(async_session_maker, DeadLetterEntry) == []
