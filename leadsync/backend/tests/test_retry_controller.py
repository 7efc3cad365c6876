import asyncio
import random

import pytest
from sqlalchemy import select

from app.domain.errors import PermanentWriteError, TransientInfraError
from app.domain.types import WriteResult
from app.models import DeadLetterEntry, ErrorKind
from app.service_layer.retry import (
    AttemptState,
    DbDeadLetterSink,
    RetryController,
    compute_backoff_seconds,
)

from conftest import make_candidate, no_sleep


class ScriptedWriter:
    """Returns the given results in order, repeating the last one."""

    def __init__(self, *results: WriteResult):
        self.results = list(results)
        self.calls: list[int] = []

    async def upsert(self, candidate, *, attempt_number: int = 1) -> WriteResult:
        self.calls.append(attempt_number)
        idx = min(len(self.calls), len(self.results)) - 1
        return self.results[idx]


class MemorySink:
    def __init__(self):
        self.entries = []

    async def publish(self, attempt, error):
        self.entries.append((attempt.canonical_id, attempt.attempt_number, error))


TRANSIENT = WriteResult(ok=False, error=TransientInfraError("unavailable"))
PERMANENT = WriteResult(ok=False, error=PermanentWriteError("permission denied"))
OK = WriteResult(ok=True)


@pytest.mark.asyncio
async def test_success_first_try_never_retries():
    writer = ScriptedWriter(OK)
    ctl = RetryController(writer, MemorySink(), sleep=no_sleep)

    attempt = await (await ctl.submit(make_candidate()))

    assert attempt.state is AttemptState.success
    assert writer.calls == [1]
    assert ctl.counters["retried"] == 0


@pytest.mark.asyncio
async def test_permanent_error_dead_letters_with_zero_retries(async_session_maker):
    writer = ScriptedWriter(PERMANENT, OK)
    ctl = RetryController(writer, DbDeadLetterSink(async_session_maker), sleep=no_sleep)

    attempt = await (await ctl.submit(make_candidate()))
    await ctl.join()

    assert attempt.state is AttemptState.dead_letter
    assert writer.calls == [1]

    async with async_session_maker() as session:
        rows = (await session.execute(select(DeadLetterEntry))).scalars().all()
    assert len(rows) == 1
    assert rows[0].error_kind == ErrorKind.permanent
    assert rows[0].attempts == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("max_attempts", [1, 3, 5])
async def test_retry_bound(max_attempts):
    writer = ScriptedWriter(TRANSIENT)
    sink = MemorySink()
    ctl = RetryController(writer, sink, max_attempts=max_attempts, sleep=no_sleep)

    attempt = await (await ctl.submit(make_candidate()))
    await ctl.join()
    # nothing fires later either
    await asyncio.sleep(0)

    assert attempt.state is AttemptState.dead_letter
    assert writer.calls == list(range(1, max_attempts + 1))
    assert len(sink.entries) == 1
    assert sink.entries[0][1] == max_attempts
    assert ctl.scheduled_retries == 0


@pytest.mark.asyncio
async def test_transient_then_permanent_stops_immediately():
    writer = ScriptedWriter(TRANSIENT, PERMANENT, OK)
    sink = MemorySink()
    ctl = RetryController(writer, sink, sleep=no_sleep)

    attempt = await (await ctl.submit(make_candidate()))

    assert attempt.state is AttemptState.dead_letter
    assert writer.calls == [1, 2]
    assert isinstance(sink.entries[0][2], PermanentWriteError)


@pytest.mark.asyncio
async def test_retries_are_scheduled_not_inline():
    writer = ScriptedWriter(TRANSIENT, OK)
    ctl = RetryController(writer, MemorySink(), backoff_base_s=60.0)

    fut = await ctl.submit(make_candidate())

    # submit returned after attempt 1; attempt 2 is waiting out its backoff
    assert not fut.done()
    assert ctl.scheduled_retries == 1

    abandoned = await ctl.drain()
    assert len(abandoned) == 1
    assert writer.calls == [1]
    attempt = await fut
    assert attempt.state is AttemptState.pending


@pytest.mark.asyncio
async def test_drain_lets_in_flight_retry_finish():
    release = asyncio.Event()

    class BlockingWriter:
        def __init__(self):
            self.calls = 0

        async def upsert(self, candidate, *, attempt_number: int = 1):
            self.calls += 1
            if self.calls == 1:
                return TRANSIENT
            await release.wait()
            return OK

    writer = BlockingWriter()
    ctl = RetryController(writer, MemorySink(), sleep=no_sleep)
    fut = await ctl.submit(make_candidate())

    # let the retry start writing
    for _ in range(5):
        await asyncio.sleep(0)
    assert writer.calls == 2

    drain = asyncio.create_task(ctl.drain())
    await asyncio.sleep(0.01)
    assert not drain.done()

    release.set()
    abandoned = await drain
    attempt = await fut

    assert abandoned == []
    assert attempt.state is AttemptState.success


def test_backoff_grows_and_is_capped():
    rng = random.Random(7)
    d1 = compute_backoff_seconds(1, base_s=1.0, cap_s=30.0, rng=rng)
    d3 = compute_backoff_seconds(3, base_s=1.0, cap_s=30.0, rng=rng)
    d10 = compute_backoff_seconds(10, base_s=1.0, cap_s=30.0, rng=rng)

    assert 1.0 <= d1 <= 2.0
    assert 4.0 <= d3 <= 5.0
    assert 30.0 <= d10 <= 31.0
