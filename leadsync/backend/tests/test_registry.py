import pytest

from app.config import Settings, SourceConfig
from app.service_layer.pipeline import PipelineClosedError
from app.service_layer.registry import (
    PipelineRegistry,
    RegistryNotRunningError,
    RegistryState,
    UnknownSourceError,
)

from conftest import no_sleep


def _registry(session_maker, *configs):
    return PipelineRegistry.build(configs, session_maker, sleep=no_sleep, concurrency=1)


@pytest.mark.asyncio
async def test_dispatch_before_start_is_refused(async_session_maker, source_a):
    reg = _registry(async_session_maker, source_a)

    with pytest.raises(RegistryNotRunningError):
        await reg.dispatch("sourceA", {"id": "L1", "data": {}})


@pytest.mark.asyncio
async def test_unknown_source_is_rejected(async_session_maker, source_a):
    reg = _registry(async_session_maker, source_a)
    await reg.start()

    with pytest.raises(UnknownSourceError):
        await reg.dispatch("nope", {"id": "L1", "data": {}})

    await reg.drain()


@pytest.mark.asyncio
async def test_lifecycle(async_session_maker, source_a, source_b):
    reg = _registry(async_session_maker, source_a, source_b)
    assert reg.state is RegistryState.init
    assert reg.source_ids == ["sourceA", "sourceB"]

    await reg.start()
    assert reg.state is RegistryState.running
    assert all(s["running"] for s in reg.stats().values())

    with pytest.raises(RuntimeError):
        reg.register(reg.get("sourceA"))

    reports = await reg.drain()
    assert reg.state is RegistryState.stopped
    assert sorted(r["source_id"] for r in reports) == ["sourceA", "sourceB"]

    with pytest.raises(RegistryNotRunningError):
        await reg.dispatch("sourceA", {"id": "L1", "data": {}})
    # a second drain is a no-op
    assert await reg.drain() == []


@pytest.mark.asyncio
async def test_closed_pipeline_refuses_submit(async_session_maker, source_a):
    reg = _registry(async_session_maker, source_a)
    await reg.start()
    p = reg.get("sourceA")
    await p.drain()

    with pytest.raises(PipelineClosedError):
        await reg.dispatch("sourceA", {"id": "L1", "data": {"name": "x"}})

    await reg.drain()


def test_duplicate_source_ids_rejected(async_session_maker, source_a):
    with pytest.raises(ValueError):
        _registry(async_session_maker, source_a, SourceConfig(source_id="sourceA", collection="Other"))


def test_from_settings_uses_configured_sources(async_session_maker):
    s = Settings(
        SYNC_SOURCES=[
            {"source_id": "one", "collection": "Form"},
            {"source_id": "two", "collection": "ContactPageForm", "concurrency": 2},
        ],
        SYNC_MAX_ATTEMPTS=3,
    )
    reg = PipelineRegistry.from_settings(s, async_session_maker)

    assert reg.source_ids == ["one", "two"]
    assert reg.get("one").controller.max_attempts == 3
    assert reg.get("two").concurrency == 2
