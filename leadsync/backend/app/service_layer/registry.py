# app/service_layer/registry.py
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Callable, Iterable

from ..adapters.sources.adapter import SourceAdapter
from ..config import Settings, SourceConfig
from ..domain.types import CreationEvent
from .pipeline import SourcePipeline
from .retry import DbDeadLetterSink, DeadLetterSink, RetryController
from .writer import IdempotentUpsertWriter

log = logging.getLogger(__name__)


class RegistryState(str, enum.Enum):
    init = "init"
    running = "running"
    draining = "draining"
    stopped = "stopped"


class UnknownSourceError(KeyError):
    pass


class RegistryNotRunningError(RuntimeError):
    pass


class PipelineRegistry:
    """
    source id -> pipeline. Built once at startup; init -> running -> draining -> stopped.

    Every pipeline shares the canonical store and the dead-letter sink and
    nothing else.
    """

    def __init__(self) -> None:
        self._pipelines: dict[str, SourcePipeline] = {}
        self.state = RegistryState.init

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_maker: Callable[[], Any],
        *,
        dead_letters: DeadLetterSink | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> "PipelineRegistry":
        return cls.build(
            settings.SYNC_SOURCES,
            session_maker,
            dead_letters=dead_letters,
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
            write_timeout_s=settings.SYNC_WRITE_TIMEOUT_S,
            backoff_base_s=settings.SYNC_BACKOFF_BASE_S,
            backoff_cap_s=settings.SYNC_BACKOFF_CAP_S,
            concurrency=settings.SYNC_PIPELINE_CONCURRENCY,
            queue_maxsize=settings.SYNC_QUEUE_MAXSIZE,
            sleep=sleep,
        )

    @classmethod
    def build(
        cls,
        sources: Iterable[SourceConfig],
        session_maker: Callable[[], Any],
        *,
        dead_letters: DeadLetterSink | None = None,
        max_attempts: int = 5,
        write_timeout_s: float = 10.0,
        backoff_base_s: float = 1.0,
        backoff_cap_s: float = 300.0,
        concurrency: int = 4,
        queue_maxsize: int = 1000,
        sleep: Callable[[float], Any] | None = None,
    ) -> "PipelineRegistry":
        reg = cls()
        dlq = dead_letters or DbDeadLetterSink(session_maker)

        for src in sources:
            writer = IdempotentUpsertWriter(session_maker, timeout_s=write_timeout_s)
            controller_kwargs: dict[str, Any] = {}
            if sleep is not None:
                controller_kwargs["sleep"] = sleep
            controller = RetryController(
                writer,
                dlq,
                max_attempts=max_attempts,
                backoff_base_s=backoff_base_s,
                backoff_cap_s=backoff_cap_s,
                name=src.source_id,
                **controller_kwargs,
            )
            reg.register(
                SourcePipeline(
                    SourceAdapter(src),
                    controller,
                    concurrency=src.concurrency or concurrency,
                    queue_maxsize=queue_maxsize,
                )
            )
        return reg

    def register(self, pipeline: SourcePipeline) -> None:
        if self.state is not RegistryState.init:
            raise RuntimeError("pipelines can only be registered before start()")
        if pipeline.source_id in self._pipelines:
            raise ValueError(f"source {pipeline.source_id!r} already registered")
        self._pipelines[pipeline.source_id] = pipeline

    @property
    def source_ids(self) -> list[str]:
        return list(self._pipelines)

    @property
    def configs(self) -> list[SourceConfig]:
        return [p.adapter.config for p in self._pipelines.values()]

    def get(self, source_id: str) -> SourcePipeline:
        try:
            return self._pipelines[source_id]
        except KeyError:
            raise UnknownSourceError(source_id) from None

    async def start(self) -> None:
        if self.state is RegistryState.running:
            return
        if self.state is not RegistryState.init:
            raise RuntimeError(f"cannot start registry in state {self.state.value}")
        for p in self._pipelines.values():
            await p.start()
        self.state = RegistryState.running
        log.info("registry running: %s", ", ".join(self.source_ids) or "(no sources)")

    async def dispatch(self, source_id: str, event: CreationEvent | dict[str, Any]) -> None:
        if self.state is not RegistryState.running:
            raise RegistryNotRunningError(f"registry is {self.state.value}")
        pipeline = self.get(source_id)
        if isinstance(event, dict):
            event = CreationEvent(id=event.get("id"), data=event.get("data"))
        await pipeline.submit(event)

    async def drain(self) -> list[dict[str, Any]]:
        """Graceful drain of every pipeline, in parallel."""
        if self.state in (RegistryState.draining, RegistryState.stopped):
            return []
        self.state = RegistryState.draining
        reports = await asyncio.gather(*(p.drain() for p in self._pipelines.values()))
        self.state = RegistryState.stopped
        log.info("registry stopped")
        return list(reports)

    async def join(self) -> None:
        """Wait until every queue is empty and no retry is pending (tests, scripts)."""
        await asyncio.gather(*(p.join() for p in self._pipelines.values()))

    def stats(self) -> dict[str, dict[str, Any]]:
        return {sid: p.snapshot() for sid, p in self._pipelines.items()}
