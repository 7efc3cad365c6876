# app/service_layer/pipeline.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable

from ..adapters.sources.adapter import SourceAdapter
from ..domain.provenance import tag
from ..domain.types import CanonicalLeadCandidate, CreationEvent, SyncEnvelope
from .retry import RetryController

log = logging.getLogger(__name__)


@dataclass
class PipelineStats:
    received: int = 0
    dropped: int = 0
    submitted: int = 0
    crashed: int = 0


class PipelineClosedError(RuntimeError):
    pass


class SourcePipeline:
    """
    adapter -> tagger -> writer (through the retry controller), for one source.

    Owns its queue and workers, so a slow or broken source only ever
    backs up its own queue.
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        controller: RetryController,
        *,
        tagger: Callable[[SyncEnvelope], CanonicalLeadCandidate] = tag,
        concurrency: int = 4,
        queue_maxsize: int = 1000,
    ) -> None:
        self.adapter = adapter
        self.controller = controller
        self.tagger = tagger
        self.concurrency = max(1, int(concurrency))
        self.queue_maxsize = int(queue_maxsize)

        self.stats = PipelineStats()
        self._queue: asyncio.Queue[CreationEvent] | None = None
        self._workers: list[asyncio.Task] = []
        self._accepting = False

    @property
    def source_id(self) -> str:
        return self.adapter.source_id

    @property
    def running(self) -> bool:
        return self._accepting

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def handle(self, event: CreationEvent) -> asyncio.Future | None:
        """
        Process one delivery inline. Returns the retry controller's outcome
        future, or None when the adapter dropped the event.
        """
        self.stats.received += 1
        envelope = self.adapter.on_create(event)
        if envelope is None:
            self.stats.dropped += 1
            return None

        candidate = self.tagger(envelope)
        self.stats.submitted += 1
        return await self.controller.submit(candidate)

    async def start(self) -> None:
        if self._accepting:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_maxsize)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"pipeline:{self.source_id}:{i}")
            for i in range(self.concurrency)
        ]
        self._accepting = True
        log.info("pipeline %s started (%d workers)", self.source_id, self.concurrency)

    async def submit(self, event: CreationEvent) -> None:
        """Queue a delivery. Waits if this source's queue is full."""
        if not self._accepting or self._queue is None:
            raise PipelineClosedError(f"pipeline {self.source_id} is not accepting events")
        await self._queue.put(event)

    async def _worker(self, idx: int) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                await self.handle(event)
            except Exception:
                self.stats.crashed += 1
                log.exception("pipeline %s worker %d failed on event id=%r", self.source_id, idx, event.id)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait for queued events and any retries they scheduled."""
        if self._queue is not None:
            await self._queue.join()
        await self.controller.join()

    async def drain(self) -> dict[str, Any]:
        """
        Stop taking events, stop scheduling retries, finish what was already
        accepted, then stop the workers.
        """
        self._accepting = False
        abandoned = await self.controller.drain()

        if self._queue is not None:
            await self._queue.join()
            # retries for anything the queue just finished are abandoned immediately
            abandoned = await self.controller.drain()

        for w in self._workers:
            w.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        log.info("pipeline %s drained (%d abandoned retries)", self.source_id, len(abandoned))
        return {"source_id": self.source_id, "abandoned": len(abandoned)}

    def snapshot(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "running": self.running,
            "queue_depth": self.queue_depth,
            "scheduled_retries": self.controller.scheduled_retries,
            **asdict(self.stats),
            **self.controller.counters,
        }
