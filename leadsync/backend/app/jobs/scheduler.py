# app/jobs/scheduler.py
from __future__ import annotations

import logging
from typing import Any, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import Settings, settings as default_settings
from ..service_layer.backfill import run_backfill_job
from ..service_layer.registry import PipelineRegistry, RegistryState

log = logging.getLogger(__name__)


async def run_scheduled_backfill(
    registry: PipelineRegistry,
    session_maker: Callable[[], Any],
    settings: Settings = default_settings,
) -> dict[str, Any] | None:
    """
    Scheduled "sync today's leads" pass.
    Quiet when the registry is not running or no source can be pulled from.
    """
    if registry.state is not RegistryState.running:
        return None

    sources = [s for s in registry.configs if s.base_url]
    if not sources:
        return None  # QUIET

    async with session_maker() as session:
        try:
            res = await run_backfill_job(session, registry, sources, job_name="backfill_scheduled")
        finally:
            await session.commit()

    log.info("Scheduled backfill finished: %s", res)
    return res


def build_scheduler(
    registry: PipelineRegistry,
    session_maker: Callable[[], Any],
    settings: Settings = default_settings,
) -> AsyncIOScheduler:
    sched = AsyncIOScheduler(timezone=settings.SCHED_TIMEZONE)

    sched.add_job(
        run_scheduled_backfill,
        "interval",
        minutes=settings.SCHED_BACKFILL_INTERVAL_MINUTES,
        args=[registry, session_maker, settings],
        id="backfill_today",
        max_instances=1,
        coalesce=True,
    )

    return sched
