# app/service_layer/backfill.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ..adapters.clients.source_api import SourceApiClient
from ..config import SourceConfig, settings
from ..domain.types import CreationEvent
from .registry import PipelineRegistry
from .syncruns import finish_run_fail, finish_run_success, start_run

log = logging.getLogger(__name__)


def start_of_today_utc(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


async def backfill_created_since(
    registry: PipelineRegistry,
    sources: Iterable[SourceConfig],
    *,
    since: datetime,
    client_factory: Callable[[SourceConfig], SourceApiClient] = SourceApiClient,
    enqueue_timeout_s: float | None = None,
) -> dict[str, Any]:
    """
    Catch-up pass for creation events the push path may have missed.

    Pulled documents go through registry.dispatch like any other delivery,
    so anything already synced is simply replaced with the same content.
    One failing source is recorded in `errors` and does not stop the rest.
    A source whose queue stays full for enqueue_timeout_s is given up on for
    this run, so it cannot hold the whole job open.
    """
    timeout_s = settings.SYNC_BACKFILL_ENQUEUE_TIMEOUT_S if enqueue_timeout_s is None else enqueue_timeout_s
    per_source: dict[str, int] = {}
    skipped: list[str] = []
    errors: list[str] = []

    async def _one(src: SourceConfig) -> None:
        if not src.base_url:
            skipped.append(src.source_id)
            return
        events: list[CreationEvent] = []
        queued = 0
        try:
            events = await client_factory(src).fetch_created_since(since)
            log.info("Found %d documents from %s %s created since %s", len(events), src.source_id, src.collection, since.isoformat())
            for ev in events:
                await asyncio.wait_for(registry.dispatch(src.source_id, ev), timeout=timeout_s)
                queued += 1
            per_source[src.source_id] = len(events)
        except asyncio.TimeoutError:
            log.warning("Backfill of %s stalled: queue full after %d of %d documents", src.source_id, queued, len(events))
            errors.append(
                f"Error syncing from {src.source_id} {src.collection}: queue full, {queued} of {len(events)} documents queued"
            )
        except Exception as e:
            log.error("Error backfilling %s %s: %s", src.source_id, src.collection, e)
            errors.append(f"Error syncing from {src.source_id} {src.collection}: {e}")

    await asyncio.gather(*(_one(s) for s in sources))

    return {
        "since": since.isoformat(),
        "per_source": per_source,
        "skipped": sorted(skipped),
        "errors": errors,
    }


async def run_backfill_job(
    session: AsyncSession,
    registry: PipelineRegistry,
    sources: Iterable[SourceConfig],
    *,
    job_name: str = "backfill_today",
    since: datetime | None = None,
    client_factory: Callable[[SourceConfig], SourceApiClient] = SourceApiClient,
    enqueue_timeout_s: float | None = None,
) -> dict[str, Any]:
    """
    Records a SyncRun around backfill_created_since. Does NOT commit
    (caller controls transaction boundaries).
    """
    run = await start_run(session, job_name)
    try:
        res = await backfill_created_since(
            registry,
            sources,
            since=since or start_of_today_utc(),
            client_factory=client_factory,
            enqueue_timeout_s=enqueue_timeout_s,
        )
        await finish_run_success(session, run, res)
        return {"run_id": run.id, **res}
    except Exception as e:
        await finish_run_fail(session, run, e)
        raise
