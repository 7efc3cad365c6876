# app/entrypoints/api/routers/jobs.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_registry, get_source_client_factory, require_api_key
from ....adapters.clients.source_api import SourceApiClient
from ....config import SourceConfig
from ....db import get_session
from ....models import SyncRun
from ....schemas import BackfillResult, SyncRunOut
from ....service_layer.backfill import run_backfill_job
from ....service_layer.registry import PipelineRegistry
from ....service_layer.syncruns import recent_runs

router = APIRouter(tags=["jobs"], dependencies=[Depends(require_api_key)])


@router.post("/jobs/backfill", response_model=BackfillResult)
async def jobs_backfill(
    source: str | None = Query(None, description="Only this source id"),
    since: datetime | None = Query(None, description="Defaults to start of today (UTC)"),
    session: AsyncSession = Depends(get_session),
    registry: PipelineRegistry = Depends(get_registry),
    client_factory: Callable[[SourceConfig], SourceApiClient] = Depends(get_source_client_factory),
) -> BackfillResult:
    sources = [s for s in registry.configs if source is None or s.source_id == source]
    try:
        res = await run_backfill_job(
            session,
            registry,
            sources,
            job_name="backfill_api",
            since=since,
            client_factory=client_factory,
        )
    finally:
        await session.commit()
    return BackfillResult(**res)


def _run_out(r: SyncRun) -> SyncRunOut:
    return SyncRunOut(
        id=r.id,
        job_name=r.job_name,
        status=r.status.value,
        started_at=r.started_at,
        finished_at=r.finished_at,
        error=(r.error or "")[:1200] or None,
        summary=json.loads(r.summary_json) if r.summary_json else None,
    )


@router.get("/jobs/runs", response_model=list[SyncRunOut])
async def jobs_runs(
    limit: int = Query(default=20, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
) -> list[SyncRunOut]:
    """Backfill history, newest first."""
    return [_run_out(r) for r in await recent_runs(session, limit=limit)]
