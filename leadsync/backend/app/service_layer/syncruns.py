from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import SyncRun, SyncRunStatus


async def start_run(session: AsyncSession, job_name: str) -> SyncRun:
    run = SyncRun(job_name=job_name, started_at=datetime.utcnow(), status=SyncRunStatus.running)
    session.add(run)
    await session.flush()
    return run


async def finish_run_success(session: AsyncSession, run: SyncRun, summary: dict[str, Any]) -> None:
    run.status = SyncRunStatus.success
    run.finished_at = datetime.utcnow()
    run.summary_json = json.dumps(summary, default=str)
    run.error = None
    await session.flush()


async def finish_run_fail(session: AsyncSession, run: SyncRun, err: Exception) -> None:
    run.status = SyncRunStatus.failed
    run.finished_at = datetime.utcnow()
    run.error = str(err)
    await session.flush()


async def recent_runs(session: AsyncSession, limit: int = 20) -> list[SyncRun]:
    q = select(SyncRun).order_by(SyncRun.id.desc()).limit(limit)
    return list((await session.execute(q)).scalars().all())
