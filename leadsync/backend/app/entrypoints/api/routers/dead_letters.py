# app/entrypoints/api/routers/dead_letters.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import require_api_key
from ....adapters.repos.dead_letters import DeadLetterRepository
from ....db import get_session
from ....schemas import DeadLetterOut

router = APIRouter(tags=["dead-letters"])


@router.get("/dead-letters", response_model=list[DeadLetterOut], dependencies=[Depends(require_api_key)])
async def list_dead_letters(
    source_id: str | None = Query(default=None),
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(get_session),
) -> list[DeadLetterOut]:
    rows = await DeadLetterRepository(session).list_recent(source_id=source_id, limit=limit)
    return [
        DeadLetterOut(
            id=r.id,
            canonical_id=r.canonical_id,
            original_id=r.original_id,
            source_id=r.source_id,
            error=r.error,
            error_kind=r.error_kind.value,
            attempts=r.attempts,
            failed_at=r.failed_at,
        )
        for r in rows
    ]
