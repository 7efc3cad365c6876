# app/entrypoints/api/routers/leads.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import require_api_key
from ....adapters.repos.canonical import CanonicalLeadRepository
from ....db import get_session
from ....models import CanonicalLead
from ....schemas import CanonicalLeadOut

router = APIRouter(tags=["leads"], dependencies=[Depends(require_api_key)])


def _to_out(row: CanonicalLead) -> CanonicalLeadOut:
    return CanonicalLeadOut(**{**row.to_document(), "id": row.id})


@router.get("/leads", response_model=list[CanonicalLeadOut])
async def list_leads(
    source: str | None = Query(default=None),
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> list[CanonicalLeadOut]:
    rows = await CanonicalLeadRepository(session).list_recent(source=source, limit=limit)
    return [_to_out(r) for r in rows]


@router.get("/leads/{canonical_id}", response_model=CanonicalLeadOut)
async def get_lead(
    canonical_id: str,
    session: AsyncSession = Depends(get_session),
) -> CanonicalLeadOut:
    row = await CanonicalLeadRepository(session).get(canonical_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Lead not found")
    return _to_out(row)
