# app/entrypoints/api/routers/health.py
from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_registry, get_source_client_factory, require_api_key
from ....adapters.clients.source_api import SourceApiClient
from ....adapters.repos.canonical import CanonicalLeadRepository
from ....config import SourceConfig, settings
from ....db import get_session
from ....schemas import SourceCheckResult, SourceOut
from ....service_layer.registry import PipelineRegistry
from ....service_layer.source_checks import check_sources

router = APIRouter(tags=["health"])


@router.get("/health")
def health(registry: PipelineRegistry = Depends(get_registry)) -> dict[str, str]:
    return {"status": "ok", "registry": registry.state.value}


@router.get("/sources", response_model=list[SourceOut], dependencies=[Depends(require_api_key)])
async def list_sources(
    registry: PipelineRegistry = Depends(get_registry),
    session: AsyncSession = Depends(get_session),
) -> list[SourceOut]:
    repo = CanonicalLeadRepository(session)
    out: list[SourceOut] = []
    for sid in registry.source_ids:
        pipeline = registry.get(sid)
        cfg = pipeline.adapter.config
        out.append(
            SourceOut(
                source_id=sid,
                collection=cfg.collection,
                created_field=cfg.created_field,
                created_format=cfg.created_format,
                pull_enabled=bool(cfg.base_url),
                lead_count=await repo.count(source=sid),
                stats=pipeline.snapshot(),
            )
        )
    return out


@router.get("/sources/check", response_model=SourceCheckResult, dependencies=[Depends(require_api_key)])
async def check_source_connectivity(
    registry: PipelineRegistry = Depends(get_registry),
    client_factory: Callable[[SourceConfig], SourceApiClient] = Depends(get_source_client_factory),
) -> SourceCheckResult:
    """One failing source shows up as an error entry; the response is still 200."""
    res = await check_sources(registry.configs, limit=settings.SYNC_SOURCE_CHECK_LIMIT, client_factory=client_factory)
    return SourceCheckResult(**res)


@router.get("/debug/config", dependencies=[Depends(require_api_key)])
def debug_config() -> dict[str, Any]:
    def _redact(v: str | None) -> str | None:
        if not v:
            return v
        if len(v) <= 8:
            return "***"
        return v[:4] + "***" + v[-4:]

    return {
        "ENV": settings.ENV,
        "SYNC_DB_URL": settings.SYNC_DB_URL,
        "API_KEY": _redact(settings.API_KEY),
        "SYNC_MAX_ATTEMPTS": settings.SYNC_MAX_ATTEMPTS,
        "SYNC_WRITE_TIMEOUT_S": settings.SYNC_WRITE_TIMEOUT_S,
        "SYNC_BACKOFF_BASE_S": settings.SYNC_BACKOFF_BASE_S,
        "SYNC_BACKOFF_CAP_S": settings.SYNC_BACKOFF_CAP_S,
        "SOURCES": [
            {"source_id": s.source_id, "base_url": s.base_url, "api_key": _redact(s.api_key)}
            for s in settings.SYNC_SOURCES
        ],
    }
