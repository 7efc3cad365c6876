# app/entrypoints/fastapi_app.py
from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi import FastAPI

from ..config import settings
from ..db import AsyncSessionLocal, engine, get_session
from ..jobs.scheduler import build_scheduler
from ..models import Base
from ..service_layer.registry import PipelineRegistry
from .api.routers import dead_letters, events, health, jobs, leads

log = logging.getLogger(__name__)


def create_app(
    *,
    registry: PipelineRegistry | None = None,
    session_maker: Callable[[], Any] | None = None,
    create_tables: bool = True,
    enable_scheduler: bool = False,
) -> FastAPI:
    """
    init -> run -> graceful drain, tied to the ASGI lifecycle.
    The registry is built once here and handed to routers through app.state.
    """
    app = FastAPI(title="LeadSync - multi-source lead consolidation")

    session_maker = session_maker or AsyncSessionLocal
    # tables go wherever the session maker writes, not always the global engine
    bind = getattr(session_maker, "kw", {}).get("bind") or engine
    app.state.registry = registry or PipelineRegistry.from_settings(settings, session_maker)

    if session_maker is not AsyncSessionLocal:
        async def _injected_session():
            async with session_maker() as session:
                yield session

        app.dependency_overrides[get_session] = _injected_session
    app.state.scheduler = None

    @app.on_event("startup")
    async def _startup() -> None:
        if create_tables:
            # Single place where DB tables are created in dev.
            async with bind.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        await app.state.registry.start()

        if enable_scheduler:
            sched = build_scheduler(app.state.registry, session_maker, settings)
            sched.start()
            app.state.scheduler = sched

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)
        reports = await app.state.registry.drain()
        log.info("drained: %s", reports)

    # Routers
    app.include_router(health.router)
    app.include_router(events.router)
    app.include_router(leads.router)
    app.include_router(dead_letters.router)
    app.include_router(jobs.router)

    return app
