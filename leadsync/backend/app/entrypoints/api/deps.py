# app/entrypoints/api/deps.py
from __future__ import annotations

from typing import Callable

from fastapi import Header, HTTPException, Request

from ...adapters.clients.source_api import SourceApiClient
from ...config import SourceConfig, settings
from ...db import get_session  # noqa: F401  (re-exported for routers)
from ...service_layer.registry import PipelineRegistry


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    if settings.API_KEY:
        if not x_api_key or x_api_key != settings.API_KEY:
            raise HTTPException(status_code=401, detail="Invalid API key")


def get_registry(request: Request) -> PipelineRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Sync registry not initialised")
    return registry


def get_source_client_factory() -> Callable[[SourceConfig], SourceApiClient]:
    """How routers reach source stores over HTTP (overridden in tests)."""
    return SourceApiClient
