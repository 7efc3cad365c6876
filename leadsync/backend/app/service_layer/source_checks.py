# app/service_layer/source_checks.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable

from ..adapters.clients.source_api import SourceApiClient
from ..config import SourceConfig

log = logging.getLogger(__name__)


async def check_sources(
    sources: Iterable[SourceConfig],
    *,
    limit: int = 10,
    client_factory: Callable[[SourceConfig], SourceApiClient] = SourceApiClient,
) -> dict[str, Any]:
    """
    Can each pull-enabled source collection be read right now?

    Every source gets either a document count (capped at limit) or the error
    it raised. Push-only sources are listed under `skipped`.
    """
    results: dict[str, dict[str, Any]] = {}
    skipped: list[str] = []

    async def _one(src: SourceConfig) -> None:
        if not src.base_url:
            skipped.append(src.source_id)
            return
        try:
            n = await client_factory(src).count_documents(limit=limit)
            results[src.source_id] = {"collection": src.collection, "ok": True, "count": n, "error": None}
        except Exception as e:
            log.error("Error accessing %s %s collection: %s", src.source_id, src.collection, e)
            results[src.source_id] = {"collection": src.collection, "ok": False, "count": None, "error": str(e)}

    await asyncio.gather(*(_one(s) for s in sources))

    return {
        "ok": all(r["ok"] for r in results.values()),
        "results": results,
        "skipped": sorted(skipped),
    }
