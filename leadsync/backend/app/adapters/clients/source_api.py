# app/adapters/clients/source_api.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from ...config import SourceConfig
from ...domain.types import CreationEvent
from .http_resilience import resilient_request


def format_created_since(since: datetime, created_format: str) -> str:
    """
    Sources disagree on how "created" is stored:
      epoch_ms -> numeric milliseconds
      iso      -> ISO-8601 timestamp
    """
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    if created_format == "epoch_ms":
        return str(int(since.timestamp() * 1000))
    return since.isoformat()


def _as_documents(body: Any) -> list[dict[str, Any]]:
    """
    Accept either:
      - {"documents": [{"id": ..., "data": {...}}, ...]}
      - [{"id": ..., "data": {...}}, ...]
    """
    if isinstance(body, dict):
        body = body.get("documents")
    if isinstance(body, list):
        return [x for x in body if isinstance(x, dict)]
    return []


class SourceApiClient:
    """
    Pulls recently created documents from one source's HTTP export.

    GET {base_url}/collections/{collection}/documents?created_since=<value>
    """

    def __init__(
        self,
        config: SourceConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not config.base_url:
            raise ValueError(f"source {config.source_id!r} has no base_url to pull from")
        self.config = config
        self._base_url = config.base_url.rstrip("/")
        self._api_key = config.api_key
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        h = {"accept": "application/json"}
        if self._api_key:
            h["X-API-Key"] = self._api_key
        return h

    def _documents_url(self) -> str:
        return f"{self._base_url}/collections/{self.config.collection}/documents"

    async def fetch_created_since(self, since: datetime) -> list[CreationEvent]:
        params = {
            "created_field": self.config.created_field,
            "created_since": format_created_since(since, self.config.created_format),
        }
        resp = await resilient_request(
            "GET",
            self._documents_url(),
            headers=self._headers(),
            params=params,
            transport=self._transport,
        )
        # id may legitimately be missing here; the adapter decides what is malformed
        return [CreationEvent(id=d.get("id"), data=d.get("data")) for d in _as_documents(resp.json())]

    async def count_documents(self, limit: int = 10) -> int:
        """Reachability check: how many documents (up to limit) the collection returns."""
        resp = await resilient_request(
            "GET",
            self._documents_url(),
            headers=self._headers(),
            params={"limit": int(limit)},
            transport=self._transport,
        )
        return len(_as_documents(resp.json()))
