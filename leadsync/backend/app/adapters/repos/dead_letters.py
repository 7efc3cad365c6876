# app/adapters/repos/dead_letters.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import DeadLetterEntry, ErrorKind


class DeadLetterRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        *,
        canonical_id: str,
        original_id: str,
        source_id: str,
        error: str,
        error_kind: ErrorKind,
        attempts: int,
        payload: dict[str, Any] | None = None,
        failed_at: datetime | None = None,
    ) -> DeadLetterEntry:
        entry = DeadLetterEntry(
            canonical_id=canonical_id,
            original_id=original_id,
            source_id=source_id,
            error=error,
            error_kind=error_kind,
            attempts=int(attempts),
            payload_json=json.dumps(payload, default=str) if payload is not None else None,
            failed_at=failed_at or datetime.utcnow(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_recent(
        self,
        *,
        source_id: str | None = None,
        limit: int = 100,
    ) -> list[DeadLetterEntry]:
        q = select(DeadLetterEntry)
        if source_id:
            q = q.where(DeadLetterEntry.source_id == source_id)
        q = q.order_by(DeadLetterEntry.id.desc()).limit(limit)
        return list((await self.session.execute(q)).scalars().all())
