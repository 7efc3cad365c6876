# app/adapters/repos/canonical.py
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.errors import PermanentWriteError
from ...domain.types import CanonicalLeadCandidate
from ...models import CanonicalLead

_DIALECT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class CanonicalLeadRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _insert_fn(self):
        conn = await self.session.connection()
        name = conn.dialect.name
        fn = _DIALECT_INSERTS.get(name)
        if fn is None:
            raise PermanentWriteError(f"canonical store has no atomic upsert for dialect {name!r}")
        return fn

    async def replace(self, candidate: CanonicalLeadCandidate, *, attempt_count: int) -> None:
        """
        Full-document replace keyed by canonical id, as one statement.

        INSERT .. ON CONFLICT (id) DO UPDATE lets the database order concurrent
        writers for the same id (last commit wins). Every column is rewritten,
        nothing is merged, and synced_at comes from the database clock.
        """
        insert = await self._insert_fn()
        values = {
            "id": candidate.canonical_id,
            "original_id": candidate.original_id,
            "original_collection": candidate.original_collection,
            "source_database": candidate.source_database,
            "fields": dict(candidate.fields),
            "sync_attempt_count": int(attempt_count),
            "synced_at": func.now(),
        }
        stmt = insert(CanonicalLead).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[CanonicalLead.id],
            set_={k: stmt.excluded[k] for k in values if k != "id"},
        )
        await self.session.execute(stmt)

    async def get(self, canonical_id: str) -> CanonicalLead | None:
        q = select(CanonicalLead).where(CanonicalLead.id == canonical_id)
        return (await self.session.execute(q)).scalars().first()

    async def list_recent(self, *, source: str | None = None, limit: int = 50) -> list[CanonicalLead]:
        q = select(CanonicalLead)
        if source:
            q = q.where(CanonicalLead.source_database == source)
        q = q.order_by(CanonicalLead.synced_at.desc(), CanonicalLead.id.asc()).limit(limit)
        return list((await self.session.execute(q)).scalars().all())

    async def count(self, *, source: str | None = None) -> int:
        q = select(func.count()).select_from(CanonicalLead)
        if source:
            q = q.where(CanonicalLead.source_database == source)
        return int((await self.session.execute(q)).scalar_one())
