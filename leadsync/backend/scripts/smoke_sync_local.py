# scripts/smoke_sync_local.py
import asyncio
import os

from app.adapters.repos.canonical import CanonicalLeadRepository
from app.config import settings
from app.db import AsyncSessionLocal, async_session, engine
from app.domain.provenance import canonical_id
from app.models import Base
from app.service_layer.registry import PipelineRegistry


async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    source = os.environ.get("SOURCE", settings.SYNC_SOURCES[0].source_id)
    lead_id = os.environ.get("LEAD_ID", "smoke-L1")

    registry = PipelineRegistry.from_settings(settings, AsyncSessionLocal)
    await registry.start()

    event = {"id": lead_id, "data": {"name": "Asha", "phone": "9999900000"}}
    # deliver twice on purpose: the canonical store must still hold one row
    await registry.dispatch(source, event)
    await registry.dispatch(source, event)
    await registry.join()
    await registry.drain()

    async with async_session() as session:
        row = await CanonicalLeadRepository(session).get(canonical_id(source, lead_id))
        print(row.to_document() if row else None)
        print(registry.stats()[source])


if __name__ == "__main__":
    asyncio.run(main())
