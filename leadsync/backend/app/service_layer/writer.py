# app/service_layer/writer.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from ..adapters.repos.canonical import CanonicalLeadRepository
from ..domain.errors import TransientInfraError, classify_write_error
from ..domain.types import CanonicalLeadCandidate, WriteResult

log = logging.getLogger(__name__)


class IdempotentUpsertWriter:
    """
    Writes one candidate into the canonical store.

    Each call is its own session + transaction and re-applies the whole
    candidate, so N identical calls leave the same row as one call
    (only synced_at moves). A call that outlives timeout_s is reported as
    a transient failure; if it did commit, the retry just replaces the row again.
    """

    def __init__(self, session_maker: Callable[[], Any], *, timeout_s: float = 10.0) -> None:
        self.session_maker = session_maker
        self.timeout_s = float(timeout_s)

    async def _write(self, candidate: CanonicalLeadCandidate, attempt_number: int) -> None:
        # closing the session rolls back anything left uncommitted
        async with self.session_maker() as session:
            repo = CanonicalLeadRepository(session)
            await repo.replace(candidate, attempt_count=attempt_number)
            await session.commit()

    async def upsert(self, candidate: CanonicalLeadCandidate, *, attempt_number: int = 1) -> WriteResult:
        try:
            await asyncio.wait_for(self._write(candidate, attempt_number), timeout=self.timeout_s)
            return WriteResult(ok=True)
        except asyncio.TimeoutError:
            return WriteResult(
                ok=False,
                error=TransientInfraError(f"write deadline of {self.timeout_s:g}s exceeded"),
            )
        except Exception as e:
            err = classify_write_error(e)
            log.debug("upsert %s failed (%s): %s", candidate.canonical_id, type(err).__name__, e)
            return WriteResult(ok=False, error=err)
