# app/domain/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .errors import SyncError


@dataclass(frozen=True)
class CreationEvent:
    """What a source delivers: the new document's id plus its full body."""
    id: str
    data: Any


@dataclass(frozen=True)
class SyncEnvelope:
    source_id: str
    original_id: str
    payload: dict[str, Any]
    received_at: datetime
    original_collection: str | None = None


@dataclass(frozen=True)
class CanonicalLeadCandidate:
    canonical_id: str
    source_database: str
    original_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    original_collection: str | None = None


@dataclass(frozen=True)
class WriteResult:
    ok: bool
    error: SyncError | None = None
