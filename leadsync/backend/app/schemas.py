from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any


class CreationEventIn(BaseModel):
    # loose on purpose: the adapter decides what is malformed, not the HTTP layer
    id: Any = None
    data: Any = None


class EventAccepted(BaseModel):
    accepted: bool = True
    source_id: str
    original_id: str | None = None
    queue_depth: int = Field(..., ge=0)


class CanonicalLeadOut(BaseModel):
    """
    Public canonical document: the normalized source fields at the top level,
    next to the provenance keys.
    """
    model_config = ConfigDict(extra="allow")

    id: str
    original_id: str
    original_collection: str | None = None
    source_database: str
    synced_at: datetime | None = None
    sync_attempt_count: int


class DeadLetterOut(BaseModel):
    id: int
    canonical_id: str
    original_id: str
    source_id: str
    error: str
    error_kind: str
    attempts: int
    failed_at: datetime


class SourceOut(BaseModel):
    source_id: str
    collection: str
    created_field: str
    created_format: str
    pull_enabled: bool
    lead_count: int = 0
    stats: dict[str, Any]


class BackfillResult(BaseModel):
    run_id: int | None = None
    since: str
    per_source: dict[str, int]
    skipped: list[str]
    errors: list[str]


class SyncRunOut(BaseModel):
    id: int
    job_name: str
    status: str
    started_at: datetime
    finished_at: datetime | None = None
    error: str | None = None
    summary: dict[str, Any] | None = None


class SourceCheck(BaseModel):
    collection: str
    ok: bool
    count: int | None = None
    error: str | None = None


class SourceCheckResult(BaseModel):
    ok: bool
    results: dict[str, SourceCheck]
    skipped: list[str]
