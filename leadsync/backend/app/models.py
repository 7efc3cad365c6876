# app/models.py
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# -----------------------------
# Core enums
# -----------------------------
class ErrorKind(str, enum.Enum):
    transient = "transient"
    permanent = "permanent"


class SyncRunStatus(str, enum.Enum):
    running = "running"
    success = "success"
    failed = "failed"


# -----------------------------
# Models
# -----------------------------
class CanonicalLead(Base):
    """
    One document per canonical id. Every successful write replaces the whole row.
    synced_at is stamped by the database at commit, never by the caller's clock.
    """
    __tablename__ = "crm_leads"

    # sha256 hex of "<source_database>:<original_id>"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    original_id: Mapped[str] = mapped_column(String(255), index=True)
    original_collection: Mapped[str | None] = mapped_column(String(120), nullable=True)
    source_database: Mapped[str] = mapped_column(String(80), index=True)

    fields: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    synced_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    sync_attempt_count: Mapped[int] = mapped_column(Integer, default=1)

    def to_document(self) -> dict[str, Any]:
        # provenance keys win over any same-named source field
        return {
            **(self.fields or {}),
            "original_id": self.original_id,
            "original_collection": self.original_collection,
            "source_database": self.source_database,
            "synced_at": self.synced_at,
            "sync_attempt_count": self.sync_attempt_count,
        }


class DeadLetterEntry(Base):
    """Terminal, append-only. Nothing reads this table to retry."""
    __tablename__ = "dead_letters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    canonical_id: Mapped[str] = mapped_column(String(64), index=True)
    original_id: Mapped[str] = mapped_column(String(255), index=True)
    source_id: Mapped[str] = mapped_column(String(80), index=True)

    error: Mapped[str] = mapped_column(Text)
    error_kind: Mapped[ErrorKind] = mapped_column(Enum(ErrorKind), index=True)
    attempts: Mapped[int] = mapped_column(Integer)

    # candidate as it was when we gave up, for manual inspection
    payload_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    failed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class SyncRun(Base):
    """
    Tracks batch job executions (backfill today, manual backfill).
    """
    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(80), index=True)

    status: Mapped[SyncRunStatus] = mapped_column(Enum(SyncRunStatus), default=SyncRunStatus.running, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # store error message
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # {"per_source": {"ama": 3, ...}, "errors": [...], "since": "..."}
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)
