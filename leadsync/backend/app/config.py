from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceConfig(BaseModel):
    """
    One configured source store. Adding a source is just adding one of these.

    field_map:  {"sourceKey": "canonicalKey"} renames applied by the adapter
    created_field / created_format: what the backfill filters on
      - epoch_ms: numeric milliseconds (credsettlee / settleloans forms)
      - iso: ISO-8601 timestamps (ama form)
    base_url: where the backfill pulls from; None means push-only
    api_key: sent as X-API-Key on pulls from base_url
    """

    source_id: str
    collection: str
    created_field: str = "created"
    created_format: Literal["epoch_ms", "iso"] = "epoch_ms"
    field_map: dict[str, str] = Field(default_factory=dict)
    drop_fields: list[str] = Field(default_factory=list)
    required_fields: list[str] = Field(default_factory=list)
    base_url: str | None = None
    api_key: str | None = None
    concurrency: int | None = None

    @field_validator("source_id")
    @classmethod
    def _check_source_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("source_id must not be empty")
        # ':' separates source and original id in the canonical id hash input
        if ":" in v:
            raise ValueError(f"source_id {v!r} must not contain ':'")
        return v


def _default_sources() -> list[SourceConfig]:
    return [
        SourceConfig(source_id="credsettlee", collection="Form", created_field="created"),
        SourceConfig(source_id="settleloans", collection="ContactPageForm", created_field="created"),
        SourceConfig(source_id="ama", collection="form", created_field="timestamp", created_format="iso"),
    ]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    SYNC_DB_URL: str = "sqlite+aiosqlite:///./leadsync.db"

    # --- Minimal B2B Auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    # --- Retry / failure controller ---
    SYNC_MAX_ATTEMPTS: int = 5
    SYNC_WRITE_TIMEOUT_S: float = 10.0
    SYNC_BACKOFF_BASE_S: float = 1.0
    SYNC_BACKOFF_CAP_S: float = 300.0

    # --- Pipelines ---
    SYNC_PIPELINE_CONCURRENCY: int = 4
    SYNC_QUEUE_MAXSIZE: int = 1000

    # --- Backfill ---
    # how long one pulled document may wait for room in its source queue
    SYNC_BACKFILL_ENQUEUE_TIMEOUT_S: float = 30.0
    SYNC_SOURCE_CHECK_LIMIT: int = 10

    # JSON list of SourceConfig objects, or a path to a JSON file with the same shape
    SYNC_SOURCES: list[SourceConfig] = Field(default_factory=_default_sources)
    SYNC_SOURCES_FILE: str | None = None

    # --- Outbound HTTP (backfill pulls) ---
    HTTP_TIMEOUT_S: float = 20.0
    HTTP_MAX_RETRIES: int = 2
    HTTP_BACKOFF_BASE_S: float = 0.5
    HTTP_RATE_LIMIT_RPS: float = 5.0
    HTTP_CIRCUIT_FAIL_THRESHOLD: int = 5
    HTTP_CIRCUIT_RESET_S: float = 60.0

    # --- Scheduler tuning ---
    SCHED_ENABLED: bool = True
    SCHED_BACKFILL_INTERVAL_MINUTES: int = 15
    SCHED_TIMEZONE: str = "Asia/Kolkata"

    @model_validator(mode="after")
    def _load_sources(self) -> "Settings":
        if self.SYNC_SOURCES_FILE:
            raw = json.loads(Path(self.SYNC_SOURCES_FILE).read_text(encoding="utf-8"))
            self.SYNC_SOURCES = [SourceConfig.model_validate(x) for x in raw]

        seen: set[str] = set()
        for src in self.SYNC_SOURCES:
            if src.source_id in seen:
                raise ValueError(f"duplicate source_id {src.source_id!r} in SYNC_SOURCES")
            seen.add(src.source_id)
        return self


settings = Settings()
