# app/adapters/sources/adapter.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from ...config import SourceConfig
from ...domain.errors import MalformedSourceRecord
from ...domain.normalize import apply_field_rules, coerce_original_id
from ...domain.types import CreationEvent, SyncEnvelope

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceAdapter:
    """
    One per source. Turns a delivered creation event into a SyncEnvelope.

    May see the same logical record more than once; it keeps no state
    between calls so that is harmless.
    """

    def __init__(self, config: SourceConfig, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.config = config
        self._clock = clock

    @property
    def source_id(self) -> str:
        return self.config.source_id

    def normalize(self, event: CreationEvent) -> SyncEnvelope:
        original_id = coerce_original_id(event.id)
        payload = apply_field_rules(
            event.data,
            field_map=self.config.field_map,
            drop_fields=self.config.drop_fields,
            required_fields=self.config.required_fields,
        )
        return SyncEnvelope(
            source_id=self.config.source_id,
            original_id=original_id,
            original_collection=self.config.collection,
            payload=payload,
            received_at=self._clock(),
        )

    def on_create(self, event: CreationEvent | dict[str, Any]) -> SyncEnvelope | None:
        """
        Returns None for malformed payloads. Those are logged and dropped:
        a retry would see the same broken document.
        """
        if isinstance(event, dict):
            event = CreationEvent(id=event.get("id"), data=event.get("data"))

        try:
            return self.normalize(event)
        except MalformedSourceRecord as e:
            log.warning(
                "Dropping malformed %s record id=%r: %s",
                self.config.source_id,
                event.id,
                e,
            )
            return None
