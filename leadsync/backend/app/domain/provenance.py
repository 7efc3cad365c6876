# app/domain/provenance.py
from __future__ import annotations

import hashlib

from .types import CanonicalLeadCandidate, SyncEnvelope

# Keys the tagger owns. A source field with one of these names is overwritten.
PROVENANCE_KEYS: frozenset[str] = frozenset(
    {"original_id", "original_collection", "source_database", "synced_at", "sync_attempt_count"}
)


def canonical_id(source_database: str, original_id: str) -> str:
    """
    Stable address of a source record in the canonical store.

    Same (source, id) -> same canonical id across every redelivery.
    Source ids never contain ':' (enforced by SourceConfig), so two sources
    cannot produce the same hash input.
    """
    key = f"{source_database}:{original_id}".encode("utf-8")
    return hashlib.sha256(key).hexdigest()


def tag(envelope: SyncEnvelope) -> CanonicalLeadCandidate:
    fields = {k: v for k, v in envelope.payload.items() if k not in PROVENANCE_KEYS}
    return CanonicalLeadCandidate(
        canonical_id=canonical_id(envelope.source_id, envelope.original_id),
        source_database=envelope.source_id,
        original_id=envelope.original_id,
        original_collection=envelope.original_collection,
        fields=fields,
    )
