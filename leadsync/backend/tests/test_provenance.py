from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.config import SourceConfig
from app.domain.provenance import canonical_id, tag
from app.domain.types import SyncEnvelope


def test_canonical_id_is_deterministic():
    assert canonical_id("sourceA", "123") == canonical_id("sourceA", "123")


def test_canonical_id_differs_across_sources():
    assert canonical_id("sourceA", "123") != canonical_id("sourceB", "123")
    assert canonical_id("sourceA", "123") != canonical_id("sourceA", "124")


def test_source_id_cannot_contain_separator():
    with pytest.raises(ValidationError):
        SourceConfig(source_id="a:b", collection="Form")


def test_tag_adds_provenance_and_keeps_fields():
    env = SyncEnvelope(
        source_id="sourceA",
        original_id="L1",
        original_collection="Form",
        payload={"name": "Asha", "phone": "9999900000", "source_database": "spoofed"},
        received_at=datetime.now(timezone.utc),
    )
    c = tag(env)

    assert c.canonical_id == canonical_id("sourceA", "L1")
    assert c.source_database == "sourceA"
    assert c.original_id == "L1"
    assert c.original_collection == "Form"
    # provenance keys are owned by the tagger
    assert c.fields == {"name": "Asha", "phone": "9999900000"}
