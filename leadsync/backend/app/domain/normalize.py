# app/domain/normalize.py
from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from .errors import MalformedSourceRecord


def to_jsonable(value: Any) -> Any:
    """
    Best-effort conversion of a source value into something the JSON column accepts.
    Structural only: no business meaning is attached to any field.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def coerce_original_id(raw: Any) -> str:
    if raw is None:
        raise MalformedSourceRecord("event has no id")
    s = str(raw).strip()
    if not s:
        raise MalformedSourceRecord("event id is empty")
    return s


def apply_field_rules(
    data: Any,
    *,
    field_map: Mapping[str, str],
    drop_fields: list[str] | tuple[str, ...] = (),
    required_fields: list[str] | tuple[str, ...] = (),
) -> dict[str, Any]:
    """
    Shape one source document into normalized fields.

    Builds new containers all the way down, so the caller's document is never mutated.
    Raises MalformedSourceRecord when the body is not a mapping or a
    required field is missing after renaming.
    """
    if not isinstance(data, Mapping):
        raise MalformedSourceRecord(f"document body must be an object, got {type(data).__name__}")

    body = dict(data)
    dropped = set(drop_fields)

    out: dict[str, Any] = {}
    for key, value in body.items():
        key = str(key)
        if key in dropped:
            continue
        out[field_map.get(key, key)] = to_jsonable(value)

    missing = [f for f in required_fields if out.get(f) in (None, "")]
    if missing:
        raise MalformedSourceRecord(f"missing required fields: {', '.join(sorted(missing))}")

    return out
