"""JSON encoding for record documents and queue payloads."""
from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from datetime_utils import to_iso_utc


def _default(value: Any):
    if isinstance(value, datetime):
        return to_iso_utc(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_json(data: Optional[Dict[str, Any]]) -> str:
    return json.dumps(data or {}, ensure_ascii=False, sort_keys=True, default=_default)


def load_json(payload: Optional[str]) -> Dict[str, Any]:
    if not payload:
        return {}
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def to_plain(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Round-trip ``data`` through JSON so it only holds JSON-native values."""

    return load_json(dump_json(data))


__all__ = ["dump_json", "load_json", "to_plain"]
