"""JSON encoding helpers for realtime messages."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any


def _default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_message(payload: dict[str, Any]) -> str:
    return json.dumps(payload, default=_default, ensure_ascii=False)


def decode_message(raw: str | bytes) -> dict[str, Any] | None:
    """Parse one inbound frame; return ``None`` for anything that is not a JSON object."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return data


def answer_key(answer: Any) -> str:
    """Return the string form used to bucket and compare answer values."""
    if answer is None:
        return ""
    if isinstance(answer, bool):
        return "true" if answer else "false"
    if isinstance(answer, (list, tuple)):
        return ",".join(answer_key(item) for item in answer)
    if isinstance(answer, float) and answer.is_integer():
        return str(int(answer))
    return str(answer)
