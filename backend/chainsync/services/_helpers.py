"""Shared utilities for the service layer."""

import json
import time
from collections.abc import Mapping
from datetime import UTC, datetime

# JSON column type — every JSON TEXT column in this DB stores a dict.
JsonDict = dict[str, object]
Serializable = Mapping[str, object] | list[Mapping[str, object]]


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def to_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat()


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def percent(done: int, total: int) -> float:
    """Percentage clamped to [0, 100]; an empty span counts as done."""
    if total <= 0:
        return 100.0
    return max(0.0, min(100.0, done / total * 100))


def ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def load_json(raw: str | None) -> JsonDict | None:
    """Deserialize a JSON TEXT column. Always a dict or None in this codebase."""
    if not raw:
        return None
    result: object = json.loads(raw)
    if isinstance(result, dict):
        return dict(result)
    return None


def dump_json(obj: Serializable) -> str:
    return json.dumps(obj, default=str)
