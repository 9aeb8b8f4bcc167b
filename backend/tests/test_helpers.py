"""Tests for chainsync.services._helpers."""

import json
from datetime import datetime, timedelta, timezone

from chainsync.services._helpers import ceil_div, dump_json, load_json, now_iso, percent, to_iso


def test_now_iso_format() -> None:
    ts: str = now_iso()
    assert "T" in ts
    assert ts.endswith("+00:00")


def test_to_iso_normalizes_to_utc() -> None:
    naive = datetime(2024, 3, 1, 12, 0)
    assert to_iso(naive) == "2024-03-01T12:00:00+00:00"
    plus_two = datetime(2024, 3, 1, 1, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_iso(plus_two) == "2024-02-29T23:00:00+00:00"


def test_percent_clamps_and_handles_empty_span() -> None:
    assert percent(500, 1000) == 50.0
    assert percent(2000, 1000) == 100.0
    assert percent(-5, 1000) == 0.0
    assert percent(0, 0) == 100.0


def test_ceil_div() -> None:
    assert ceil_div(100_000, 4) == 25_000
    assert ceil_div(10, 3) == 4
    assert ceil_div(0, 3) == 0


def test_dump_load_json_roundtrip() -> None:
    data: dict[str, object] = {"key": "value", "nested": [1, 2, 3]}
    raw: str = dump_json(data)
    assert isinstance(raw, str)
    assert load_json(raw) == data


def test_load_json_none() -> None:
    assert load_json(None) is None
    assert load_json("") is None


def test_dump_json_handles_non_serializable() -> None:
    from decimal import Decimal

    raw: str = dump_json({"d": Decimal("1.5")})
    parsed: dict[str, object] = json.loads(raw)
    assert parsed["d"] == "1.5"
