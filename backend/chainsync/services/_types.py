"""Typed dicts for service-layer return values.

Keeps route-facing methods explicit about their shape instead of returning bare dicts.
"""

import sys

if sys.version_info >= (3, 12):
    from typing import TypedDict
else:
    from typing_extensions import TypedDict

# -- Batch Scheduler -------------------------------------------------------


class TimingDict(TypedDict):
    last_run_at: str | None
    next_run_at: str | None
    interval_ms: int | None


class CheckpointDict(TypedDict):
    owner_id: str
    indexer: str
    worker_id: int | None
    last_indexed_block: int
    genesis_block: int
    target_block: int | None
    status: str
    total_events_indexed: int
    total_batch_count: int
    total_batch_runtime_ms: int
    last_batch_runtime_ms: int | None
    last_error: str | None
    updated_at: str


# -- Event Store -----------------------------------------------------------


class EventStatsDict(TypedDict):
    total_events: int
    unpriced_events: int
    priced_events: int


# -- Health ----------------------------------------------------------------


class DbInfoDict(TypedDict, total=False):
    backend_type: str
    database_url_or_path: str | None
    tables_present: list[str]
    tables_missing: list[str]
    schema_initialized: bool
    pid: int
    error: str
