"""Shared dataclasses for chainsync services."""

from chainsync.services.schemas.chain import DecodedEvent, DecodeOutcome, RawLog
from chainsync.services.schemas.results import (
    BatchResult,
    BlockRange,
    CoordinatorStatus,
    EnrichmentProgress,
    EnrichmentStatus,
    StartResult,
    WindowResult,
    WorkerAssignment,
    WorkerProgress,
    weighted_progress,
)
from chainsync.services.schemas.state import Complete, Error, Idle, Running, RunState

__all__ = [
    # Chain schemas
    "DecodedEvent",
    "DecodeOutcome",
    "RawLog",
    # Result schemas
    "BatchResult",
    "BlockRange",
    "CoordinatorStatus",
    "EnrichmentProgress",
    "EnrichmentStatus",
    "StartResult",
    "WindowResult",
    "WorkerAssignment",
    "WorkerProgress",
    "weighted_progress",
    # Run state
    "Complete",
    "Error",
    "Idle",
    "Running",
    "RunState",
]
