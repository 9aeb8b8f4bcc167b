"""Coordinator run state as a closed set of variants.

A coordinator is in exactly one of these; fields that only make sense for one
phase live on that variant instead of being optional everywhere.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Idle:
    name = "idle"


@dataclass(frozen=True)
class Running:
    started_at: str
    workers_total: int
    name = "running"


@dataclass(frozen=True)
class Complete:
    started_at: str
    finished_at: str
    name = "complete"


@dataclass(frozen=True)
class Error:
    started_at: str
    finished_at: str
    errors: tuple[str, ...]
    name = "error"


RunState = Idle | Running | Complete | Error
