"""Result and progress dataclasses returned by service operations."""

from dataclasses import dataclass, field

from chainsync.services._helpers import percent
from chainsync.services._types import TimingDict
from chainsync.services.errors import ConfigurationError
from db.enums import BatchStatus, CheckpointStatus


@dataclass(frozen=True)
class BlockRange:
    """Inclusive span of blocks owned by exactly one worker."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.start > self.end:
            raise ConfigurationError(f"Invalid block range [{self.start}, {self.end}]")

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def __contains__(self, block: object) -> bool:
        return isinstance(block, int) and self.start <= block <= self.end


@dataclass(frozen=True)
class WorkerAssignment:
    worker_id: int
    block_range: BlockRange
    resume_from: int

    @property
    def is_complete(self) -> bool:
        return self.resume_from > self.block_range.end


@dataclass
class WindowResult:
    events_found: int = 0
    events_inserted: int = 0
    decode_errors: int = 0

    def add(self, other: "WindowResult") -> None:
        self.events_found += other.events_found
        self.events_inserted += other.events_inserted
        self.decode_errors += other.decode_errors


@dataclass
class BatchResult:
    status: BatchStatus
    start_block: int | None
    end_block: int | None
    latest_block: int | None
    blocks_remaining: int
    events_found: int = 0
    events_inserted: int = 0
    decode_errors: int = 0
    runtime_ms: int = 0
    avg_runtime_ms: int = 0
    total_batch_count: int = 0
    error: str | None = None


@dataclass
class WorkerProgress:
    """Live snapshot of one index worker."""

    worker_id: int
    range_start: int
    range_end: int
    current_block: int
    last_indexed_block: int
    status: CheckpointStatus = CheckpointStatus.IDLE
    events_found: int = 0
    events_inserted: int = 0
    decode_errors: int = 0
    batches_completed: int = 0
    last_error: str | None = None

    @property
    def range_size(self) -> int:
        return self.range_end - self.range_start + 1

    @property
    def percent_complete(self) -> float:
        return percent(self.current_block - self.range_start, self.range_size)

    @property
    def is_complete(self) -> bool:
        return self.current_block > self.range_end


@dataclass
class EnrichmentProgress:
    """Live snapshot of one enrichment worker."""

    worker_id: int
    groups_total: int
    groups_processed: int = 0
    groups_failed: int = 0
    events_updated: int = 0
    status: CheckpointStatus = CheckpointStatus.IDLE
    last_error: str | None = None

    @property
    def percent_complete(self) -> float:
        return percent(self.groups_processed, self.groups_total)

    @property
    def is_complete(self) -> bool:
        return self.groups_processed >= self.groups_total


@dataclass
class StartResult:
    accepted: bool
    workers: int
    ranges: list[BlockRange] = field(default_factory=list)
    message: str = ""


@dataclass
class CoordinatorStatus:
    state: str
    running: bool
    workers_total: int
    combined_progress: float
    all_complete: bool
    started_at: str | None
    finished_at: str | None
    workers: list[WorkerProgress]
    errors: tuple[str, ...] = ()


@dataclass
class EnrichmentStatus:
    state: str
    running: bool
    workers_total: int
    groups_total: int
    groups_processed: int
    groups_failed: int
    events_updated: int
    combined_progress: float
    all_complete: bool
    started_at: str | None
    finished_at: str | None
    workers: list[EnrichmentProgress]
    errors: tuple[str, ...] = ()
    is_auto_running: bool = False
    timing: TimingDict | None = None


def weighted_progress(parts: list[tuple[float, int]]) -> float:
    """Mean of (percent, weight) pairs weighted by weight."""
    total_weight = sum(w for _, w in parts)
    if total_weight <= 0:
        return 0.0
    return sum(p * w for p, w in parts) / total_weight
