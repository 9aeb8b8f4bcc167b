"""Indexer control request/response schemas."""

from pydantic import Field

from app.schemas.common import CamelModel
from db.enums import BatchStatus, CheckpointStatus


class CheckpointResponse(CamelModel):
    owner_id: str
    indexer: str
    worker_id: int | None
    last_indexed_block: int
    genesis_block: int
    target_block: int | None
    status: CheckpointStatus
    total_events_indexed: int
    total_batch_count: int
    total_batch_runtime_ms: int
    last_batch_runtime_ms: int | None
    last_error: str | None
    updated_at: str


class TimingResponse(CamelModel):
    last_run_at: str | None
    next_run_at: str | None
    interval_ms: int | None


class WorkerProgressResponse(CamelModel):
    worker_id: int
    range_start: int
    range_end: int
    current_block: int
    last_indexed_block: int
    status: CheckpointStatus
    events_found: int
    events_inserted: int
    decode_errors: int
    batches_completed: int
    percent_complete: float
    is_complete: bool
    last_error: str | None


class IndexerStatusResponse(CamelModel):
    owner: str
    checkpoint: CheckpointResponse | None
    is_auto_running: bool
    timing: TimingResponse
    worker_count: int
    workers: list[WorkerProgressResponse]


class BatchRunResponse(CamelModel):
    owner: str
    status: BatchStatus
    start_block: int | None
    end_block: int | None
    latest_block: int | None
    blocks_remaining: int
    events_found: int
    events_inserted: int
    decode_errors: int
    runtime_ms: int
    avg_runtime_ms: int
    total_batch_count: int
    error: str | None


class AutoRunRequest(CamelModel):
    interval_ms: int | None = Field(None, ge=1)


class AutoRunResponse(CamelModel):
    owner: str
    is_auto_running: bool
    timing: TimingResponse


class BlockRangeResponse(CamelModel):
    start: int
    end: int


class StartResponse(CamelModel):
    accepted: bool
    workers: int
    ranges: list[BlockRangeResponse] = []
    message: str


class ParallelSyncRequest(CamelModel):
    workers: int | None = Field(None, ge=1)
    batch_size: int | None = Field(None, ge=1)
    max_batches: int | None = Field(None, ge=1)
    owner: str | None = None


class ParallelStopRequest(CamelModel):
    owner: str | None = None


class StopResponse(CamelModel):
    accepted: bool
    message: str


class CoordinatorStatusResponse(CamelModel):
    owner: str
    state: str
    running: bool
    workers_total: int
    combined_progress: float
    all_complete: bool
    started_at: str | None
    finished_at: str | None
    errors: list[str]
    workers: list[WorkerProgressResponse]


class EnrichmentRequest(CamelModel):
    workers: int | None = Field(None, ge=1)


class EnrichmentProgressResponse(CamelModel):
    worker_id: int
    groups_total: int
    groups_processed: int
    groups_failed: int
    events_updated: int
    status: CheckpointStatus
    percent_complete: float
    is_complete: bool
    last_error: str | None


class EnrichmentStatusResponse(CamelModel):
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
    errors: list[str]
    workers: list[EnrichmentProgressResponse]
    is_auto_running: bool = False
    timing: TimingResponse | None = None


class EnrichmentAutoRunRequest(CamelModel):
    interval_ms: int | None = Field(None, ge=1)
    workers: int | None = Field(None, ge=1)


class EnrichmentAutoRunResponse(CamelModel):
    is_auto_running: bool
    timing: TimingResponse


class ResetRequest(CamelModel):
    to_block: int | None = Field(None, ge=0)
    confirm: bool = False


class ResetResponse(CamelModel):
    owner: str
    checkpoint: CheckpointResponse
