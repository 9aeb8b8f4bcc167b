"""Indexer control endpoints: sequential batches, auto-run, parallel sync, enrichment, reset."""

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_api_key, get_registry
from app.schemas.indexers import (
    AutoRunRequest,
    AutoRunResponse,
    BatchRunResponse,
    CheckpointResponse,
    CoordinatorStatusResponse,
    EnrichmentAutoRunRequest,
    EnrichmentAutoRunResponse,
    EnrichmentRequest,
    EnrichmentStatusResponse,
    IndexerStatusResponse,
    ParallelStopRequest,
    ParallelSyncRequest,
    ResetRequest,
    ResetResponse,
    StartResponse,
    StopResponse,
    TimingResponse,
    WorkerProgressResponse,
)
from chainsync.services.registry import EngineRegistry

router = APIRouter(prefix="/api/indexers", tags=["indexers"])


def _parallel_owner(registry: EngineRegistry, owner: str | None) -> str:
    return owner or registry.settings.indexer.parallel_owner


# ── Sequential mode ──────────────────────────────────────────────────────────


@router.get("/status/{owner}", response_model=IndexerStatusResponse)
def indexer_status(owner: str, registry: EngineRegistry = Depends(get_registry)):
    checkpoint, auto, timing, workers = registry.status(owner)
    return IndexerStatusResponse(
        owner=owner,
        checkpoint=CheckpointResponse.model_validate(checkpoint) if checkpoint else None,
        is_auto_running=auto,
        timing=TimingResponse.model_validate(timing),
        worker_count=len(workers),
        workers=[WorkerProgressResponse.model_validate(w) for w in workers],
    )


@router.post("/run/{owner}", response_model=BatchRunResponse)
def run_batch(
    owner: str,
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    result = registry.scheduler(owner).run_once()
    return BatchRunResponse(owner=owner, **vars(result))


@router.post("/start/{owner}", response_model=AutoRunResponse)
def start_auto_run(
    owner: str,
    body: AutoRunRequest | None = None,
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    scheduler = registry.scheduler(owner)
    timing = scheduler.start_auto(body.interval_ms if body else None)
    return AutoRunResponse(
        owner=owner,
        is_auto_running=scheduler.is_auto_running,
        timing=TimingResponse.model_validate(timing),
    )


@router.post("/stop/{owner}", response_model=AutoRunResponse)
def stop_auto_run(
    owner: str,
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    scheduler = registry.scheduler(owner)
    scheduler.stop_auto()
    return AutoRunResponse(
        owner=owner,
        is_auto_running=False,
        timing=TimingResponse.model_validate(scheduler.timing()),
    )


# ── Parallel sync ────────────────────────────────────────────────────────────


@router.post("/parallel-sync/start", status_code=202, response_model=StartResponse)
def start_parallel_sync(
    body: ParallelSyncRequest | None = None,
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    body = body or ParallelSyncRequest()
    coordinator = registry.coordinator(_parallel_owner(registry, body.owner))
    result = coordinator.start(
        workers=body.workers,
        batch_size=body.batch_size,
        max_batches_per_worker=body.max_batches,
    )
    return StartResponse.model_validate(result)


@router.post("/parallel-sync/stop", status_code=202, response_model=StopResponse)
def stop_parallel_sync(
    body: ParallelStopRequest | None = None,
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    owner = _parallel_owner(registry, body.owner if body else None)
    registry.coordinator(owner).stop()
    return StopResponse(accepted=True, message="Workers stop after their current batch")


@router.get("/parallel-sync/status", response_model=CoordinatorStatusResponse)
def parallel_sync_status(owner: str | None = None, registry: EngineRegistry = Depends(get_registry)):
    name = _parallel_owner(registry, owner)
    status = registry.coordinator(name).status()
    return CoordinatorStatusResponse(
        owner=name,
        state=status.state,
        running=status.running,
        workers_total=status.workers_total,
        combined_progress=status.combined_progress,
        all_complete=status.all_complete,
        started_at=status.started_at,
        finished_at=status.finished_at,
        errors=list(status.errors),
        workers=[WorkerProgressResponse.model_validate(w) for w in status.workers],
    )


# ── Price enrichment ─────────────────────────────────────────────────────────


@router.post("/price-enrichment/start", status_code=202, response_model=StartResponse)
def start_price_enrichment(
    body: EnrichmentRequest | None = None,
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    result = registry.enrichment.start(workers=body.workers if body else None)
    return StartResponse.model_validate(result)


@router.post("/price-enrichment/stop", status_code=202, response_model=StopResponse)
def stop_price_enrichment(
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    registry.enrichment.stop()
    return StopResponse(accepted=True, message="Workers stop after their current group")


@router.get("/price-enrichment/status", response_model=EnrichmentStatusResponse)
def price_enrichment_status(registry: EngineRegistry = Depends(get_registry)):
    return EnrichmentStatusResponse.model_validate(registry.enrichment.status())


@router.post("/price-enrichment/auto/start", response_model=EnrichmentAutoRunResponse)
def start_timed_enrichment(
    body: EnrichmentAutoRunRequest | None = None,
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    body = body or EnrichmentAutoRunRequest()
    timing = registry.enrichment.start_auto(body.interval_ms, workers=body.workers)
    return EnrichmentAutoRunResponse(
        is_auto_running=registry.enrichment.is_auto_running,
        timing=TimingResponse.model_validate(timing),
    )


@router.post("/price-enrichment/auto/stop", response_model=EnrichmentAutoRunResponse)
def stop_timed_enrichment(
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    registry.enrichment.stop_auto()
    return EnrichmentAutoRunResponse(
        is_auto_running=False,
        timing=TimingResponse.model_validate(registry.enrichment.timing()),
    )


# ── Maintenance ──────────────────────────────────────────────────────────────


@router.post("/reset/{owner}", response_model=ResetResponse)
def reset_indexer(
    owner: str,
    body: ResetRequest,
    registry: EngineRegistry = Depends(get_registry),
    _key: str = Depends(get_api_key),
):
    if not body.confirm:
        raise HTTPException(status_code=400, detail="Reset deletes indexed events; send confirm=true")
    checkpoint = registry.reset(owner, body.to_block)
    return ResetResponse(owner=owner, checkpoint=CheckpointResponse.model_validate(checkpoint))
