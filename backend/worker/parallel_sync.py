"""Worker: backfill one indexer with N parallel range workers and wait for them.

Usage:
    python -m worker.parallel_sync --owner bridge --workers 4 --batch-size 2000
    python -m worker.parallel_sync --owner bridge --workers 8 --max-batches 50 --poll 10
"""

import argparse
import sys

import structlog

from app.main import configure_logging, init_schema
from chainsync.services.errors import ChainSyncError
from chainsync.services.index_coordinator import IndexCoordinator
from chainsync.services.registry import EngineRegistry
from chainsync.services.schemas import CoordinatorStatus, StartResult
from config import Settings, get_settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def backfill(
    registry: EngineRegistry,
    owner: str,
    workers: int | None = None,
    batch_size: int | None = None,
    max_batches: int | None = None,
    poll: float = 5.0,
) -> CoordinatorStatus | None:
    """Start the owner's coordinator and block until its workers exit.

    Returns None when the run could not be started.
    """
    try:
        coordinator: IndexCoordinator = registry.coordinator(owner)
        result: StartResult = coordinator.start(
            workers=workers,
            batch_size=batch_size,
            max_batches_per_worker=max_batches,
        )
    except ChainSyncError as e:
        logger.error("Parallel sync not started", owner=owner, error=f"{type(e).__name__}: {e}")
        return None
    logger.info("Parallel sync", owner=owner, message=result.message, workers=result.workers)

    try:
        while not coordinator.wait(timeout=poll):
            status: CoordinatorStatus = coordinator.status()
            logger.info(
                "Progress",
                owner=owner,
                combined=f"{status.combined_progress:.2f}%",
                workers=[f"{w.worker_id}:{w.percent_complete:.1f}%" for w in status.workers],
            )
    except KeyboardInterrupt:
        logger.warning("Interrupted; stopping workers after their current batch")
        coordinator.stop()
        coordinator.wait()

    final: CoordinatorStatus = coordinator.status()
    logger.info("Parallel sync finished", owner=owner, state=final.state, combined=final.combined_progress)
    for error in final.errors:
        logger.error("Worker failed", owner=owner, error=error)
    return final


def main(argv: list[str] | None = None) -> None:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Parallel backfill over disjoint block ranges",
    )
    parser.add_argument("--owner", "-o", default=None, help="Indexer name (default: INDEXER_PARALLEL_OWNER)")
    parser.add_argument("--workers", "-w", type=int, default=None, help="Number of range workers")
    parser.add_argument("--batch-size", type=int, default=None, help="Blocks per worker batch")
    parser.add_argument("--max-batches", type=int, default=None, help="Batch limit per worker")
    parser.add_argument("--poll", type=float, default=5.0, help="Seconds between progress lines")
    args: argparse.Namespace = parser.parse_args(argv)

    settings: Settings = get_settings()
    configure_logging(settings.log_level)
    init_schema(settings)

    registry: EngineRegistry = EngineRegistry(settings=settings)
    final: CoordinatorStatus | None = backfill(
        registry,
        args.owner or settings.indexer.parallel_owner,
        workers=args.workers,
        batch_size=args.batch_size,
        max_batches=args.max_batches,
        poll=args.poll,
    )
    if final is None or final.state == "error":
        sys.exit(1)


if __name__ == "__main__":
    main()
