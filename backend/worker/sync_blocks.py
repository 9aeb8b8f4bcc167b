"""Worker: advance one indexer sequentially, batch after batch, until caught up.

Usage:
    python -m worker.sync_blocks --owner bridge
    python -m worker.sync_blocks --owner jeweler --batch 5000 --delay 2 --max-batches 10
"""

import argparse
import sys
import time

import structlog

from app.main import configure_logging, init_schema
from chainsync.services.errors import ChainSyncError
from chainsync.services.registry import EngineRegistry
from chainsync.services.schemas import BatchResult
from config import Settings, get_settings
from db.enums import BatchStatus

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def sync(
    registry: EngineRegistry,
    owner: str,
    batch_blocks: int | None = None,
    delay: float = 0.0,
    max_batches: int | None = None,
    sleep=time.sleep,
) -> BatchResult | None:
    """Run batches until the owner is caught up, a batch fails, or the limit is hit."""
    scheduler = registry.scheduler(owner)
    result: BatchResult | None = None
    batches = 0
    while max_batches is None or batches < max_batches:
        result = scheduler.run_once(batch_blocks)
        batches += 1
        logger.info(
            "Batch done",
            owner=owner,
            status=result.status.value,
            end=result.end_block,
            remaining=result.blocks_remaining,
            inserted=result.events_inserted,
        )
        if result.status is not BatchStatus.SUCCESS or result.blocks_remaining == 0:
            break
        if delay > 0:
            sleep(delay)
    return result


def main(argv: list[str] | None = None) -> None:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Sequentially index one owner until it reaches the chain head",
    )
    parser.add_argument("--owner", "-o", default="bridge", help="Indexer name (default: bridge)")
    parser.add_argument("--batch", "-b", type=int, default=None, help="Blocks per batch")
    parser.add_argument("--delay", type=float, default=0.0, help="Seconds to wait between batches")
    parser.add_argument("--max-batches", type=int, default=None, help="Stop after this many batches")
    args: argparse.Namespace = parser.parse_args(argv)

    settings: Settings = get_settings()
    configure_logging(settings.log_level)
    init_schema(settings)

    registry: EngineRegistry = EngineRegistry(settings=settings)
    try:
        result: BatchResult | None = sync(
            registry,
            args.owner,
            batch_blocks=args.batch,
            delay=args.delay,
            max_batches=args.max_batches,
        )
    except ChainSyncError as e:
        logger.error("Sync aborted", owner=args.owner, error=f"{type(e).__name__}: {e}")
        sys.exit(1)

    if result is not None and result.status is BatchStatus.ERROR:
        logger.error("Sync stopped on error", owner=args.owner, error=result.error)
        sys.exit(1)
    logger.info("Sync finished", owner=args.owner)


if __name__ == "__main__":
    main()
