"""Worker: price every unpriced indexed event using daily historical prices.

Usage:
    python -m worker.enrich_prices
    python -m worker.enrich_prices --workers 4
"""

import argparse
import sys

import structlog

from app.main import configure_logging, init_schema
from chainsync.services.enrichment import EnrichmentCoordinator
from chainsync.services.errors import ChainSyncError
from chainsync.services.registry import EngineRegistry
from chainsync.services.schemas import EnrichmentStatus
from config import Settings, get_settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def enrich(
    coordinator: EnrichmentCoordinator,
    workers: int | None = None,
    poll: float = 10.0,
) -> EnrichmentStatus | None:
    """Run one enrichment pass to the end. Returns None when it could not start."""
    try:
        coordinator.start(workers=workers)
    except ChainSyncError as e:
        logger.error("Price enrichment not started", error=f"{type(e).__name__}: {e}")
        return None

    try:
        while not coordinator.wait(timeout=poll):
            status: EnrichmentStatus = coordinator.status()
            logger.info(
                "Progress",
                combined=f"{status.combined_progress:.2f}%",
                groups=f"{status.groups_processed}/{status.groups_total}",
                events_updated=status.events_updated,
            )
    except KeyboardInterrupt:
        logger.warning("Interrupted; stopping workers after their current group")
        coordinator.stop()
        coordinator.wait()

    final: EnrichmentStatus = coordinator.status()
    logger.info(
        "Price enrichment finished",
        state=final.state,
        groups_failed=final.groups_failed,
        events_updated=final.events_updated,
    )
    return final


def main(argv: list[str] | None = None) -> None:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Attach USD values to unpriced indexed events",
    )
    parser.add_argument("--workers", "-w", type=int, default=None, help="Number of enrichment workers")
    parser.add_argument("--poll", type=float, default=10.0, help="Seconds between progress lines")
    args: argparse.Namespace = parser.parse_args(argv)

    settings: Settings = get_settings()
    configure_logging(settings.log_level)
    init_schema(settings)

    registry: EngineRegistry = EngineRegistry(settings=settings)
    final: EnrichmentStatus | None = enrich(registry.enrichment, workers=args.workers, poll=args.poll)
    if final is None or final.state == "error":
        sys.exit(1)


if __name__ == "__main__":
    main()
