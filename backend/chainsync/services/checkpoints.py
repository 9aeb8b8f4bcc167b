"""Checkpoint persistence: one row per main indexer, index worker or enrichment worker."""

import structlog
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from chainsync.services._helpers import now_iso
from chainsync.services._types import CheckpointDict
from chainsync.services.errors import ConfigurationError
from db.enums import CheckpointStatus
from db.models import Checkpoints, IndexedEvents

logger = structlog.get_logger(__name__)


def worker_owner_id(indexer: str, worker_id: int) -> str:
    return f"{indexer}:worker-{worker_id}"


def next_block(checkpoint: Checkpoints) -> int:
    """First block a checkpoint still has to process."""
    if not checkpoint.total_batch_count:
        return checkpoint.genesis_block
    return checkpoint.last_indexed_block + 1


def range_complete(checkpoint: Checkpoints) -> bool:
    """A worker checkpoint whose range has been fully processed."""
    return checkpoint.target_block is not None and next_block(checkpoint) > checkpoint.target_block


def checkpoint_to_dict(cp: Checkpoints) -> CheckpointDict:
    return CheckpointDict(
        owner_id=cp.owner_id,
        indexer=cp.indexer,
        worker_id=cp.worker_id,
        last_indexed_block=cp.last_indexed_block,
        genesis_block=cp.genesis_block,
        target_block=cp.target_block,
        status=cp.status,
        total_events_indexed=cp.total_events_indexed,
        total_batch_count=cp.total_batch_count,
        total_batch_runtime_ms=cp.total_batch_runtime_ms,
        last_batch_runtime_ms=cp.last_batch_runtime_ms,
        last_error=cp.last_error,
        updated_at=cp.updated_at,
    )


class CheckpointStore:
    """Reads and advances checkpoints inside the caller's transaction.

    Each row has a single writer (its worker). ``advance`` never moves
    ``last_indexed_block`` backwards, so a replayed batch leaves it unchanged.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, owner_id: str) -> Checkpoints | None:
        return self.session.get(Checkpoints, owner_id)

    def require(self, owner_id: str) -> Checkpoints:
        cp = self.get(owner_id)
        if cp is None:
            raise ConfigurationError(f"No checkpoint for {owner_id}")
        return cp

    def get_or_create(
        self,
        owner_id: str,
        indexer: str,
        genesis_block: int,
        target_block: int | None = None,
        worker_id: int | None = None,
    ) -> Checkpoints:
        cp = self.get(owner_id)
        if cp is not None:
            return cp
        ts = now_iso()
        cp = Checkpoints(
            owner_id=owner_id,
            indexer=indexer,
            worker_id=worker_id,
            last_indexed_block=genesis_block,
            genesis_block=genesis_block,
            target_block=target_block,
            status=CheckpointStatus.IDLE.value,
            total_events_indexed=0,
            total_batch_count=0,
            total_batch_runtime_ms=0,
            created_at=ts,
            updated_at=ts,
        )
        self.session.add(cp)
        self.session.flush()
        logger.info("Created checkpoint", owner_id=owner_id, genesis=genesis_block, target=target_block)
        return cp

    def list_workers(self, indexer: str) -> list[Checkpoints]:
        stmt = (
            select(Checkpoints)
            .where(Checkpoints.indexer == indexer, Checkpoints.worker_id.isnot(None))
            .order_by(Checkpoints.worker_id)
        )
        return list(self.session.scalars(stmt).all())

    def clear_workers(self, indexer: str) -> int:
        return self.session.execute(
            delete(Checkpoints).where(
                Checkpoints.indexer == indexer,
                Checkpoints.worker_id.isnot(None),
            )
        ).rowcount or 0

    def fold_workers(self, indexer: str) -> Checkpoints:
        """Carry a finished parallel run into the main checkpoint.

        Only valid once every worker covered its range; the main indexer then
        continues from the highest worker range end.
        """
        main = self.require(indexer)
        workers = self.list_workers(indexer)
        if not workers:
            return main
        incomplete = [cp.owner_id for cp in workers if not range_complete(cp)]
        if incomplete:
            raise ConfigurationError(f"Workers still incomplete: {', '.join(incomplete)}")
        high = max(cp.target_block or 0 for cp in workers)
        if high > main.last_indexed_block or not main.total_batch_count:
            main.last_indexed_block = max(main.last_indexed_block, high)
            main.total_events_indexed += sum(cp.total_events_indexed for cp in workers)
            main.total_batch_count += sum(cp.total_batch_count for cp in workers)
            main.total_batch_runtime_ms += sum(cp.total_batch_runtime_ms for cp in workers)
            main.status = CheckpointStatus.COMPLETE.value
            main.updated_at = now_iso()
            self.session.flush()
            logger.info("Folded worker checkpoints", indexer=indexer, last_indexed_block=main.last_indexed_block)
        return main

    def advance(
        self,
        owner_id: str,
        last_block: int,
        events_inserted: int = 0,
        runtime_ms: int = 0,
    ) -> Checkpoints:
        cp = self.require(owner_id)
        cp.last_indexed_block = max(cp.last_indexed_block, last_block)
        cp.total_events_indexed += events_inserted
        cp.total_batch_count += 1
        cp.total_batch_runtime_ms += runtime_ms
        cp.last_batch_runtime_ms = runtime_ms
        cp.last_error = None
        cp.updated_at = now_iso()
        self.session.flush()
        return cp

    def mark(self, owner_id: str, status: CheckpointStatus, error: str | None = None) -> Checkpoints:
        cp = self.require(owner_id)
        cp.status = status.value
        if error is not None:
            cp.last_error = error[:1000]
        cp.updated_at = now_iso()
        self.session.flush()
        return cp

    def reset(self, indexer: str, to_block: int | None = None) -> Checkpoints:
        """Rewind an indexer and delete the rows it produced from the new genesis on.

        Destructive and irreversible. Runs in the caller's transaction, so the
        checkpoint rewind and the data delete commit or roll back together.
        """
        main = self.require(indexer)
        genesis = to_block if to_block is not None else main.genesis_block
        if genesis < 0:
            raise ConfigurationError(f"Reset block must be >= 0, got {genesis}")

        self.clear_workers(indexer)
        deleted = self.session.execute(
            delete(IndexedEvents).where(
                IndexedEvents.indexer == indexer,
                IndexedEvents.block_number >= genesis,
            )
        ).rowcount

        main.genesis_block = genesis
        main.last_indexed_block = genesis
        main.status = CheckpointStatus.IDLE.value
        main.total_events_indexed = 0
        main.total_batch_count = 0
        main.total_batch_runtime_ms = 0
        main.last_batch_runtime_ms = None
        main.last_error = None
        main.updated_at = now_iso()
        self.session.flush()

        logger.warning("Reset indexer", indexer=indexer, genesis=genesis, events_deleted=deleted)
        return main
