"""Split a block span into contiguous per-worker ranges, or recover prior ones."""

from collections.abc import Sequence

import structlog

from chainsync.services._helpers import ceil_div
from chainsync.services.checkpoints import next_block
from chainsync.services.errors import ConfigurationError
from chainsync.services.schemas import BlockRange, WorkerAssignment
from db.models import Checkpoints

logger = structlog.get_logger(__name__)


def split_range(genesis: int, target: int, n: int) -> list[BlockRange]:
    """Cut [genesis, target] at genesis + k*size, size = ceil((target - genesis) / n).

    The first range keeps the genesis block, so 0..100000 over 4 workers gives
    [0,25000] [25001,50000] [50001,75000] [75001,100000]. Short spans yield fewer
    than n ranges rather than empty ones.
    """
    size = max(1, ceil_div(target - genesis, n))
    ranges: list[BlockRange] = []
    start = genesis
    for i in range(1, n + 1):
        if start > target:
            break
        end = target if i == n else min(genesis + i * size, target)
        ranges.append(BlockRange(start, end))
        start = end + 1
    return ranges


def partition(
    genesis: int,
    target: int,
    n: int,
    prior_checkpoints: Sequence[Checkpoints] = (),
) -> list[WorkerAssignment]:
    """Assign each worker a range and the block it should resume from.

    Prior worker checkpoints win over a fresh split: their recorded
    [genesis_block, target_block] boundaries are reused so every block keeps the
    owner it had before the restart.
    """
    if n < 1:
        raise ConfigurationError(f"Worker count must be >= 1, got {n}")
    if genesis < 0 or genesis > target:
        raise ConfigurationError(f"Invalid span: genesis {genesis} > target {target}")

    workers = sorted(
        (cp for cp in prior_checkpoints if cp.worker_id is not None),
        key=lambda cp: cp.worker_id,
    )
    if workers:
        if len(workers) != n:
            logger.warning(
                "Resuming with prior worker layout",
                requested=n,
                prior=len(workers),
            )
        assignments: list[WorkerAssignment] = []
        for cp in workers:
            end = cp.target_block if cp.target_block is not None else target
            block_range = BlockRange(cp.genesis_block, end)
            resume_from = max(block_range.start, next_block(cp))
            assignments.append(WorkerAssignment(cp.worker_id, block_range, resume_from))
        return assignments

    return [
        WorkerAssignment(worker_id=i, block_range=r, resume_from=r.start)
        for i, r in enumerate(split_range(genesis, target, n), start=1)
    ]
