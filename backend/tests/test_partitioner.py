"""Tests for range partitioning and resume planning."""

import pytest
from sqlalchemy.orm import Session

from chainsync.services.checkpoints import CheckpointStore, worker_owner_id
from chainsync.services.errors import ConfigurationError
from chainsync.services.partitioner import partition, split_range
from chainsync.services.schemas import BlockRange


def _assert_covers(ranges: list[BlockRange], genesis: int, target: int) -> None:
    assert ranges[0].start == genesis
    assert ranges[-1].end == target
    for prev, nxt in zip(ranges, ranges[1:]):
        assert nxt.start == prev.end + 1


def test_four_workers_over_hundred_thousand_blocks() -> None:
    ranges = split_range(0, 100_000, 4)
    assert [(r.start, r.end) for r in ranges] == [
        (0, 25_000),
        (25_001, 50_000),
        (50_001, 75_000),
        (75_001, 100_000),
    ]
    assert 25_000 in ranges[0]
    assert 25_001 not in ranges[0]


@pytest.mark.parametrize(
    ("genesis", "target", "n"),
    [(0, 100_000, 4), (7, 7, 3), (10, 12, 5), (1_000, 1_999, 1), (0, 99, 7)],
)
def test_ranges_cover_span_without_gaps_or_overlap(genesis: int, target: int, n: int) -> None:
    ranges = split_range(genesis, target, n)
    assert 1 <= len(ranges) <= n
    _assert_covers(ranges, genesis, target)
    assert sum(r.size for r in ranges) == target - genesis + 1


def test_short_span_yields_fewer_ranges() -> None:
    assert split_range(10, 12, 5) == [BlockRange(10, 11), BlockRange(12, 12)]


def test_fresh_partition_resumes_from_range_start() -> None:
    assignments = partition(0, 100_000, 4)
    assert [a.worker_id for a in assignments] == [1, 2, 3, 4]
    assert all(a.resume_from == a.block_range.start for a in assignments)


def test_restarted_worker_resumes_after_its_checkpoint(session: Session) -> None:
    store = CheckpointStore(session)
    for a in partition(0, 100_000, 4):
        store.get_or_create(
            worker_owner_id("bridge", a.worker_id),
            "bridge",
            a.block_range.start,
            a.block_range.end,
            worker_id=a.worker_id,
        )
    store.advance(worker_owner_id("bridge", 2), 40_000, events_inserted=3)

    resumed = partition(0, 100_000, 4, store.list_workers("bridge"))

    by_id = {a.worker_id: a for a in resumed}
    assert by_id[2].block_range == BlockRange(25_001, 50_000)
    assert by_id[2].resume_from == 40_001
    assert by_id[1].resume_from == 0
    assert by_id[3].resume_from == 50_001


def test_prior_layout_wins_over_new_worker_count(session: Session) -> None:
    store = CheckpointStore(session)
    for a in partition(0, 99, 2):
        store.get_or_create(
            worker_owner_id("bridge", a.worker_id),
            "bridge",
            a.block_range.start,
            a.block_range.end,
            worker_id=a.worker_id,
        )

    resumed = partition(0, 99, 5, store.list_workers("bridge"))
    assert len(resumed) == 2


def test_rejects_invalid_arguments() -> None:
    with pytest.raises(ConfigurationError):
        partition(0, 100, 0)
    with pytest.raises(ConfigurationError):
        partition(200, 100, 2)
    with pytest.raises(ConfigurationError):
        BlockRange(5, 4)
