"""Tests for BatchScheduler: sequential runs, conflicts and the auto-run timer."""

import time

import pytest
from sqlalchemy.orm import Session, sessionmaker

from chainsync.services.batch_scheduler import BatchScheduler
from chainsync.services.errors import ConfigurationError, ConflictError, RetriesExhaustedError
from config import IndexerSettings
from conftest import FakeChainReader, fake_definition, make_log
from db.enums import BatchStatus


def _scheduler(
    factory: sessionmaker[Session],
    reader: FakeChainReader,
    is_blocked=None,
) -> BatchScheduler:
    return BatchScheduler(
        fake_definition(),
        factory,
        reader,
        settings=IndexerSettings(batch_blocks=30, auto_interval_ms=60_000),
        blocks_per_query=10,
        is_blocked=is_blocked,
    )


def test_run_once_walks_sub_windows(session_factory: sessionmaker[Session]) -> None:
    reader = FakeChainReader([make_log(4), make_log(22), make_log(40)], head=100)
    result = _scheduler(session_factory, reader).run_once()

    assert result.status is BatchStatus.SUCCESS
    assert (result.start_block, result.end_block) == (0, 29)
    assert result.latest_block == 100
    assert result.blocks_remaining == 71
    assert result.events_inserted == 2
    assert result.total_batch_count == 3
    assert reader.windows == [(0, 9), (10, 19), (20, 29)]


def test_runs_until_caught_up(session_factory: sessionmaker[Session]) -> None:
    reader = FakeChainReader(head=45)
    scheduler = _scheduler(session_factory, reader)

    first = scheduler.run_once()
    second = scheduler.run_once()
    third = scheduler.run_once()

    assert first.end_block == 29
    assert (second.start_block, second.end_block) == (30, 45)
    assert second.blocks_remaining == 0
    assert scheduler.checkpoint()["status"] == "complete"
    assert third.status is BatchStatus.COMPLETE
    assert third.start_block is None


def test_error_keeps_progress_of_finished_windows(session_factory: sessionmaker[Session]) -> None:
    reader = FakeChainReader(head=100, fail_blocks=[15], failure=RetriesExhaustedError("down"))
    scheduler = _scheduler(session_factory, reader)

    failed = scheduler.run_once()
    assert failed.status is BatchStatus.ERROR
    assert failed.end_block == 9
    checkpoint = scheduler.checkpoint()
    assert checkpoint["status"] == "error"
    assert "down" in (checkpoint["last_error"] or "")

    reader.fail_blocks.clear()
    retried = scheduler.run_once()
    assert retried.start_block == 10
    assert scheduler.checkpoint()["last_error"] is None


def test_concurrent_run_is_rejected(session_factory: sessionmaker[Session]) -> None:
    scheduler = _scheduler(session_factory, FakeChainReader())
    with scheduler.exclusive():
        assert scheduler.busy
        with pytest.raises(ConflictError):
            scheduler.run_once()
    assert not scheduler.busy


def test_blocked_while_parallel_sync_runs(session_factory: sessionmaker[Session]) -> None:
    scheduler = _scheduler(session_factory, FakeChainReader(), is_blocked=lambda: True)
    with pytest.raises(ConflictError):
        scheduler.run_once()


def test_invalid_batch_size(session_factory: sessionmaker[Session]) -> None:
    with pytest.raises(ConfigurationError):
        _scheduler(session_factory, FakeChainReader()).run_once(batch_blocks=0)


def test_auto_run_ticks_and_stops(session_factory: sessionmaker[Session]) -> None:
    reader = FakeChainReader(head=1_000)
    scheduler = _scheduler(session_factory, reader)

    timing = scheduler.start_auto(interval_ms=20)
    assert timing["interval_ms"] == 20
    assert scheduler.is_auto_running
    with pytest.raises(ConflictError):
        scheduler.start_auto()

    deadline = time.monotonic() + 5
    while len(reader.windows) < 6 and time.monotonic() < deadline:
        time.sleep(0.01)

    assert scheduler.stop_auto()
    scheduler.wait_auto(timeout=5)
    assert not scheduler.is_auto_running
    assert not scheduler.stop_auto()

    timing = scheduler.timing()
    assert timing["last_run_at"] is not None
    assert timing["next_run_at"] is None
    assert scheduler.checkpoint()["last_indexed_block"] >= 59
