"""Tests for IndexWorker."""

import threading

from sqlalchemy.orm import Session, sessionmaker

from chainsync.services.checkpoints import CheckpointStore, worker_owner_id
from chainsync.services.errors import RetriesExhaustedError
from chainsync.services.event_store import EventRepository
from chainsync.services.index_worker import IndexWorker
from chainsync.services.schemas import BlockRange, WorkerAssignment
from conftest import FakeChainReader, FakeDecoder, make_log
from db.connection import session_scope
from db.enums import CheckpointStatus


def _worker(
    factory: sessionmaker[Session],
    reader: FakeChainReader,
    start: int = 0,
    end: int = 49,
    resume_from: int | None = None,
    stop: threading.Event | None = None,
    max_batches: int | None = None,
) -> IndexWorker:
    with session_scope(factory) as session:
        CheckpointStore(session).get_or_create(
            worker_owner_id("bridge", 1), "bridge", start, end, worker_id=1
        )
    return IndexWorker(
        indexer="bridge",
        assignment=WorkerAssignment(1, BlockRange(start, end), start if resume_from is None else resume_from),
        session_factory=factory,
        reader=reader,
        decoder=FakeDecoder(),
        batch_size=10,
        stop_event=stop or threading.Event(),
        max_batches=max_batches,
    )


def _checkpoint(factory: sessionmaker[Session]):
    with session_scope(factory) as session:
        return CheckpointStore(session).require(worker_owner_id("bridge", 1))


def test_worker_walks_its_range_in_batches(session_factory: sessionmaker[Session]) -> None:
    reader = FakeChainReader([make_log(3), make_log(3, 1), make_log(27), make_log(60)])
    progress = _worker(session_factory, reader).run()

    assert progress.status is CheckpointStatus.COMPLETE
    assert progress.is_complete
    assert progress.percent_complete == 100.0
    assert progress.events_inserted == 3
    assert progress.batches_completed == 5
    assert reader.windows == [(0, 9), (10, 19), (20, 29), (30, 39), (40, 49)]

    cp = _checkpoint(session_factory)
    assert cp.last_indexed_block == 49
    assert cp.status == "complete"
    assert cp.total_events_indexed == 3


def test_worker_resumes_from_assignment(session_factory: sessionmaker[Session]) -> None:
    reader = FakeChainReader()
    _worker(session_factory, reader, resume_from=40).run()
    assert reader.windows == [(40, 49)]


def test_stop_flag_is_checked_between_batches(session_factory: sessionmaker[Session]) -> None:
    stop = threading.Event()
    stop.set()
    reader = FakeChainReader()
    progress = _worker(session_factory, reader, stop=stop).run()

    assert reader.windows == []
    assert progress.status is CheckpointStatus.IDLE
    assert _checkpoint(session_factory).status == "idle"


def test_batch_limit_leaves_worker_idle(session_factory: sessionmaker[Session]) -> None:
    progress = _worker(session_factory, FakeChainReader(), max_batches=2).run()

    assert progress.status is CheckpointStatus.IDLE
    assert progress.current_block == 20
    assert progress.percent_complete == 40.0


def test_fatal_error_stops_only_after_last_good_batch(session_factory: sessionmaker[Session]) -> None:
    reader = FakeChainReader(
        [make_log(5)],
        fail_blocks=[25],
        failure=RetriesExhaustedError("node unreachable"),
    )
    progress = _worker(session_factory, reader).run()

    assert progress.status is CheckpointStatus.ERROR
    assert "node unreachable" in (progress.last_error or "")
    cp = _checkpoint(session_factory)
    assert cp.last_indexed_block == 19
    assert cp.status == "error"
    assert "RetriesExhaustedError" in (cp.last_error or "")
    with session_scope(session_factory) as session:
        assert EventRepository(session).count("bridge") == 1


def test_replayed_batch_does_not_duplicate(session_factory: sessionmaker[Session]) -> None:
    reader = FakeChainReader([make_log(5), make_log(15)])
    _worker(session_factory, reader, max_batches=2).run()
    again = _worker(session_factory, reader, resume_from=0).run()

    assert again.events_inserted == 0
    with session_scope(session_factory) as session:
        assert EventRepository(session).count("bridge") == 2
