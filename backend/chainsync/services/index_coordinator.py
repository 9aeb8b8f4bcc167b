"""Parallel backfill: one thread per worker over disjoint block ranges."""

import threading
from collections.abc import Callable

import structlog
from sqlalchemy.orm import Session, sessionmaker

from chainsync.services._helpers import now_iso
from chainsync.services.chain_reader import ChainReader
from chainsync.services.checkpoints import CheckpointStore, next_block, range_complete, worker_owner_id
from chainsync.services.definitions import IndexerDefinition
from chainsync.services.errors import ConfigurationError, ConflictError
from chainsync.services.index_worker import IndexWorker
from chainsync.services.partitioner import partition
from chainsync.services.schemas import (
    Complete,
    CoordinatorStatus,
    Error,
    Idle,
    Running,
    RunState,
    StartResult,
    WorkerAssignment,
    WorkerProgress,
    weighted_progress,
)
from config import IndexerSettings, get_settings
from db.connection import session_scope
from db.enums import CheckpointStatus
from db.models import Checkpoints

logger = structlog.get_logger(__name__)


def progress_from_checkpoint(cp: Checkpoints) -> WorkerProgress:
    """Rebuild a worker snapshot from its persisted checkpoint."""
    return WorkerProgress(
        worker_id=cp.worker_id or 0,
        range_start=cp.genesis_block,
        range_end=cp.target_block if cp.target_block is not None else cp.genesis_block,
        current_block=next_block(cp),
        last_indexed_block=cp.last_indexed_block,
        status=CheckpointStatus(cp.status),
        events_inserted=cp.total_events_indexed,
        batches_completed=cp.total_batch_count,
        last_error=cp.last_error,
    )


class IndexCoordinator:
    """Owns the worker pool of one indexer.

    ``start`` is single-flight: while a run is active a second call raises
    ``ConflictError`` and the existing pool is left alone. A failed worker
    only stops itself; the run ends once every thread has exited.
    """

    def __init__(
        self,
        definition: IndexerDefinition,
        session_factory: sessionmaker[Session],
        reader: ChainReader,
        settings: IndexerSettings | None = None,
        is_blocked: Callable[[], bool] | None = None,
    ) -> None:
        self.definition = definition
        self.indexer = definition.name
        self.session_factory = session_factory
        self.reader = reader
        self.settings = settings or get_settings().indexer
        self._is_blocked = is_blocked or (lambda: False)

        self._lock = threading.Lock()
        self._state: RunState = Idle()
        self._stop_event = threading.Event()
        self._workers: list[IndexWorker] = []
        self._threads: list[threading.Thread] = []
        self._remaining = 0

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        return isinstance(self.state, Running)

    def start(
        self,
        workers: int | None = None,
        batch_size: int | None = None,
        max_batches_per_worker: int | None = None,
    ) -> StartResult:
        n = workers if workers is not None else self.settings.default_workers
        size = batch_size if batch_size is not None else self.settings.default_batch_size
        if n < 1:
            raise ConfigurationError(f"Worker count must be >= 1, got {n}")
        if size < 1:
            raise ConfigurationError(f"Batch size must be >= 1, got {size}")
        if max_batches_per_worker is not None and max_batches_per_worker < 1:
            raise ConfigurationError("maxBatches must be >= 1 when given")

        with self._lock:
            self._check_idle()
        # resolved outside the lock; the RPC may retry with backoff
        head = self.reader.latest_block() if self.definition.target_block is None else None

        with self._lock:
            self._check_idle()
            assignments = self._plan(n, head)
            pending = [a for a in assignments if not a.is_complete]
            ranges = [a.block_range for a in assignments]
            started_at = now_iso()

            self._stop_event = threading.Event()
            self._workers = [
                IndexWorker(
                    indexer=self.indexer,
                    assignment=a,
                    session_factory=self.session_factory,
                    reader=self.reader,
                    decoder=self.definition.build_decoder(),
                    batch_size=size,
                    stop_event=self._stop_event,
                    max_batches=max_batches_per_worker,
                    batch_delay=self.settings.worker_delay,
                )
                for a in assignments
            ]

            if not pending:
                self._fold()
                self._state = Complete(started_at=started_at, finished_at=now_iso())
                logger.info("Parallel sync has nothing to do", indexer=self.indexer)
                return StartResult(accepted=True, workers=0, ranges=ranges, message="already complete")

            self._state = Running(started_at=started_at, workers_total=len(self._workers))
            self._remaining = len(pending)
            self._threads = []
            for worker in self._workers:
                if worker.assignment.is_complete:
                    continue
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(worker,),
                    name=f"{worker.owner_id}",
                    daemon=True,
                )
                self._threads.append(thread)
                thread.start()

        logger.info(
            "Parallel sync started",
            indexer=self.indexer,
            workers=len(pending),
            ranges=[(r.start, r.end) for r in ranges],
        )
        return StartResult(accepted=True, workers=len(pending), ranges=ranges, message="started")

    def stop(self) -> bool:
        """Ask workers to exit at their next batch boundary. Never waits."""
        self._stop_event.set()
        logger.info("Parallel sync stop requested", indexer=self.indexer)
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Join worker threads. Returns True when none is left alive."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
        return not any(t.is_alive() for t in threads)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _plan(self, n: int, head: int | None = None) -> list[WorkerAssignment]:
        with session_scope(self.session_factory) as session:
            store = CheckpointStore(session)
            main = store.get_or_create(
                self.indexer,
                self.indexer,
                self.definition.genesis_block,
                self.definition.target_block,
            )
            priors = store.list_workers(self.indexer)
            done = all(range_complete(cp) for cp in priors)
            if priors and done and main.last_indexed_block >= max(cp.target_block or 0 for cp in priors):
                # previous run finished and was folded into the main checkpoint
                store.clear_workers(self.indexer)
                priors = []
            start_block = next_block(main)
            target_block = main.target_block
            prior_end = max((cp.target_block or 0 for cp in priors), default=None)

        if priors:
            target = prior_end
        elif target_block is not None:
            target = target_block
        elif head is not None:
            target = head
        else:
            target = self.reader.latest_block()

        if not priors and start_block > target:
            return []

        genesis = min(cp.genesis_block for cp in priors) if priors else start_block
        assignments = partition(genesis, target, n, priors)

        with session_scope(self.session_factory) as session:
            store = CheckpointStore(session)
            for a in assignments:
                store.get_or_create(
                    worker_owner_id(self.indexer, a.worker_id),
                    self.indexer,
                    a.block_range.start,
                    a.block_range.end,
                    worker_id=a.worker_id,
                )
        return assignments

    def _check_idle(self) -> None:
        if isinstance(self._state, Running):
            raise ConflictError(f"Parallel sync for '{self.indexer}' is already running")
        if self._is_blocked():
            raise ConflictError(f"A sequential batch for '{self.indexer}' is in flight")

    def _run_worker(self, worker: IndexWorker) -> None:
        try:
            worker.run()
        except Exception:
            logger.exception("Worker thread died", owner_id=worker.owner_id)
        finally:
            with self._lock:
                self._remaining -= 1
                if self._remaining == 0:
                    self._finish()

    def _finish(self) -> None:
        """Called with the lock held once the last worker thread exits."""
        started_at = self._state.started_at if isinstance(self._state, Running) else now_iso()
        progress = [w.progress for w in self._workers]
        errors = tuple(
            f"worker-{p.worker_id}: {p.last_error}" for p in progress if p.status is CheckpointStatus.ERROR
        )
        if errors:
            self._state = Error(started_at=started_at, finished_at=now_iso(), errors=errors)
        elif progress and all(p.is_complete for p in progress):
            try:
                self._fold()
            except Exception as e:
                logger.exception("Could not fold worker checkpoints", indexer=self.indexer)
                self._state = Error(started_at=started_at, finished_at=now_iso(), errors=(str(e),))
                return
            self._state = Complete(started_at=started_at, finished_at=now_iso())
        else:
            self._state = Idle()
        logger.info("Parallel sync finished", indexer=self.indexer, state=self._state.name)

    def _fold(self) -> None:
        with session_scope(self.session_factory) as session:
            CheckpointStore(session).fold_workers(self.indexer)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _persisted_progress(self) -> list[WorkerProgress]:
        with session_scope(self.session_factory) as session:
            return [progress_from_checkpoint(cp) for cp in CheckpointStore(session).list_workers(self.indexer)]

    def worker_progress(self) -> list[WorkerProgress]:
        with self._lock:
            workers = list(self._workers)
        if workers:
            return [w.progress for w in workers]
        return self._persisted_progress()

    def status(self) -> CoordinatorStatus:
        with self._lock:
            state = self._state
        progress = self.worker_progress()
        combined = weighted_progress([(p.percent_complete, p.range_size) for p in progress])
        return CoordinatorStatus(
            state=state.name,
            running=isinstance(state, Running),
            workers_total=len(progress),
            combined_progress=round(combined, 2),
            all_complete=bool(progress) and all(p.is_complete for p in progress),
            started_at=getattr(state, "started_at", None),
            finished_at=getattr(state, "finished_at", None),
            workers=progress,
            errors=getattr(state, "errors", ()),
        )
