"""One index worker: walks its block range in ascending batches, checkpointing each."""

import dataclasses
import threading

import structlog
from sqlalchemy.orm import Session, sessionmaker

from chainsync.services._helpers import monotonic_ms
from chainsync.services.chain_reader import ChainReader
from chainsync.services.checkpoints import CheckpointStore, worker_owner_id
from chainsync.services.decoding import EventDecoder
from chainsync.services.errors import ConfigurationError, FatalWorkerError
from chainsync.services.ingestion import IngestionService
from chainsync.services.schemas import WorkerAssignment, WorkerProgress
from db.connection import session_scope
from db.enums import CheckpointStatus

logger = structlog.get_logger(__name__)


class IndexWorker:
    """Owns one ``WorkerAssignment`` and its checkpoint row.

    Each batch's upsert and checkpoint advance commit in one transaction, so
    the checkpoint never runs ahead of durable data. A crash between batches
    replays at most one batch, which the idempotent upsert absorbs.
    """

    def __init__(
        self,
        indexer: str,
        assignment: WorkerAssignment,
        session_factory: sessionmaker[Session],
        reader: ChainReader,
        decoder: EventDecoder,
        batch_size: int,
        stop_event: threading.Event,
        max_batches: int | None = None,
        batch_delay: float = 0.0,
    ) -> None:
        if batch_size < 1:
            raise ConfigurationError(f"Batch size must be >= 1, got {batch_size}")
        self.indexer = indexer
        self.assignment = assignment
        self.worker_id = assignment.worker_id
        self.owner_id = worker_owner_id(indexer, assignment.worker_id)
        self.session_factory = session_factory
        self.reader = reader
        self.decoder = decoder
        self.batch_size = batch_size
        self.stop_event = stop_event
        self.max_batches = max_batches
        self.batch_delay = batch_delay

        block_range = assignment.block_range
        self._lock = threading.Lock()
        self._progress = WorkerProgress(
            worker_id=assignment.worker_id,
            range_start=block_range.start,
            range_end=block_range.end,
            current_block=assignment.resume_from,
            last_indexed_block=max(block_range.start, assignment.resume_from - 1),
            status=CheckpointStatus.COMPLETE if assignment.is_complete else CheckpointStatus.IDLE,
        )

    @property
    def progress(self) -> WorkerProgress:
        with self._lock:
            return dataclasses.replace(self._progress)

    def _update(self, **changes) -> None:
        with self._lock:
            for key, value in changes.items():
                setattr(self._progress, key, value)

    def _persist_status(self, status: CheckpointStatus, error: str | None = None) -> None:
        with session_scope(self.session_factory) as session:
            CheckpointStore(session).mark(self.owner_id, status, error)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run(self) -> WorkerProgress:
        """Process batches until the range is done, the stop flag is set or the batch limit hits."""
        log = logger.bind(
            owner_id=self.owner_id,
            start=self._progress.current_block,
            end=self._progress.range_end,
        )
        if self.assignment.is_complete:
            log.info("Worker range already complete")
            return self.progress

        self._update(status=CheckpointStatus.RUNNING, last_error=None)
        log.info("Worker started")

        batches = 0
        try:
            self._persist_status(CheckpointStatus.RUNNING)
            while not self.stop_event.is_set() and self._progress.current_block <= self._progress.range_end:
                if self.max_batches is not None and batches >= self.max_batches:
                    break
                self._run_batch()
                batches += 1
                if self.batch_delay and self.stop_event.wait(self.batch_delay):
                    break
        except FatalWorkerError as e:
            return self._fail(f"{type(e).__name__}: {e}")
        except Exception as e:
            log.exception("Worker crashed")
            return self._fail(f"{type(e).__name__}: {e}")

        final = CheckpointStatus.COMPLETE if self._progress.is_complete else CheckpointStatus.IDLE
        self._update(status=final)
        self._persist_status(final)
        log.info("Worker finished", status=final.value, batches=batches)
        return self.progress

    def _run_batch(self) -> None:
        start = self._progress.current_block
        end = min(start + self.batch_size - 1, self._progress.range_end)
        started = monotonic_ms()

        with session_scope(self.session_factory) as session:
            result = IngestionService(session, self.reader, self.decoder).ingest_window(
                self.indexer, start, end
            )
            CheckpointStore(session).advance(
                self.owner_id, end, result.events_inserted, monotonic_ms() - started
            )

        with self._lock:
            p = self._progress
            p.current_block = end + 1
            p.last_indexed_block = end
            p.events_found += result.events_found
            p.events_inserted += result.events_inserted
            p.decode_errors += result.decode_errors
            p.batches_completed += 1

    def _fail(self, message: str) -> WorkerProgress:
        logger.error("Worker failed", owner_id=self.owner_id, error=message)
        self._update(status=CheckpointStatus.ERROR, last_error=message)
        self._persist_status(CheckpointStatus.ERROR, message)
        return self.progress
