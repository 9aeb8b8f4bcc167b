"""Sequential mode: one bounded batch at a time, on demand or on a timer."""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.orm import Session, sessionmaker

from chainsync.services._helpers import monotonic_ms, now_iso
from chainsync.services._types import CheckpointDict, TimingDict
from chainsync.services.chain_reader import ChainReader
from chainsync.services.checkpoints import CheckpointStore, checkpoint_to_dict, next_block
from chainsync.services.definitions import IndexerDefinition
from chainsync.services.errors import ConfigurationError, ConflictError
from chainsync.services.ingestion import IngestionService
from chainsync.services.schemas import BatchResult, WindowResult
from config import IndexerSettings, get_settings
from db.connection import session_scope
from db.enums import BatchStatus, CheckpointStatus

logger = structlog.get_logger(__name__)


class BatchScheduler:
    """Advances one indexer's main checkpoint by up to ``batch_blocks`` per run.

    A run walks the batch in ``blocks_per_query`` sub-windows and checkpoints
    after each, so a time budget or a failure only loses the window in flight.
    Manual and timed runs share one non-blocking lock: whichever arrives second
    gets ``ConflictError``.
    """

    def __init__(
        self,
        definition: IndexerDefinition,
        session_factory: sessionmaker[Session],
        reader: ChainReader,
        settings: IndexerSettings | None = None,
        blocks_per_query: int | None = None,
        is_blocked: Callable[[], bool] | None = None,
    ) -> None:
        self.definition = definition
        self.indexer = definition.name
        self.session_factory = session_factory
        self.reader = reader
        self.settings = settings or get_settings().indexer
        self.blocks_per_query = blocks_per_query or get_settings().chain.blocks_per_query
        self.decoder = definition.build_decoder()
        self._is_blocked = is_blocked or (lambda: False)

        self._run_lock = threading.Lock()
        self._auto_lock = threading.Lock()
        self._auto_stop = threading.Event()
        self._auto_thread: threading.Thread | None = None
        self._interval_ms: int | None = None
        self._last_run_at: str | None = None
        self._next_run_at: str | None = None

    # ------------------------------------------------------------------
    # Single run
    # ------------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._run_lock.locked()

    def run_once(self, batch_blocks: int | None = None, time_budget_ms: int | None = None) -> BatchResult:
        blocks = batch_blocks if batch_blocks is not None else self.settings.batch_blocks
        if blocks < 1:
            raise ConfigurationError(f"Batch size must be >= 1, got {blocks}")
        if time_budget_ms is not None and time_budget_ms < 1:
            raise ConfigurationError("Time budget must be >= 1 ms when given")

        with self.exclusive():
            if self._is_blocked():
                raise ConflictError(f"Parallel sync for '{self.indexer}' is running")
            try:
                return self._run(blocks, time_budget_ms)
            finally:
                self._last_run_at = now_iso()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the per-owner run slot; ConflictError if it is taken."""
        if not self._run_lock.acquire(blocking=False):
            raise ConflictError(f"A batch for '{self.indexer}' is already running")
        try:
            yield
        finally:
            self._run_lock.release()

    def _run(self, blocks: int, time_budget_ms: int | None) -> BatchResult:
        started = monotonic_ms()
        with session_scope(self.session_factory) as session:
            store = CheckpointStore(session)
            cp = store.get_or_create(
                self.indexer,
                self.indexer,
                self.definition.genesis_block,
                self.definition.target_block,
            )
            start = next_block(cp)
            store.mark(self.indexer, CheckpointStatus.RUNNING)

        log = logger.bind(indexer=self.indexer, start=start)
        totals = WindowResult()
        latest: int | None = None
        last_done: int | None = None
        try:
            latest = self.definition.target_block
            if latest is None:
                latest = self.reader.latest_block()

            if start > latest:
                cp = self._finish(CheckpointStatus.COMPLETE)
                return self._result(BatchStatus.COMPLETE, None, None, latest, totals, started, cp)

            end = min(start + blocks - 1, latest)
            window_start = start
            while window_start <= end:
                window_end = min(window_start + self.blocks_per_query - 1, end)
                window_started = monotonic_ms()
                with session_scope(self.session_factory) as session:
                    result = IngestionService(session, self.reader, self.decoder).ingest_window(
                        self.indexer, window_start, window_end
                    )
                    CheckpointStore(session).advance(
                        self.indexer, window_end, result.events_inserted, monotonic_ms() - window_started
                    )
                totals.add(result)
                last_done = window_end
                window_start = window_end + 1
                if time_budget_ms is not None and monotonic_ms() - started >= time_budget_ms:
                    log.info("Time budget reached", end=window_end)
                    break
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            log.error("Batch failed", error=message, last_done=last_done)
            cp = self._finish(CheckpointStatus.ERROR, message)
            return self._result(
                BatchStatus.ERROR, start, last_done, latest, totals, started, cp, error=message
            )

        caught_up = last_done is not None and last_done >= latest
        cp = self._finish(CheckpointStatus.COMPLETE if caught_up else CheckpointStatus.IDLE)
        log.info(
            "Batch finished",
            end=last_done,
            latest=latest,
            found=totals.events_found,
            inserted=totals.events_inserted,
            decode_errors=totals.decode_errors,
        )
        return self._result(BatchStatus.SUCCESS, start, last_done, latest, totals, started, cp)

    def _finish(self, status: CheckpointStatus, error: str | None = None) -> CheckpointDict:
        with session_scope(self.session_factory) as session:
            return checkpoint_to_dict(CheckpointStore(session).mark(self.indexer, status, error))

    @staticmethod
    def _result(
        status: BatchStatus,
        start: int | None,
        end: int | None,
        latest: int | None,
        totals: WindowResult,
        started: int,
        cp: CheckpointDict,
        error: str | None = None,
    ) -> BatchResult:
        count = cp["total_batch_count"]
        remaining = 0
        if latest is not None:
            done_through = cp["last_indexed_block"] if count else cp["genesis_block"] - 1
            remaining = latest - done_through
        return BatchResult(
            status=status,
            start_block=start,
            end_block=end,
            latest_block=latest,
            blocks_remaining=max(0, remaining),
            events_found=totals.events_found,
            events_inserted=totals.events_inserted,
            decode_errors=totals.decode_errors,
            runtime_ms=monotonic_ms() - started,
            avg_runtime_ms=cp["total_batch_runtime_ms"] // count if count else 0,
            total_batch_count=count,
            error=error,
        )

    # ------------------------------------------------------------------
    # Auto-run
    # ------------------------------------------------------------------

    @property
    def is_auto_running(self) -> bool:
        thread = self._auto_thread
        return thread is not None and thread.is_alive() and not self._auto_stop.is_set()

    def start_auto(self, interval_ms: int | None = None) -> TimingDict:
        interval = interval_ms if interval_ms is not None else self.settings.auto_interval_ms
        if interval < 1:
            raise ConfigurationError(f"Interval must be >= 1 ms, got {interval}")
        with self._auto_lock:
            if self.is_auto_running:
                raise ConflictError(f"Auto-run for '{self.indexer}' is already on")
            self._interval_ms = interval
            self._auto_stop = threading.Event()
            self._auto_thread = threading.Thread(
                target=self._auto_loop,
                args=(self._auto_stop, interval),
                name=f"{self.indexer}-auto",
                daemon=True,
            )
            self._auto_thread.start()
        logger.info("Auto-run started", indexer=self.indexer, interval_ms=interval)
        return self.timing()

    def stop_auto(self) -> bool:
        """Turn the timer off. A batch already in flight finishes normally."""
        with self._auto_lock:
            was_running = self.is_auto_running
            self._auto_stop.set()
            self._next_run_at = None
        if was_running:
            logger.info("Auto-run stopped", indexer=self.indexer)
        return was_running

    def _auto_loop(self, stop: threading.Event, interval_ms: int) -> None:
        while not stop.is_set():
            self._next_run_at = None
            try:
                self.run_once()
            except ConflictError as e:
                logger.info("Skipping auto-run tick", indexer=self.indexer, reason=str(e))
            except Exception:
                logger.exception("Auto-run tick failed", indexer=self.indexer)
            self._next_run_at = (datetime.now(UTC) + timedelta(milliseconds=interval_ms)).isoformat()
            if stop.wait(interval_ms / 1000):
                break
        self._next_run_at = None

    def timing(self) -> TimingDict:
        return TimingDict(
            last_run_at=self._last_run_at,
            next_run_at=self._next_run_at if self.is_auto_running else None,
            interval_ms=self._interval_ms,
        )

    def checkpoint(self) -> CheckpointDict | None:
        with session_scope(self.session_factory) as session:
            cp = CheckpointStore(session).get(self.indexer)
            return checkpoint_to_dict(cp) if cp else None

    def wait_auto(self, timeout: float | None = None) -> None:
        thread = self._auto_thread
        if thread is not None:
            thread.join(timeout)
