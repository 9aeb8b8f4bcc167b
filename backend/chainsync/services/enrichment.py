"""Price enrichment: a second pass that values already-indexed, unpriced events.

The backlog is grouped by (token symbol, UTC day) and computed once per run.
Group ``i`` belongs to worker ``(i mod n) + 1`` for the whole run; finished
workers do not take over a slower sibling's groups.
"""

import dataclasses
import threading
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.orm import Session, sessionmaker

from chainsync.services._helpers import monotonic_ms, now_iso
from chainsync.services._types import TimingDict
from chainsync.services.checkpoints import CheckpointStore, worker_owner_id
from chainsync.services.errors import ConfigurationError, ConflictError
from chainsync.services.event_store import EnrichmentGroup, EventRepository
from chainsync.services.price_source import PriceSource
from chainsync.services.schemas import (
    Complete,
    EnrichmentProgress,
    EnrichmentStatus,
    Error,
    Idle,
    Running,
    RunState,
    StartResult,
    weighted_progress,
)
from config import IndexerSettings, get_settings
from db.connection import session_scope
from db.enums import CheckpointStatus

logger = structlog.get_logger(__name__)

ENRICHMENT_OWNER = "enrichment"


def shard_groups(groups: Sequence[EnrichmentGroup], n: int) -> list[list[EnrichmentGroup]]:
    """Static round-robin sharding; shard k holds every group with index % n == k."""
    if n < 1:
        raise ConfigurationError(f"Worker count must be >= 1, got {n}")
    shards: list[list[EnrichmentGroup]] = [[] for _ in range(n)]
    for i, group in enumerate(groups):
        shards[i % n].append(group)
    return shards


class EnrichmentWorker:
    """Prices its own shard of groups, one price lookup and one UPDATE per group."""

    def __init__(
        self,
        worker_id: int,
        groups: Sequence[EnrichmentGroup],
        session_factory: sessionmaker[Session],
        price_source: PriceSource,
        stop_event: threading.Event,
        indexer: str | None = None,
    ) -> None:
        self.worker_id = worker_id
        self.owner_id = worker_owner_id(ENRICHMENT_OWNER, worker_id)
        self.groups = list(groups)
        self.session_factory = session_factory
        self.price_source = price_source
        self.stop_event = stop_event
        self.indexer = indexer
        self._lock = threading.Lock()
        self._progress = EnrichmentProgress(
            worker_id=worker_id,
            groups_total=len(self.groups),
            status=CheckpointStatus.COMPLETE if not self.groups else CheckpointStatus.IDLE,
        )

    @property
    def progress(self) -> EnrichmentProgress:
        with self._lock:
            return dataclasses.replace(self._progress)

    def _set_status(self, status: CheckpointStatus, error: str | None = None) -> None:
        with self._lock:
            self._progress.status = status
            if error is not None:
                self._progress.last_error = error
        with session_scope(self.session_factory) as session:
            CheckpointStore(session).mark(self.owner_id, status, error)

    def run(self) -> EnrichmentProgress:
        log = logger.bind(owner_id=self.owner_id, groups=len(self.groups))
        if not self.groups:
            return self.progress
        try:
            self._set_status(CheckpointStatus.RUNNING)
            log.info("Enrichment worker started")
            for group in self.groups:
                if self.stop_event.is_set():
                    break
                self._process(group)
        except Exception as e:
            log.exception("Enrichment worker crashed")
            self._set_status(CheckpointStatus.ERROR, f"{type(e).__name__}: {e}")
            return self.progress

        p = self.progress
        final = CheckpointStatus.COMPLETE if p.is_complete else CheckpointStatus.IDLE
        self._set_status(final)
        log.info(
            "Enrichment worker finished",
            status=final.value,
            processed=p.groups_processed,
            failed=p.groups_failed,
            events_updated=p.events_updated,
        )
        return self.progress

    def _process(self, group: EnrichmentGroup) -> None:
        """Price one group; any failure skips the group and the shard moves on."""
        started = monotonic_ms()
        with self._lock:
            processed = self._progress.groups_processed + 1
        try:
            price = self.price_source.get_price(group.token_symbol, group.day)
            if price is None:
                logger.info("No price for group", symbol=group.token_symbol, day=group.day)
            with session_scope(self.session_factory) as session:
                updated = 0
                if price is not None:
                    updated = EventRepository(session).apply_group_price(group, price, self.indexer)
                CheckpointStore(session).advance(self.owner_id, processed, updated, monotonic_ms() - started)
        except Exception as e:
            # the group's transaction is rolled back; the next advance carries the processed count
            logger.warning(
                "Group failed, skipping",
                owner_id=self.owner_id,
                symbol=group.token_symbol,
                day=group.day,
                error=f"{type(e).__name__}: {e}",
            )
            with self._lock:
                self._progress.groups_processed = processed
                self._progress.groups_failed += 1
                self._progress.last_error = f"{group.token_symbol} {group.day}: {e}"
            return

        with self._lock:
            self._progress.groups_processed = processed
            self._progress.events_updated += updated


class EnrichmentCoordinator:
    """Owns the enrichment worker pool. ``start`` is single-flight like indexing."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        price_source: PriceSource,
        settings: IndexerSettings | None = None,
        indexer: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.price_source = price_source
        self.settings = settings or get_settings().indexer
        self.indexer = indexer

        self._lock = threading.Lock()
        self._state: RunState = Idle()
        self._stop_event = threading.Event()
        self._workers: list[EnrichmentWorker] = []
        self._threads: list[threading.Thread] = []
        self._remaining = 0

        self._auto_lock = threading.Lock()
        self._auto_stop = threading.Event()
        self._auto_thread: threading.Thread | None = None
        self._interval_ms: int | None = None
        self._last_run_at: str | None = None
        self._next_run_at: str | None = None

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        return isinstance(self.state, Running)

    def start(self, workers: int | None = None) -> StartResult:
        n = workers if workers is not None else self.settings.enrichment_workers
        if n < 1:
            raise ConfigurationError(f"Worker count must be >= 1, got {n}")

        with self._lock:
            if isinstance(self._state, Running):
                raise ConflictError("Price enrichment is already running")

            started_at = now_iso()
            with session_scope(self.session_factory) as session:
                groups = EventRepository(session).unpriced_groups(self.indexer)
                store = CheckpointStore(session)
                store.clear_workers(ENRICHMENT_OWNER)
                shards = shard_groups(groups, n)
                for worker_id, shard in enumerate(shards, start=1):
                    owner_id = worker_owner_id(ENRICHMENT_OWNER, worker_id)
                    store.get_or_create(
                        owner_id,
                        ENRICHMENT_OWNER,
                        0,
                        len(shard),
                        worker_id=worker_id,
                    )
                    if not shard:
                        store.mark(owner_id, CheckpointStatus.COMPLETE)

            self._stop_event = threading.Event()
            self._workers = [
                EnrichmentWorker(
                    worker_id=worker_id,
                    groups=shard,
                    session_factory=self.session_factory,
                    price_source=self.price_source,
                    stop_event=self._stop_event,
                    indexer=self.indexer,
                )
                for worker_id, shard in enumerate(shards, start=1)
            ]

            if not groups:
                self._state = Complete(started_at=started_at, finished_at=now_iso())
                logger.info("No unpriced groups")
                return StartResult(accepted=True, workers=0, message="no_work")

            busy = [w for w in self._workers if w.groups]
            self._state = Running(started_at=started_at, workers_total=len(self._workers))
            self._remaining = len(busy)
            self._threads = []
            for worker in busy:
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(worker,),
                    name=worker.owner_id,
                    daemon=True,
                )
                self._threads.append(thread)
                thread.start()

        logger.info("Price enrichment started", workers=len(busy), groups=len(groups))
        return StartResult(accepted=True, workers=len(busy), message="started")

    def stop(self) -> bool:
        """Workers exit after the group they are pricing."""
        self._stop_event.set()
        logger.info("Price enrichment stop requested")
        return True

    def wait(self, timeout: float | None = None) -> bool:
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
        return not any(t.is_alive() for t in threads)

    def _run_worker(self, worker: EnrichmentWorker) -> None:
        try:
            worker.run()
        except Exception:
            logger.exception("Enrichment thread died", owner_id=worker.owner_id)
        finally:
            with self._lock:
                self._remaining -= 1
                if self._remaining == 0:
                    self._finish()

    def _finish(self) -> None:
        started_at = self._state.started_at if isinstance(self._state, Running) else now_iso()
        progress = [w.progress for w in self._workers]
        errors = tuple(
            f"worker-{p.worker_id}: {p.last_error}" for p in progress if p.status is CheckpointStatus.ERROR
        )
        if errors:
            self._state = Error(started_at=started_at, finished_at=now_iso(), errors=errors)
        elif all(p.is_complete for p in progress):
            self._state = Complete(started_at=started_at, finished_at=now_iso())
        else:
            self._state = Idle()
        logger.info("Price enrichment finished", state=self._state.name)

    def status(self) -> EnrichmentStatus:
        with self._lock:
            state = self._state
            workers = list(self._workers)
        progress = [w.progress for w in workers]
        combined = weighted_progress([(p.percent_complete, p.groups_total) for p in progress])
        if not any(p.groups_total for p in progress):
            combined = 100.0 if isinstance(state, Complete) else 0.0
        return EnrichmentStatus(
            state=state.name,
            running=isinstance(state, Running),
            workers_total=len(progress),
            groups_total=sum(p.groups_total for p in progress),
            groups_processed=sum(p.groups_processed for p in progress),
            groups_failed=sum(p.groups_failed for p in progress),
            events_updated=sum(p.events_updated for p in progress),
            combined_progress=round(combined, 2),
            all_complete=bool(progress) and all(p.is_complete for p in progress),
            started_at=getattr(state, "started_at", None),
            finished_at=getattr(state, "finished_at", None),
            workers=progress,
            errors=getattr(state, "errors", ()),
            is_auto_running=self.is_auto_running,
            timing=self.timing(),
        )

    # ------------------------------------------------------------------
    # Timed runs
    # ------------------------------------------------------------------

    @property
    def is_auto_running(self) -> bool:
        thread = self._auto_thread
        return thread is not None and thread.is_alive() and not self._auto_stop.is_set()

    def start_auto(self, interval_ms: int | None = None, workers: int | None = None) -> TimingDict:
        """Start a pass now and again every ``interval_ms`` until ``stop_auto``."""
        interval = interval_ms if interval_ms is not None else self.settings.enrichment_interval_ms
        if interval < 1:
            raise ConfigurationError(f"Interval must be >= 1 ms, got {interval}")
        if workers is not None and workers < 1:
            raise ConfigurationError(f"Worker count must be >= 1, got {workers}")
        with self._auto_lock:
            if self.is_auto_running:
                raise ConflictError("Timed price enrichment is already on")
            self._interval_ms = interval
            self._auto_stop = threading.Event()
            self._auto_thread = threading.Thread(
                target=self._auto_loop,
                args=(self._auto_stop, interval, workers),
                name="enrichment-auto",
                daemon=True,
            )
            self._auto_thread.start()
        logger.info("Timed price enrichment started", interval_ms=interval)
        return self.timing()

    def stop_auto(self) -> bool:
        """Turn the timer off. A pass already in flight finishes normally."""
        with self._auto_lock:
            was_running = self.is_auto_running
            self._auto_stop.set()
            self._next_run_at = None
        if was_running:
            logger.info("Timed price enrichment stopped")
        return was_running

    def _auto_loop(self, stop: threading.Event, interval_ms: int, workers: int | None) -> None:
        while not stop.is_set():
            self._next_run_at = None
            try:
                self.start(workers)
                self._last_run_at = now_iso()
            except ConflictError as e:
                logger.info("Skipping enrichment tick", reason=str(e))
            except Exception:
                logger.exception("Enrichment tick failed")
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

    def wait_auto(self, timeout: float | None = None) -> None:
        thread = self._auto_thread
        if thread is not None:
            thread.join(timeout)
