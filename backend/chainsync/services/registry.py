"""Process-wide wiring: one scheduler and one coordinator per indexer, one enrichment pool."""

import threading
from functools import lru_cache

import structlog
from sqlalchemy.orm import Session, sessionmaker

from chainsync.services._types import CheckpointDict, TimingDict
from chainsync.services.batch_scheduler import BatchScheduler
from chainsync.services.chain_reader import ChainReader, JsonRpcChainReader
from chainsync.services.checkpoints import CheckpointStore, checkpoint_to_dict
from chainsync.services.definitions import BUILTIN_INDEXERS, IndexerDefinition, get_definition
from chainsync.services.enrichment import EnrichmentCoordinator
from chainsync.services.errors import ConflictError
from chainsync.services.index_coordinator import IndexCoordinator
from chainsync.services.price_source import CoinGeckoPriceSource, PriceSource
from chainsync.services.schemas import WorkerProgress
from config import Settings, get_settings
from db.connection import get_session_factory, session_scope

logger = structlog.get_logger(__name__)


class EngineRegistry:
    """Holds the long-lived engine objects shared by routes and CLI workers.

    Each owner gets a ``BatchScheduler`` and an ``IndexCoordinator`` that refuse
    to run while the other is active, since both advance the same checkpoint.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        reader: ChainReader | None = None,
        price_source: PriceSource | None = None,
        settings: Settings | None = None,
        definitions: dict[str, IndexerDefinition] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.reader = reader or JsonRpcChainReader(settings=self.settings.chain)
        self.price_source = price_source or CoinGeckoPriceSource(
            self.session_factory, settings=self.settings.price
        )
        self.definitions = definitions if definitions is not None else dict(BUILTIN_INDEXERS)
        self._lock = threading.Lock()
        self._schedulers: dict[str, BatchScheduler] = {}
        self._coordinators: dict[str, IndexCoordinator] = {}
        self.enrichment = EnrichmentCoordinator(
            self.session_factory, self.price_source, settings=self.settings.indexer
        )

    @property
    def owners(self) -> list[str]:
        return sorted(self.definitions)

    def _build(self, owner: str) -> None:
        definition = get_definition(owner, self.definitions)
        scheduler = BatchScheduler(
            definition,
            self.session_factory,
            self.reader,
            settings=self.settings.indexer,
            blocks_per_query=self.settings.chain.blocks_per_query,
            is_blocked=lambda: self._coordinators[owner].running,
        )
        coordinator = IndexCoordinator(
            definition,
            self.session_factory,
            self.reader,
            settings=self.settings.indexer,
            is_blocked=lambda: scheduler.busy,
        )
        self._schedulers[owner] = scheduler
        self._coordinators[owner] = coordinator

    def scheduler(self, owner: str) -> BatchScheduler:
        with self._lock:
            if owner not in self._schedulers:
                self._build(owner)
            return self._schedulers[owner]

    def coordinator(self, owner: str) -> IndexCoordinator:
        with self._lock:
            if owner not in self._coordinators:
                self._build(owner)
            return self._coordinators[owner]

    # ------------------------------------------------------------------
    # Composite operations
    # ------------------------------------------------------------------

    def status(self, owner: str) -> tuple[CheckpointDict | None, bool, TimingDict, list[WorkerProgress]]:
        scheduler = self.scheduler(owner)
        workers = self.coordinator(owner).worker_progress()
        return scheduler.checkpoint(), scheduler.is_auto_running, scheduler.timing(), workers

    def reset(self, owner: str, to_block: int | None = None) -> CheckpointDict:
        """Destructive: rewind the owner's checkpoint and delete its events.

        Refused while any batch, auto-run or parallel sync is active for the owner.
        """
        scheduler = self.scheduler(owner)
        coordinator = self.coordinator(owner)
        definition = self.definitions[owner]
        with scheduler.exclusive():
            if scheduler.is_auto_running or coordinator.running:
                raise ConflictError(f"Stop '{owner}' before resetting it")
            with session_scope(self.session_factory) as session:
                store = CheckpointStore(session)
                store.get_or_create(owner, owner, definition.genesis_block, definition.target_block)
                result = checkpoint_to_dict(store.reset(owner, to_block))
        logger.warning("Indexer reset", owner=owner, to_block=to_block)
        return result

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop timers and workers; with a timeout, also wait for their threads."""
        schedulers = list(self._schedulers.values())
        coordinators = list(self._coordinators.values())
        for scheduler in schedulers:
            scheduler.stop_auto()
        for coordinator in coordinators:
            coordinator.stop()
        self.enrichment.stop_auto()
        self.enrichment.stop()
        if timeout is None:
            return
        for scheduler in schedulers:
            scheduler.wait_auto(timeout)
        for coordinator in coordinators:
            coordinator.wait(timeout)
        self.enrichment.wait_auto(timeout)
        self.enrichment.wait(timeout)


@lru_cache
def get_registry() -> EngineRegistry:
    return EngineRegistry()
