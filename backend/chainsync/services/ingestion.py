"""Ingestion service: one block window from the chain into ``indexed_events``."""

import structlog
from sqlalchemy.orm import Session

from chainsync.services.chain_reader import ChainReader
from chainsync.services.decoding import EventDecoder, decode_logs
from chainsync.services.event_store import EventRepository
from chainsync.services.schemas import DecodeOutcome, WindowResult

logger = structlog.get_logger(__name__)


class IngestionService:
    """Fetches, decodes and upserts the logs of one block window.

    Network reads happen before the first statement, so the session's
    transaction only spans the writes.
    """

    def __init__(self, session: Session, reader: ChainReader, decoder: EventDecoder) -> None:
        self.session = session
        self.reader = reader
        self.decoder = decoder
        self.events = EventRepository(session)

    def fetch_window(self, start_block: int, end_block: int) -> DecodeOutcome:
        logs = self.reader.get_logs(self.decoder.addresses, self.decoder.topics, start_block, end_block)
        if not logs:
            return DecodeOutcome(events=[], errors=0)
        timestamps = self.reader.get_block_timestamps(log.block_number for log in logs)
        return decode_logs(self.decoder, logs, timestamps)

    def ingest_window(self, indexer: str, start_block: int, end_block: int) -> WindowResult:
        outcome = self.fetch_window(start_block, end_block)
        inserted = self.events.upsert(indexer, outcome.events)
        if outcome.events or outcome.errors:
            logger.debug(
                "Ingested window",
                indexer=indexer,
                start=start_block,
                end=end_block,
                found=len(outcome.events),
                inserted=inserted,
                decode_errors=outcome.errors,
            )
        return WindowResult(
            events_found=len(outcome.events),
            events_inserted=inserted,
            decode_errors=outcome.errors,
        )
