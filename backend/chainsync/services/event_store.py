"""Repository for indexed events and the unpriced backlog."""

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from chainsync.services._helpers import dump_json, now_iso, to_iso
from chainsync.services._types import EventStatsDict
from chainsync.services.schemas import DecodedEvent
from db.models import IndexedEvents

logger = structlog.get_logger(__name__)

# Game items and unrecognised tokens have no market price.
NON_PRICEABLE_SYMBOLS: frozenset[str] = frozenset({"HERO", "PET", "EQUIPMENT", "UNKNOWN"})

# SQLite and PostgreSQL both store the ISO timestamp as text.
_day_expr = func.substr(IndexedEvents.block_timestamp, 1, 10)


@dataclass(frozen=True)
class EnrichmentGroup:
    """All unpriced rows of one token on one UTC day."""

    token_symbol: str
    day: str
    event_count: int = 0


def _unpriced_filter(indexer: str | None):
    clauses = [
        IndexedEvents.usd_value.is_(None),
        IndexedEvents.token_symbol.isnot(None),
        IndexedEvents.token_symbol.notin_(sorted(NON_PRICEABLE_SYMBOLS)),
    ]
    if indexer:
        clauses.append(IndexedEvents.indexer == indexer)
    return and_(*clauses)


class EventRepository:
    """Idempotent writes and backlog queries over ``indexed_events``."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, indexer: str, events: Sequence[DecodedEvent]) -> int:
        """Insert events whose identity key is new. Returns the number inserted."""
        if not events:
            return 0

        batch: dict[str, DecodedEvent] = {}
        for ev in events:
            batch.setdefault(ev.identity_key, ev)

        existing: set[str] = set(
            self.session.scalars(
                select(IndexedEvents.identity_key).where(
                    IndexedEvents.identity_key.in_(list(batch))
                )
            ).all()
        )

        ts = now_iso()
        rows = [
            IndexedEvents(
                identity_key=ev.identity_key,
                indexer=indexer,
                event_type=ev.event_type,
                block_number=ev.block_number,
                block_timestamp=to_iso(ev.block_timestamp),
                tx_hash=ev.tx_hash,
                log_index=ev.log_index,
                contract_address=ev.contract_address,
                wallet=ev.wallet,
                token_symbol=ev.token_symbol,
                token_address=ev.token_address,
                amount=float(ev.amount) if ev.amount is not None else None,
                payload=dump_json(ev.payload) if ev.payload else None,
                created_at=ts,
            )
            for key, ev in batch.items()
            if key not in existing
        ]
        self.session.add_all(rows)
        self.session.flush()
        return len(rows)

    def apply_group_price(self, group: EnrichmentGroup, price: Decimal, indexer: str | None = None) -> int:
        """Price every still-unpriced row of the group in one UPDATE. Returns rows changed."""
        price_f = float(price)
        stmt = (
            update(IndexedEvents)
            .where(
                _unpriced_filter(indexer),
                IndexedEvents.token_symbol == group.token_symbol,
                _day_expr == group.day,
                IndexedEvents.amount.isnot(None),
                IndexedEvents.amount > 0,
            )
            .values(
                usd_value=IndexedEvents.amount * price_f,
                token_price_usd=price_f,
                priced_at=now_iso(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount or 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def unpriced_groups(self, indexer: str | None = None) -> list[EnrichmentGroup]:
        stmt = (
            select(IndexedEvents.token_symbol, _day_expr.label("day"), func.count())
            .where(_unpriced_filter(indexer))
            .group_by(IndexedEvents.token_symbol, _day_expr)
            .order_by(_day_expr, IndexedEvents.token_symbol)
        )
        return [
            EnrichmentGroup(token_symbol=symbol, day=day, event_count=count)
            for symbol, day, count in self.session.execute(stmt).all()
        ]

    def count(self, indexer: str | None = None) -> int:
        stmt = select(func.count()).select_from(IndexedEvents)
        if indexer:
            stmt = stmt.where(IndexedEvents.indexer == indexer)
        return self.session.scalar(stmt) or 0

    def count_unpriced(self, indexer: str | None = None) -> int:
        stmt = select(func.count()).select_from(IndexedEvents).where(_unpriced_filter(indexer))
        return self.session.scalar(stmt) or 0

    def stats(self, indexer: str | None = None) -> EventStatsDict:
        total = self.count(indexer)
        unpriced = self.count_unpriced(indexer)
        priced_stmt = select(func.count()).select_from(IndexedEvents).where(
            IndexedEvents.usd_value.isnot(None)
        )
        if indexer:
            priced_stmt = priced_stmt.where(IndexedEvents.indexer == indexer)
        return EventStatsDict(
            total_events=total,
            unpriced_events=unpriced,
            priced_events=self.session.scalar(priced_stmt) or 0,
        )

    def list_events(
        self,
        indexer: str | None = None,
        wallet: str | None = None,
        start_block: int | None = None,
        end_block: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[IndexedEvents]:
        stmt = select(IndexedEvents)
        if indexer:
            stmt = stmt.where(IndexedEvents.indexer == indexer)
        if wallet:
            stmt = stmt.where(func.lower(IndexedEvents.wallet) == wallet.lower())
        if start_block is not None:
            stmt = stmt.where(IndexedEvents.block_number >= start_block)
        if end_block is not None:
            stmt = stmt.where(IndexedEvents.block_number <= end_block)
        stmt = (
            stmt.order_by(IndexedEvents.block_number.desc(), IndexedEvents.log_index.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).all())
