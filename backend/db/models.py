"""SQLAlchemy ORM models mirroring migrations/001_initial.sql."""

from typing import Any

from sqlalchemy import Index, MetaData, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)

    def to_dict(self) -> dict[str, Any]:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class Checkpoints(Base):
    __tablename__ = "checkpoints"

    owner_id: Mapped[str] = mapped_column(primary_key=True)
    indexer: Mapped[str] = mapped_column(nullable=False)
    worker_id: Mapped[int | None] = mapped_column()
    last_indexed_block: Mapped[int] = mapped_column(nullable=False, default=0)
    genesis_block: Mapped[int] = mapped_column(nullable=False, default=0)
    target_block: Mapped[int | None] = mapped_column()
    status: Mapped[str] = mapped_column(nullable=False, default="idle")
    total_events_indexed: Mapped[int] = mapped_column(nullable=False, default=0)
    total_batch_count: Mapped[int] = mapped_column(nullable=False, default=0)
    total_batch_runtime_ms: Mapped[int] = mapped_column(nullable=False, default=0)
    last_batch_runtime_ms: Mapped[int | None] = mapped_column()
    last_error: Mapped[str | None] = mapped_column()
    created_at: Mapped[str] = mapped_column(nullable=False)
    updated_at: Mapped[str] = mapped_column(nullable=False)

    __table_args__ = (Index("ix_checkpoints_indexer", "indexer"),)


class IndexedEvents(Base):
    __tablename__ = "indexed_events"

    identity_key: Mapped[str] = mapped_column(primary_key=True)
    indexer: Mapped[str] = mapped_column(nullable=False)
    event_type: Mapped[str] = mapped_column(nullable=False)
    block_number: Mapped[int] = mapped_column(nullable=False)
    block_timestamp: Mapped[str] = mapped_column(nullable=False)
    tx_hash: Mapped[str] = mapped_column(nullable=False)
    log_index: Mapped[int] = mapped_column(nullable=False)
    contract_address: Mapped[str] = mapped_column(nullable=False)
    wallet: Mapped[str | None] = mapped_column()
    token_symbol: Mapped[str | None] = mapped_column()
    token_address: Mapped[str | None] = mapped_column()
    amount: Mapped[float | None] = mapped_column()
    payload: Mapped[str | None] = mapped_column()
    usd_value: Mapped[float | None] = mapped_column()
    token_price_usd: Mapped[float | None] = mapped_column()
    priced_at: Mapped[str | None] = mapped_column()
    created_at: Mapped[str] = mapped_column(nullable=False)

    __table_args__ = (
        Index("ix_indexed_events_indexer_block", "indexer", "block_number"),
        Index("ix_indexed_events_wallet", "wallet"),
        Index("ix_indexed_events_unpriced", "token_symbol", "block_timestamp"),
    )


class HistoricalPrices(Base):
    __tablename__ = "historical_prices"

    id: Mapped[str] = mapped_column(primary_key=True)
    token_symbol: Mapped[str] = mapped_column(nullable=False)
    price_date: Mapped[str] = mapped_column(nullable=False)
    price_usd: Mapped[float] = mapped_column(nullable=False)
    source: Mapped[str] = mapped_column(nullable=False, default="coingecko")
    created_at: Mapped[str] = mapped_column(nullable=False)

    __table_args__ = (UniqueConstraint("token_symbol", "price_date"),)
