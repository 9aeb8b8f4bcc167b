"""Indexed event response schemas."""

from typing import Any

from app.schemas.common import CamelModel


class EventResponse(CamelModel):
    identity_key: str
    indexer: str
    event_type: str
    block_number: int
    block_timestamp: str
    tx_hash: str
    log_index: int
    contract_address: str
    wallet: str | None
    token_symbol: str | None
    token_address: str | None
    amount: float | None
    payload: dict[str, Any] | None
    usd_value: float | None
    token_price_usd: float | None
    priced_at: str | None


class EventStatsResponse(CamelModel):
    total_events: int
    unpriced_events: int
    priced_events: int
