"""Raw and decoded chain records."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class RawLog:
    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    tx_hash: str
    log_index: int
    removed: bool = False


@dataclass
class DecodedEvent:
    identity_key: str
    event_type: str
    block_number: int
    block_timestamp: datetime
    tx_hash: str
    log_index: int
    contract_address: str
    wallet: str | None = None
    token_symbol: str | None = None
    token_address: str | None = None
    amount: Decimal | None = None
    payload: dict[str, object] = field(default_factory=dict)


@dataclass
class DecodeOutcome:
    events: list[DecodedEvent]
    errors: int
