"""Shared fixtures — SQLite databases and in-process fakes for chain and prices."""

import threading
from collections.abc import Generator, Iterable, Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from chainsync.services.decoding import event_identity
from chainsync.services.definitions import IndexerDefinition
from chainsync.services.errors import DecodeError, PriceSourceError
from chainsync.services.schemas import DecodedEvent, RawLog
from db.connection import create_db_engine, make_session_factory
from db.models import Base

FAKE_TOPIC = "0x" + "fe" * 32
FAKE_CONTRACT = "0x" + "c0" * 20
FAKE_WALLET = "0x" + "ab" * 20
BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


def block_time(block: int) -> datetime:
    """One block per hour: blocks 0-23 fall on 2024-01-01, 24-47 on 2024-01-02."""
    return BASE_TIME + timedelta(hours=block)


def make_log(block: int, log_index: int = 0, amount: int = 1, data: str | None = None) -> RawLog:
    return RawLog(
        address=FAKE_CONTRACT,
        topics=(FAKE_TOPIC, "0x" + "00" * 12 + FAKE_WALLET[2:]),
        data=data if data is not None else hex(amount),
        block_number=block,
        tx_hash=f"0x{block:064x}",
        log_index=log_index,
    )


class FakeDecoder:
    """Turns FAKE_TOPIC logs into JEWEL movements; data is the whole-token amount."""

    symbol = "JEWEL"

    @property
    def addresses(self) -> list[str]:
        return [FAKE_CONTRACT]

    @property
    def topics(self) -> list[str]:
        return [FAKE_TOPIC]

    def decode(self, log: RawLog, block_timestamp: datetime) -> DecodedEvent | None:
        if log.topics[0] != FAKE_TOPIC:
            return None
        try:
            amount = int(log.data, 16)
        except ValueError as e:
            raise DecodeError(f"bad data {log.data}") from e
        return DecodedEvent(
            identity_key=event_identity(log.tx_hash, log.log_index),
            event_type="bridge_in",
            block_number=log.block_number,
            block_timestamp=block_timestamp,
            tx_hash=log.tx_hash,
            log_index=log.log_index,
            contract_address=log.address,
            wallet=FAKE_WALLET,
            token_symbol=self.symbol,
            token_address=FAKE_CONTRACT,
            amount=Decimal(amount),
            payload={"raw": amount},
        )


class FakeChainReader:
    """Serves a fixed set of logs; requests touching ``fail_blocks`` raise ``failure``."""

    def __init__(
        self,
        logs: Iterable[RawLog] = (),
        head: int = 100,
        fail_blocks: Iterable[int] = (),
        failure: Exception | None = None,
    ) -> None:
        self.logs = sorted(logs, key=lambda log: (log.block_number, log.log_index))
        self.head = head
        self.fail_blocks = set(fail_blocks)
        self.failure = failure or RuntimeError("boom")
        self.windows: list[tuple[int, int]] = []
        self.gate: threading.Event | None = None
        self._lock = threading.Lock()

    def latest_block(self) -> int:
        return self.head

    def get_logs(
        self,
        addresses: Sequence[str],
        topics: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        if self.gate is not None:
            self.gate.wait(5)
        with self._lock:
            self.windows.append((from_block, to_block))
        if any(from_block <= b <= to_block for b in self.fail_blocks):
            raise self.failure
        return [log for log in self.logs if from_block <= log.block_number <= to_block]

    def get_block_timestamps(self, block_numbers: Iterable[int]) -> dict[int, datetime]:
        return {n: block_time(n) for n in block_numbers}


class FakePriceSource:
    """Prices keyed by (symbol, day); symbols in ``failing`` raise ``PriceSourceError``."""

    def __init__(
        self,
        prices: dict[tuple[str, str], Decimal] | None = None,
        failing: Iterable[str] = (),
    ) -> None:
        self.prices = prices or {}
        self.failing = set(failing)
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def get_price(self, symbol: str, day: str) -> Decimal | None:
        with self._lock:
            self.calls.append((symbol, day))
        if symbol in self.failing:
            raise PriceSourceError(f"no quote for {symbol}")
        return self.prices.get((symbol, day))


def fake_definition(name: str = "bridge", genesis: int = 0, target: int | None = None) -> IndexerDefinition:
    return IndexerDefinition(name=name, decoder_factory=FakeDecoder, genesis_block=genesis, target_block=target)


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng: Engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine: Engine) -> Generator[Session, None, None]:
    factory: sessionmaker[Session] = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    sess: Session = factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture()
def session_factory(tmp_path: Path) -> Generator[sessionmaker[Session], None, None]:
    """File-backed SQLite so worker threads each get their own connection."""
    eng: Engine = create_db_engine(f"sqlite:///{(tmp_path / 'chainsync.db').as_posix()}")
    Base.metadata.create_all(eng)
    yield make_session_factory(eng)
    eng.dispose()
