"""Log decoders: raw EVM logs to typed domain events. Pure functions, no I/O.

A decoder returns ``None`` for logs it does not care about and raises
``DecodeError`` for logs whose shape does not match their signature.
``decode_logs`` skips and counts the latter so one bad record never sinks a batch.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

import structlog
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from chainsync.services.errors import DecodeError
from chainsync.services.schemas import DecodedEvent, DecodeOutcome, RawLog
from db.enums import EventDirection, EventType

logger = structlog.get_logger(__name__)

DFK_CHAIN_ID = 53935
ZERO_ADDRESS = "0x" + "0" * 40
UNKNOWN_SYMBOL = "UNKNOWN"


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    decimals: int


# DFK Chain token contracts (lower-cased).
DFK_TOKENS: dict[str, TokenInfo] = {
    "0x04b9da42306b023f3572e106b11d82aad9d32ebb": TokenInfo("CRYSTAL", 18),
    "0xccb93dabd71c8dad03fc4ce5559dc3d89f67a260": TokenInfo("JEWEL", 18),
    "0x3ad9dfe640e1a9cc1d9b0948620820d975c3803a": TokenInfo("USDC", 6),
    "0xfbdf0e31808d0aa7b9509aa6abc9754e48c58852": TokenInfo("ETH", 18),
    "0xb57b60debdb0b8172bb6316a9164bd3c695f133a": TokenInfo("AVAX", 18),
    "0x7516eb8b8edfa420f540a162335eacf3ea05a247": TokenInfo("BTC", 8),
    "0x97855ba65aa7ed2f65ed832a776537268158b78a": TokenInfo("KAIA", 18),
}

SYNAPSE_BRIDGE_ADDRESS = "0xe05c976d3f045d0e6e7a6f61083d98a15603cf6a"
CJEWEL_ADDRESS = "0x9ed2c155632c042cb8bc20634571ff1ca26f5742"


def topic_for(signature: str) -> str:
    return "0x" + keccak(text=signature).hex().removeprefix("0x")


def event_identity(tx_hash: str, log_index: int) -> str:
    return f"{tx_hash.lower()}:{log_index}"


def to_units(raw: int, decimals: int) -> Decimal:
    return Decimal(raw).scaleb(-decimals)


def _topic_address(topic: str) -> str:
    if len(topic) != 66:
        raise DecodeError(f"Topic is not a 32-byte word: {topic[:20]}")
    return "0x" + topic[-40:].lower()


def _data_bytes(data: str) -> bytes:
    try:
        return bytes.fromhex(data.removeprefix("0x"))
    except ValueError as e:
        raise DecodeError(f"Log data is not hex: {e}") from e


def _abi(types: list[str], data: str) -> tuple:
    try:
        return abi_decode(types, _data_bytes(data))
    except DecodingError as e:
        raise DecodeError(f"ABI decode failed for {types}: {e}") from e


class EventDecoder(Protocol):
    """What the ingestion pipeline needs from an event family."""

    @property
    def addresses(self) -> list[str]: ...

    @property
    def topics(self) -> list[str]: ...

    def decode(self, log: RawLog, block_timestamp: datetime) -> DecodedEvent | None: ...


# ── Synapse bridge ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _BridgeEvent:
    name: str
    signature: str
    direction: EventDirection
    data_types: tuple[str, ...]

    @property
    def topic(self) -> str:
        return topic_for(self.signature)


_SWAP_TAIL = ("uint8", "uint8", "uint256", "uint256")

SYNAPSE_EVENTS: tuple[_BridgeEvent, ...] = (
    _BridgeEvent(
        "TokenDeposit",
        "TokenDeposit(address,uint256,address,uint256)",
        EventDirection.OUT,
        ("uint256", "address", "uint256"),
    ),
    _BridgeEvent(
        "TokenDepositAndSwap",
        "TokenDepositAndSwap(address,uint256,address,uint256,uint8,uint8,uint256,uint256)",
        EventDirection.OUT,
        ("uint256", "address", "uint256", *_SWAP_TAIL),
    ),
    _BridgeEvent(
        "TokenRedeem",
        "TokenRedeem(address,uint256,address,uint256)",
        EventDirection.OUT,
        ("uint256", "address", "uint256"),
    ),
    _BridgeEvent(
        "TokenRedeemAndSwap",
        "TokenRedeemAndSwap(address,uint256,address,uint256,uint8,uint8,uint256,uint256)",
        EventDirection.OUT,
        ("uint256", "address", "uint256", *_SWAP_TAIL),
    ),
    _BridgeEvent(
        "TokenMint",
        "TokenMint(address,address,uint256,uint256,bytes32)",
        EventDirection.IN,
        ("address", "uint256", "uint256"),
    ),
    _BridgeEvent(
        "TokenMintAndSwap",
        "TokenMintAndSwap(address,address,uint256,uint256,uint8,uint8,uint256,uint256,bool,bytes32)",
        EventDirection.IN,
        ("address", "uint256", "uint256", *_SWAP_TAIL, "bool"),
    ),
    _BridgeEvent(
        "TokenWithdraw",
        "TokenWithdraw(address,address,uint256,uint256,bytes32)",
        EventDirection.IN,
        ("address", "uint256", "uint256"),
    ),
    _BridgeEvent(
        "TokenWithdrawAndRemove",
        "TokenWithdrawAndRemove(address,address,uint256,uint256,uint8,uint256,uint256,bool,bytes32)",
        EventDirection.IN,
        ("address", "uint256", "uint256", "uint8", "uint256", "uint256", "bool"),
    ),
)


class SynapseBridgeDecoder:
    """Token movements through the Synapse bridge on DFK Chain.

    Outbound events carry (destination chain, token, amount) in data; inbound
    events carry (token, amount, fee). The wallet is always ``topics[1]``.
    """

    def __init__(
        self,
        bridge_address: str = SYNAPSE_BRIDGE_ADDRESS,
        tokens: Mapping[str, TokenInfo] | None = None,
        chain_id: int = DFK_CHAIN_ID,
    ) -> None:
        self.bridge_address = bridge_address.lower()
        self.tokens = {k.lower(): v for k, v in (tokens or DFK_TOKENS).items()}
        self.chain_id = chain_id
        self._by_topic: dict[str, _BridgeEvent] = {ev.topic: ev for ev in SYNAPSE_EVENTS}

    @property
    def addresses(self) -> list[str]:
        return [self.bridge_address]

    @property
    def topics(self) -> list[str]:
        return list(self._by_topic)

    def decode(self, log: RawLog, block_timestamp: datetime) -> DecodedEvent | None:
        if not log.topics:
            return None
        event = self._by_topic.get(log.topics[0])
        if event is None:
            return None
        if len(log.topics) < 2:
            raise DecodeError(f"{event.name} without indexed recipient in {log.tx_hash}")

        wallet = _topic_address(log.topics[1])
        values = _abi(list(event.data_types), log.data)
        if event.direction is EventDirection.OUT:
            other_chain, token_address, raw_amount = int(values[0]), values[1].lower(), int(values[2])
            fee = None
        else:
            token_address, raw_amount, fee = values[0].lower(), int(values[1]), int(values[2])
            other_chain = 0

        token = self.tokens.get(token_address)
        symbol = token.symbol if token else UNKNOWN_SYMBOL
        amount = to_units(raw_amount, token.decimals if token else 18)
        outbound = event.direction is EventDirection.OUT

        return DecodedEvent(
            identity_key=event_identity(log.tx_hash, log.log_index),
            event_type=(EventType.BRIDGE_OUT if outbound else EventType.BRIDGE_IN).value,
            block_number=log.block_number,
            block_timestamp=block_timestamp,
            tx_hash=log.tx_hash,
            log_index=log.log_index,
            contract_address=log.address,
            wallet=wallet,
            token_symbol=symbol,
            token_address=token_address,
            amount=amount,
            payload={
                "event": event.name,
                "direction": event.direction.value,
                "rawAmount": str(raw_amount),
                "fee": str(fee) if fee is not None else None,
                "srcChainId": self.chain_id if outbound else other_chain,
                "dstChainId": other_chain if outbound else self.chain_id,
            },
        )


# ── cJEWEL staking ────────────────────────────────────────────────────────────

TRANSFER_TOPIC = topic_for("Transfer(address,address,uint256)")


class CJewelStakingDecoder:
    """cJEWEL mints (JEWEL locked) and burns (JEWEL released), priced as JEWEL."""

    def __init__(self, token_address: str = CJEWEL_ADDRESS, symbol: str = "JEWEL", decimals: int = 18) -> None:
        self.token_address = token_address.lower()
        self.symbol = symbol
        self.decimals = decimals

    @property
    def addresses(self) -> list[str]:
        return [self.token_address]

    @property
    def topics(self) -> list[str]:
        return [TRANSFER_TOPIC]

    def decode(self, log: RawLog, block_timestamp: datetime) -> DecodedEvent | None:
        if not log.topics or log.topics[0] != TRANSFER_TOPIC:
            return None
        if len(log.topics) < 3:
            raise DecodeError(f"Transfer without indexed from/to in {log.tx_hash}")

        sender = _topic_address(log.topics[1])
        recipient = _topic_address(log.topics[2])
        if sender == ZERO_ADDRESS:
            event_type, wallet = EventType.STAKE_DEPOSIT, recipient
        elif recipient == ZERO_ADDRESS:
            event_type, wallet = EventType.STAKE_WITHDRAW, sender
        else:
            return None

        (raw_amount,) = _abi(["uint256"], log.data)
        return DecodedEvent(
            identity_key=event_identity(log.tx_hash, log.log_index),
            event_type=event_type.value,
            block_number=log.block_number,
            block_timestamp=block_timestamp,
            tx_hash=log.tx_hash,
            log_index=log.log_index,
            contract_address=log.address,
            wallet=wallet,
            token_symbol=self.symbol,
            token_address=self.token_address,
            amount=to_units(int(raw_amount), self.decimals),
            payload={"rawAmount": str(raw_amount)},
        )


def decode_logs(
    decoder: EventDecoder,
    logs: Iterable[RawLog],
    timestamps: Mapping[int, datetime],
) -> DecodeOutcome:
    """Decode a batch; malformed logs are logged, counted and skipped."""
    events: list[DecodedEvent] = []
    errors = 0
    for log in logs:
        ts = timestamps.get(log.block_number)
        if ts is None:
            errors += 1
            logger.warning("No timestamp for block", block=log.block_number, tx=log.tx_hash)
            continue
        try:
            event = decoder.decode(log, ts)
        except DecodeError as e:
            errors += 1
            logger.warning(
                "Skipping undecodable log",
                block=log.block_number,
                tx=log.tx_hash,
                log_index=log.log_index,
                error=str(e),
            )
            continue
        if event is not None:
            events.append(event)
    return DecodeOutcome(events=events, errors=errors)
