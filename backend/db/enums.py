"""Enumeration types for the chain indexing engine."""

from enum import Enum


class CheckpointStatus(str, Enum):
    """Lifecycle state persisted on a checkpoint row."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class BatchStatus(str, Enum):
    """Outcome of a single scheduled batch."""

    SUCCESS = "success"
    COMPLETE = "complete"
    ERROR = "error"


class EventDirection(str, Enum):
    """Direction of a bridge or staking movement relative to the chain."""

    IN = "in"
    OUT = "out"


class EventType(str, Enum):
    """Decoded event families."""

    BRIDGE_OUT = "bridge_out"
    BRIDGE_IN = "bridge_in"
    STAKE_DEPOSIT = "stake_deposit"
    STAKE_WITHDRAW = "stake_withdraw"


class PriceProvider(str, Enum):
    """Where a cached historical price came from."""

    COINGECKO = "coingecko"
    MANUAL = "manual"
