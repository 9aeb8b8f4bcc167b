"""Tests for CheckpointStore."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from chainsync.services.checkpoints import (
    CheckpointStore,
    checkpoint_to_dict,
    next_block,
    range_complete,
    worker_owner_id,
)
from chainsync.services.errors import ConfigurationError
from chainsync.services.event_store import EventRepository
from chainsync.services.schemas import DecodedEvent
from db.enums import CheckpointStatus


def _event(block: int) -> DecodedEvent:
    return DecodedEvent(
        identity_key=f"0xtx{block}:0",
        event_type="bridge_in",
        block_number=block,
        block_timestamp=datetime(2024, 1, 1, tzinfo=UTC),
        tx_hash=f"0xtx{block}",
        log_index=0,
        contract_address="0xc0",
        token_symbol="JEWEL",
        amount=Decimal(1),
    )


def test_get_or_create_is_idempotent(session: Session) -> None:
    store = CheckpointStore(session)
    first = store.get_or_create("bridge", "bridge", 100)
    again = store.get_or_create("bridge", "bridge", 999)
    assert first is again
    assert again.genesis_block == 100
    assert next_block(again) == 100


def test_advance_never_moves_backwards(session: Session) -> None:
    store = CheckpointStore(session)
    store.get_or_create("bridge", "bridge", 0)
    store.advance("bridge", 500, events_inserted=4, runtime_ms=10)
    cp = store.advance("bridge", 200, events_inserted=0, runtime_ms=5)

    assert cp.last_indexed_block == 500
    assert cp.total_events_indexed == 4
    assert cp.total_batch_count == 2
    assert cp.total_batch_runtime_ms == 15
    assert cp.last_batch_runtime_ms == 5
    assert next_block(cp) == 501


def test_advance_clears_last_error(session: Session) -> None:
    store = CheckpointStore(session)
    store.get_or_create("bridge", "bridge", 0)
    store.mark("bridge", CheckpointStatus.ERROR, "rpc down")
    cp = store.advance("bridge", 10)
    assert cp.last_error is None
    assert checkpoint_to_dict(cp)["status"] == "error"


def test_advance_unknown_owner_raises(session: Session) -> None:
    with pytest.raises(ConfigurationError):
        CheckpointStore(session).advance("missing", 1)


def test_single_block_worker_range_completion(session: Session) -> None:
    store = CheckpointStore(session)
    cp = store.get_or_create(worker_owner_id("bridge", 1), "bridge", 7, 7, worker_id=1)
    assert not range_complete(cp)
    store.advance(cp.owner_id, 7)
    assert range_complete(cp)


def test_fold_workers_carries_progress_into_main(session: Session) -> None:
    store = CheckpointStore(session)
    store.get_or_create("bridge", "bridge", 0)
    for worker_id, (start, end) in enumerate([(0, 49), (50, 99)], start=1):
        owner = worker_owner_id("bridge", worker_id)
        store.get_or_create(owner, "bridge", start, end, worker_id=worker_id)
        store.advance(owner, end, events_inserted=worker_id)

    main = store.fold_workers("bridge")
    assert main.last_indexed_block == 99
    assert main.total_events_indexed == 3
    assert main.status == CheckpointStatus.COMPLETE.value
    assert next_block(main) == 100

    # folding twice does not double count
    assert store.fold_workers("bridge").total_events_indexed == 3


def test_fold_refuses_incomplete_workers(session: Session) -> None:
    store = CheckpointStore(session)
    store.get_or_create("bridge", "bridge", 0)
    store.get_or_create(worker_owner_id("bridge", 1), "bridge", 0, 99, worker_id=1)
    with pytest.raises(ConfigurationError):
        store.fold_workers("bridge")


def test_reset_rewinds_and_deletes_events_from_new_genesis(session: Session) -> None:
    store = CheckpointStore(session)
    events = EventRepository(session)
    store.get_or_create("bridge", "bridge", 0)
    store.get_or_create(worker_owner_id("bridge", 1), "bridge", 0, 10, worker_id=1)
    events.upsert("bridge", [_event(5), _event(50), _event(150)])
    store.advance("bridge", 200, events_inserted=3)

    cp = store.reset("bridge", 50)

    assert cp.genesis_block == 50
    assert cp.total_batch_count == 0
    assert next_block(cp) == 50
    assert store.list_workers("bridge") == []
    assert [e.block_number for e in events.list_events("bridge")] == [5]


def test_reset_without_block_keeps_genesis(session: Session) -> None:
    store = CheckpointStore(session)
    store.get_or_create("bridge", "bridge", 30)
    store.advance("bridge", 80)
    assert store.reset("bridge").genesis_block == 30
