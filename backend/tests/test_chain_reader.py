"""Tests for JsonRpcChainReader against an in-process httpx transport."""

import json
from collections.abc import Callable

import httpx
import pytest

from chainsync.services.chain_reader import JsonRpcChainReader
from chainsync.services.errors import RetriesExhaustedError, RPCError
from config import ChainSettings

Handler = Callable[[httpx.Request], httpx.Response]


def _reader(handler: Handler, sleeps: list[float] | None = None, **overrides) -> JsonRpcChainReader:
    settings = ChainSettings(
        rpc_url="http://rpc.test",
        retry_attempts=overrides.pop("retry_attempts", 3),
        retry_delay=1.0,
        retry_backoff=2.0,
        max_retry_delay=60.0,
        **overrides,
    )
    recorded = sleeps if sleeps is not None else []
    return JsonRpcChainReader(
        settings=settings,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=recorded.append,
    )


def _result(request: httpx.Request, result: object) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def _raw_log(block: int, index: int, removed: bool = False) -> dict[str, object]:
    return {
        "address": "0xABC",
        "topics": ["0xTOPIC"],
        "data": "0x01",
        "blockNumber": hex(block),
        "transactionHash": f"0x{block:064x}",
        "logIndex": hex(index),
        "removed": removed,
    }


def test_latest_block_applies_confirmation_lag() -> None:
    reader = _reader(lambda r: _result(r, hex(1_000)), confirmation_lag=12)
    assert reader.latest_block() == 988


def test_transient_errors_back_off_then_succeed() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) < 3:
            return httpx.Response(503)
        return _result(request, hex(42))

    sleeps: list[float] = []
    assert _reader(handler, sleeps).latest_block() == 42
    assert sleeps == [1.0, 2.0]


def test_rate_limit_rpc_error_is_retried() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "limit"}})
        return _result(request, hex(7))

    assert _reader(handler).latest_block() == 7
    assert len(calls) == 2


def test_retries_exhausted_is_fatal() -> None:
    sleeps: list[float] = []
    with pytest.raises(RetriesExhaustedError):
        _reader(lambda r: httpx.Response(429), sleeps).latest_block()
    assert len(sleeps) == 2


def test_other_rpc_errors_fail_immediately() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad params"}})

    sleeps: list[float] = []
    with pytest.raises(RPCError) as exc:
        _reader(handler, sleeps).latest_block()
    assert exc.value.code == -32602
    assert sleeps == []


def test_get_logs_splits_windows_and_drops_removed() -> None:
    windows: list[tuple[int, int]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        flt = json.loads(request.content)["params"][0]
        start, end = int(flt["fromBlock"], 16), int(flt["toBlock"], 16)
        windows.append((start, end))
        logs = [_raw_log(b, 1) for b in range(start, end + 1) if b % 5 == 0]
        logs += [_raw_log(b, 0, removed=True) for b in range(start, end + 1) if b % 7 == 0]
        return _result(request, list(reversed(logs)))

    logs = _reader(handler, blocks_per_query=10).get_logs(["0xabc"], ["0xtopic"], 0, 24)

    assert windows == [(0, 9), (10, 19), (20, 24)]
    assert [log.block_number for log in logs] == [0, 5, 10, 15, 20]
    assert logs[0].address == "0xabc"


def test_block_timestamps_are_cached() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        number = int(json.loads(request.content)["params"][0], 16)
        calls.append(number)
        return _result(request, {"number": hex(number), "timestamp": hex(1_700_000_000 + number)})

    reader = _reader(handler)
    first = reader.get_block_timestamps([3, 1, 3])
    second = reader.get_block_timestamps([1])

    assert calls == [1, 3]
    assert first[3].timestamp() == 1_700_000_003
    assert second[1] == first[1]
