"""EVM JSON-RPC reader: block head, logs and block timestamps over httpx."""

import threading
import time
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

import httpx
import structlog

from chainsync.services.errors import RetriesExhaustedError, RPCError, TransientNetworkError
from chainsync.services.schemas import RawLog
from config import ChainSettings, get_settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Provider error codes that mean "slow down" rather than "this request is wrong".
_RATE_LIMIT_CODES = {-32005, -32029, 429}
_RATE_LIMIT_HINTS = ("rate limit", "too many requests", "limit exceeded", "timeout")
_TIMESTAMP_CACHE_SIZE = 50_000


class ChainReader(Protocol):
    """What the indexing engine needs from a node provider."""

    def latest_block(self) -> int: ...

    def get_logs(
        self,
        addresses: Sequence[str],
        topics: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]: ...

    def get_block_timestamps(self, block_numbers: Iterable[int]) -> dict[int, datetime]: ...


def _hex(n: int) -> str:
    return hex(int(n))


def _parse_log(raw: dict[str, Any]) -> RawLog:
    return RawLog(
        address=str(raw["address"]).lower(),
        topics=tuple(str(t).lower() for t in raw.get("topics", [])),
        data=raw.get("data") or "0x",
        block_number=int(raw["blockNumber"], 16),
        tx_hash=str(raw["transactionHash"]).lower(),
        log_index=int(raw["logIndex"], 16),
        removed=bool(raw.get("removed", False)),
    )


class JsonRpcChainReader:
    """Stateless JSON-RPC client; safe to share across worker threads.

    Transient failures (timeouts, dropped connections, HTTP 429/5xx and
    provider rate-limit errors) are retried with exponential backoff. Once the
    retry budget is spent the call raises ``RetriesExhaustedError``; any other
    JSON-RPC error raises ``RPCError`` immediately.
    """

    def __init__(
        self,
        rpc_url: str | None = None,
        settings: ChainSettings | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings().chain
        self.rpc_url = rpc_url or self.settings.rpc_url
        self.retry_attempts = max(1, self.settings.retry_attempts)
        self.retry_delay = self.settings.retry_delay
        self.retry_backoff = self.settings.retry_backoff
        self.max_retry_delay = self.settings.max_retry_delay
        self.confirmation_lag = self.settings.confirmation_lag
        self.blocks_per_query = max(1, self.settings.blocks_per_query)
        self._client = client or httpx.Client(timeout=httpx.Timeout(self.settings.rpc_timeout))
        self._sleep = sleep
        self._request_id = 0
        self._id_lock = threading.Lock()
        self._timestamps: dict[int, datetime] = {}

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _next_id(self) -> int:
        with self._id_lock:
            self._request_id += 1
            return self._request_id

    def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params}
        try:
            resp = self._client.post(self.rpc_url, json=payload)
        except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise TransientNetworkError(f"{method}: {type(e).__name__}: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            retry_after = resp.headers.get("Retry-After")
            raise TransientNetworkError(
                f"{method}: HTTP {resp.status_code}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if resp.status_code >= 400:
            raise RPCError(f"{method}: HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise TransientNetworkError(f"{method}: invalid JSON response") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            if code in _RATE_LIMIT_CODES or any(h in message.lower() for h in _RATE_LIMIT_HINTS):
                raise TransientNetworkError(f"{method}: {message}")
            raise RPCError(f"{method} failed: code={code} message={message}", code=code)
        return data.get("result")

    def _retry_call(self, func: Callable[..., T], *args, **kwargs) -> T:
        last_error: TransientNetworkError | None = None
        for attempt in range(self.retry_attempts):
            try:
                return func(*args, **kwargs)
            except TransientNetworkError as e:
                last_error = e
                if attempt == self.retry_attempts - 1:
                    break
                delay = e.retry_after or self.retry_delay * (self.retry_backoff**attempt)
                delay = min(delay, self.max_retry_delay)
                logger.warning(
                    "RPC call failed, retrying",
                    attempt=attempt + 1,
                    delay=delay,
                    error=str(e)[:100],
                )
                self._sleep(delay)
        raise RetriesExhaustedError(
            f"RPC call failed after {self.retry_attempts} attempts: {last_error}"
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def latest_block(self) -> int:
        """Node head minus the confirmation lag."""
        head = int(self._retry_call(self._call, "eth_blockNumber", []), 16)
        return max(0, head - self.confirmation_lag)

    def get_logs(
        self,
        addresses: Sequence[str],
        topics: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        """Logs in [from_block, to_block], split into provider-sized queries."""
        logs: list[RawLog] = []
        start = from_block
        while start <= to_block:
            end = min(start + self.blocks_per_query - 1, to_block)
            flt: dict[str, Any] = {
                "address": list(addresses),
                "fromBlock": _hex(start),
                "toBlock": _hex(end),
            }
            if topics:
                flt["topics"] = [list(topics)]
            result = self._retry_call(self._call, "eth_getLogs", [flt]) or []
            logs.extend(_parse_log(r) for r in result)
            start = end + 1
        logs = [log for log in logs if not log.removed]
        logs.sort(key=lambda log: (log.block_number, log.log_index))
        return logs

    def get_block_timestamps(self, block_numbers: Iterable[int]) -> dict[int, datetime]:
        out: dict[int, datetime] = {}
        for number in sorted(set(block_numbers)):
            cached = self._timestamps.get(number)
            if cached is None:
                block = self._retry_call(self._call, "eth_getBlockByNumber", [_hex(number), False])
                if not block:
                    raise RPCError(f"Block {number} not found")
                cached = datetime.fromtimestamp(int(block["timestamp"], 16), tz=UTC)
                if len(self._timestamps) >= _TIMESTAMP_CACHE_SIZE:
                    self._timestamps.clear()
                self._timestamps[number] = cached
            out[number] = cached
        return out
