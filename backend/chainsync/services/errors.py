"""Shared exception hierarchy for chainsync services."""


class ChainSyncError(Exception):
    """Base exception for the indexing engine."""


# ── Chain ─────────────────────────────────────────────────────────────────────


class TransientNetworkError(ChainSyncError):
    """Timeout, dropped connection, rate limit or 5xx from the provider. Retryable."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class FatalWorkerError(ChainSyncError):
    """A worker cannot make progress; it stops and surfaces the error."""


class RPCError(FatalWorkerError):
    """The provider returned an unrecoverable JSON-RPC error."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class RetriesExhaustedError(FatalWorkerError):
    """A transient error persisted past the retry budget."""


# ── Decoding ──────────────────────────────────────────────────────────────────


class DecodeError(ChainSyncError):
    """A log did not have the shape its signature promised. Skipped and counted."""


# ── Coordination ──────────────────────────────────────────────────────────────


class ConfigurationError(ChainSyncError):
    """Invalid range, worker count or batch size. Rejected before any state changes."""


class ConflictError(ChainSyncError):
    """A run is already active for this owner."""


class UnknownOwnerError(ChainSyncError):
    """No indexer is registered under the requested owner name."""


# ── Pricing ───────────────────────────────────────────────────────────────────


class PriceSourceError(ChainSyncError):
    """The external price provider failed after its own retries."""
