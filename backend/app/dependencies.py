"""FastAPI dependencies — DB sessions, the engine registry and auth."""

from fastapi import Header, HTTPException

from chainsync.services.registry import EngineRegistry
from chainsync.services.registry import get_registry as _get_registry
from config import get_settings
from db.connection import get_db as get_db  # noqa: F401


def get_api_key(x_api_key: str = Header(default="")) -> str:
    """Validate API key on mutation endpoints."""
    expected: str | None = get_settings().api_key
    if not expected:
        return ""  # auth disabled when no key configured
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return x_api_key


def get_registry() -> EngineRegistry:
    """Process-wide engine registry; overridden in tests."""
    return _get_registry()
