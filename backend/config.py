"""Application settings — single file, Pydantic-based.

DB selection:
  - DATABASE_URL set and non-empty -> PostgreSQL
  - DATABASE_URL absent/empty -> SQLite (DB_SQLITE_PATH, default data/chainsync.db)
"""

import re
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _backend_root() -> Path:
    """Backend package root (backend/). config.py lives at backend/config.py."""
    return Path(__file__).resolve().parent


def _ensure_env_loaded() -> None:
    """Load .env from backend root (then project root). Idempotent."""
    root: Path = _backend_root()
    for candidate in (root / ".env", root.parent / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)


_ensure_env_loaded()

_ENV_FILES = (str(_backend_root() / ".env"), ".env")


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str | None = Field(
        default=None,
        description="PostgreSQL DSN; when set, uses Postgres.",
        validation_alias="DATABASE_URL",
    )
    sqlite_path: str | None = Field(default="data/chainsync.db")
    pool_size: int = Field(default=10)
    pool_timeout: int = Field(default=30)
    pool_recycle: int = Field(default=1800)

    def _use_postgres(self) -> bool:
        return bool((self.database_url or "").strip())

    def _resolved_sqlite_path(self) -> Path:
        raw: str = (self.sqlite_path or "data/chainsync.db").strip()
        path: Path = Path(raw)
        if not path.is_absolute():
            path = (_backend_root() / path).resolve()
        return path

    def _redacted_postgres_dsn(self) -> str:
        url: str = (self.database_url or "").strip()
        return re.sub(r":([^:@]+)@", r":***@", url) if url else ""

    @property
    def url(self) -> str:
        if self._use_postgres():
            return (self.database_url or "").strip()
        path = self._resolved_sqlite_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{path.as_posix()}"

    def db_info_for_logging(self) -> str:
        if self._use_postgres():
            return f"PostgreSQL @ {self._redacted_postgres_dsn()}"
        return f"SQLite @ {self._resolved_sqlite_path().as_posix()}"


class ChainSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHAIN_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    rpc_url: str = Field(default="https://subnets.avax.network/defi-kingdoms/dfk-chain/rpc")
    chain_id: int = Field(default=53935)
    rpc_timeout: float = Field(default=30.0)
    retry_attempts: int = Field(default=5)
    retry_delay: float = Field(default=1.0, description="Base backoff in seconds")
    retry_backoff: float = Field(default=2.0, description="Backoff multiplier per attempt")
    max_retry_delay: float = Field(default=60.0)
    confirmation_lag: int = Field(default=0, description="Blocks kept behind the node head")
    blocks_per_query: int = Field(default=2000, description="Max span of one eth_getLogs call")


class PriceSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PRICE_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_url: str = Field(default="https://api.coingecko.com/api/v3")
    api_key: str = Field(default="")
    timeout: float = Field(default=15.0)
    min_interval: float = Field(default=6.5, description="Seconds between outbound calls")
    retry_attempts: int = Field(default=3)
    retry_delay: float = Field(default=60.0, description="Wait after a 429 response")


class IndexerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="INDEXER_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    batch_blocks: int = Field(default=10_000, description="Blocks per scheduled batch")
    auto_interval_ms: int = Field(default=60_000)
    default_workers: int = Field(default=4)
    default_batch_size: int = Field(default=2000)
    enrichment_workers: int = Field(default=8)
    enrichment_interval_ms: int = Field(default=600_000, description="Timed enrichment interval")
    parallel_owner: str = Field(default="bridge")
    worker_delay: float = Field(default=0.0, description="Pause between worker batches")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHAINSYNC_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    api_key: str | None = Field(default=None, description="API key for mutation endpoints")
    data_dir: Path = Field(default=Path("data"))

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    chain: ChainSettings = Field(default_factory=ChainSettings)
    price: PriceSettings = Field(default_factory=PriceSettings)
    indexer: IndexerSettings = Field(default_factory=IndexerSettings)

    def model_post_init(self, _context: object) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    return Settings()
