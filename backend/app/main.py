"""FastAPI application — entry point."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.errors import register_error_handlers
from app.routes import events, health, indexers
from chainsync.services.registry import get_registry
from config import Settings, get_settings
from db.connection import get_engine
from db.models import Base
from migrations.migrate import migrate

logger: logging.Logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Route structlog through stdlib logging at the configured level."""
    log_level: str = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def init_schema(settings: Settings) -> None:
    """SQLite is migrated from .sql files; PostgreSQL gets the ORM metadata."""
    if settings.database._use_postgres():
        Base.metadata.create_all(get_engine())
    else:
        migrate(db_path=settings.database._resolved_sqlite_path().as_posix())


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("DB: %s", settings.database.db_info_for_logging())

    init_schema(settings)
    yield
    logger.info("Shutting down indexers")
    get_registry().shutdown(timeout=30)


def create_app() -> FastAPI:
    app: FastAPI = FastAPI(
        title="Chain Indexing & Enrichment Engine",
        version="0.1.0",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(indexers.router)
    app.include_router(events.router)

    return app


app: FastAPI = create_app()


def start() -> None:
    """Entry point for chainsync-api."""
    backend_root: Path = Path(__file__).resolve().parent.parent
    os.chdir(backend_root)

    for candidate in (backend_root / ".env", backend_root.parent / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)

    reload: bool = os.environ.get("CHAINSYNC_RELOAD", "false").lower() in ("1", "true", "yes")
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=reload,
    )
