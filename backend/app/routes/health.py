"""Health endpoints."""

import logging
import os
import re

from fastapi import APIRouter, Depends
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from app.dependencies import get_api_key
from app.schemas.common import HealthResponse
from chainsync.services._types import DbInfoDict
from config import DatabaseSettings, get_settings
from db.connection import get_engine
from db.models import Base

logger: logging.Logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _redact_password(dsn: str) -> str:
    if not dsn:
        return dsn
    return re.sub(r":([^:@]+)@", r":***@", dsn)


def get_db_info(engine: Engine | None = None) -> DbInfoDict:
    """Gather DB info. Never raises."""
    try:
        db: DatabaseSettings = get_settings().database

        if db._use_postgres():
            backend_type: str = "postgres"
            url_or_path: str | None = db._redacted_postgres_dsn() or _redact_password(db.url)
        else:
            backend_type = "sqlite"
            url_or_path = db._resolved_sqlite_path().as_posix()

        existing: set[str] = set()
        try:
            existing = set(inspect(engine or get_engine()).get_table_names())
        except Exception as e:
            logger.warning("Could not inspect DB: %s", e)

        missing: list[str] = sorted(set(Base.metadata.tables) - existing)
        return DbInfoDict(
            backend_type=backend_type,
            database_url_or_path=url_or_path,
            tables_present=sorted(existing),
            tables_missing=missing,
            schema_initialized=not missing,
            pid=os.getpid(),
        )
    except Exception as e:
        logger.exception("Health DB check failed: %s", e)
        return DbInfoDict(
            backend_type="unknown",
            database_url_or_path=None,
            tables_present=[],
            tables_missing=sorted(Base.metadata.tables),
            schema_initialized=False,
            error=str(e),
            pid=os.getpid(),
        )


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get("/health/db", dependencies=[Depends(get_api_key)])
def health_db() -> DbInfoDict:
    return get_db_info()
