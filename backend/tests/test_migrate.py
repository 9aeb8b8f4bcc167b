"""Tests for the SQL migration runner and its agreement with the ORM models."""

import sqlite3
from pathlib import Path

from sqlalchemy import inspect

from chainsync.services.checkpoints import CheckpointStore
from db.connection import create_db_engine, make_session_factory, session_scope
from db.models import Base
from migrations.migrate import migrate


def test_applies_pending_once(tmp_path: Path) -> None:
    db_path = str(tmp_path / "m.db")

    assert migrate(db_path=db_path) == ["001_initial.sql"]
    assert migrate(db_path=db_path) == []

    conn = sqlite3.connect(db_path)
    try:
        applied = [r[0] for r in conn.execute("SELECT filename FROM _migrations")]
    finally:
        conn.close()
    assert applied == ["001_initial.sql"]


def test_dry_run_changes_nothing(tmp_path: Path) -> None:
    db_path = str(tmp_path / "dry.db")
    assert migrate(dry_run=True, db_path=db_path) == ["001_initial.sql"]
    assert migrate(db_path=db_path) == ["001_initial.sql"]


def test_migrated_schema_matches_models(tmp_path: Path) -> None:
    db_path = tmp_path / "orm.db"
    migrate(db_path=str(db_path))
    engine = create_db_engine(f"sqlite:///{db_path.as_posix()}")
    try:
        inspector = inspect(engine)
        for name, table in Base.metadata.tables.items():
            columns = {c["name"] for c in inspector.get_columns(name)}
            assert columns == {c.name for c in table.columns}, name

        with session_scope(make_session_factory(engine)) as session:
            CheckpointStore(session).get_or_create("bridge", "bridge", 10)
        with session_scope(make_session_factory(engine)) as session:
            assert CheckpointStore(session).require("bridge").genesis_block == 10
    finally:
        engine.dispose()
