"""SQL migration runner for the SQLite store.

Reads .sql files from the migrations/ directory in lexicographic order,
tracks applied migrations in a _migrations table, and skips already-applied ones.
PostgreSQL deployments create the schema from the ORM metadata instead.

Usage:
    python -m migrations.migrate                # apply pending migrations
    python -m migrations.migrate --dry-run      # show what would be applied
    python -m migrations.migrate --status       # show migration status
"""

import argparse
import logging
import os
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

MIGRATIONS_DIR: Path = Path(__file__).resolve().parent

logger: logging.Logger = logging.getLogger(__name__)


def _get_db_path() -> str:
    """Resolve the SQLite database path from env or default."""
    from dotenv import load_dotenv

    backend_root: Path = MIGRATIONS_DIR.parent
    for candidate in (backend_root / ".env", backend_root.parent / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)

    db_path: str = os.environ.get("DB_SQLITE_PATH", "data/chainsync.db")
    if not os.path.isabs(db_path):
        db_path = str(backend_root / db_path)
    return db_path


def _ensure_tracking_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS _migrations ("
        "  filename TEXT PRIMARY KEY,"
        "  applied_at TEXT NOT NULL"
        ")"
    )
    conn.commit()


def _get_applied(conn: sqlite3.Connection) -> set[str]:
    rows: list[tuple[str, ...]] = conn.execute("SELECT filename FROM _migrations").fetchall()
    return {r[0] for r in rows}


def _get_pending(applied: set[str], migrations_dir: Path = MIGRATIONS_DIR) -> list[Path]:
    sql_files: list[Path] = sorted(migrations_dir.glob("*.sql"))
    return [f for f in sql_files if f.name not in applied]


def migrate(
    dry_run: bool = False,
    db_path: str | None = None,
    migrations_dir: Path = MIGRATIONS_DIR,
) -> list[str]:
    """Apply pending migrations; returns the filenames applied (or that would be)."""
    path: str = db_path or _get_db_path()
    parent: str = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    logger.info("Migrating SQLite database %s", path)
    conn: sqlite3.Connection = sqlite3.connect(path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

        _ensure_tracking_table(conn)
        pending: list[Path] = _get_pending(_get_applied(conn), migrations_dir)
        if not pending:
            logger.info("No pending migrations")
            return []

        for migration in pending:
            logger.info("%sApplying %s", "[DRY RUN] " if dry_run else "", migration.name)
            if dry_run:
                continue
            conn.executescript(migration.read_text())
            conn.execute(
                "INSERT INTO _migrations (filename, applied_at) VALUES (?, ?)",
                (migration.name, datetime.now(UTC).isoformat()),
            )
            conn.commit()
    finally:
        conn.close()
    return [m.name for m in pending]


def status(db_path: str | None = None) -> None:
    path: str = db_path or _get_db_path()
    if not os.path.exists(path):
        print(f"Database not found: {path}")
        print("No migrations applied yet.")
        return

    conn: sqlite3.Connection = sqlite3.connect(path)
    try:
        _ensure_tracking_table(conn)
        applied: set[str] = _get_applied(conn)
        pending: list[Path] = _get_pending(applied)
    finally:
        conn.close()

    print(f"Database: {path}")
    print(f"Applied:  {len(applied)}")
    for name in sorted(applied):
        print(f"  [x] {name}")
    print(f"Pending:  {len(pending)}")
    for p in pending:
        print(f"  [ ] {p.name}")


def main(argv: list[str] | None = None) -> None:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(description="SQL migration runner")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be applied")
    parser.add_argument("--status", action="store_true", help="Show migration status")
    parser.add_argument("--db", default=None, help="SQLite file (default: DB_SQLITE_PATH)")
    args: argparse.Namespace = parser.parse_args(argv)

    if args.status:
        status(args.db)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
        migrate(dry_run=args.dry_run, db_path=args.db)


if __name__ == "__main__":
    main()
