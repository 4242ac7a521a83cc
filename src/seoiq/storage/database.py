"""SQLite database initialization and session management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from sqlmodel import Session, SQLModel, create_engine

# Import models so SQLModel registers them
from seoiq.storage import models as _models  # noqa: F401

_engines: dict[str, object] = {}

# Columns added after the first release of each table
_MIGRATIONS = [
    ("siterecord", "autopilot_pipeline_article_id", "VARCHAR DEFAULT NULL"),
    ("siterecord", "autopilot_run_started_at", "DATETIME DEFAULT NULL"),
    ("scheduledrun", "error", "VARCHAR DEFAULT NULL"),
]


def _migrate_if_needed(db_path: Path) -> None:
    """Add any missing columns to existing tables (lightweight migration).

    Databases created before the in-flight lease and the per-run error
    column existed are brought up to date in place. Tables that do not
    exist yet are left to ``create_all``.
    """
    if not db_path.exists():
        return

    conn = sqlite3.connect(str(db_path))
    try:
        for table, col, col_type in _MIGRATIONS:
            cursor = conn.execute(f"PRAGMA table_info({table})")
            existing_cols = {row[1] for row in cursor.fetchall()}
            if existing_cols and col not in existing_cols:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {col} {col_type}")

        conn.commit()
    finally:
        conn.close()


def get_engine(db_path: Path):
    """Get or create a SQLAlchemy engine for the given database path."""
    key = str(db_path)
    if key not in _engines:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _migrate_if_needed(db_path)
        engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            connect_args={"timeout": 15},
        )
        SQLModel.metadata.create_all(engine)
        _engines[key] = engine
    return _engines[key]


def get_session(db_path: Path) -> Session:
    """Create a new database session."""
    engine = get_engine(db_path)
    return Session(engine, expire_on_commit=False)
