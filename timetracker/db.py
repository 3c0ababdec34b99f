from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path

DEFAULT_DB_PATH = Path.home() / ".timetracker" / "cache.sqlite"

SCHEMA_VERSION = 2

logger = logging.getLogger(__name__)


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def _migrate_v1(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT DEFAULT '',
            color TEXT NOT NULL,
            total_time_spent INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_projects_name ON projects(name);

        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            start_time TEXT NOT NULL,
            end_time TEXT,
            duration INTEGER NOT NULL DEFAULT 0,
            type TEXT NOT NULL,
            initial_duration INTEGER
        );
        CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_id);
        """
    )


def _migrate_v2(conn: sqlite3.Connection) -> None:
    # goal_hours is optional; older rows simply read back as NULL.
    _ensure_column(conn, "projects", "goal_hours", "REAL")


MIGRATIONS: dict[int, Callable[[sqlite3.Connection], None]] = {
    1: _migrate_v1,
    2: _migrate_v2,
}


def initialize_schema(conn: sqlite3.Connection) -> None:
    current = schema_version(conn)
    for version in sorted(MIGRATIONS):
        if version <= current:
            continue
        logger.info("migrating local cache from version %s to %s", current, version)
        MIGRATIONS[version](conn)
        conn.execute(f"PRAGMA user_version = {version}")
        current = version
    conn.commit()


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
