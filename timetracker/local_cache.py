from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from . import db
from .errors import StorageError
from .models import Project, Session, TimerType

if TYPE_CHECKING:
    from .snapshot import Snapshot

logger = logging.getLogger(__name__)


def _project_from_row(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        color=row["color"],
        total_time_spent=int(row["total_time_spent"] or 0),
        goal_hours=row["goal_hours"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _session_from_row(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        project_id=row["project_id"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        duration=int(row["duration"] or 0),
        type=TimerType(row["type"]),
        initial_duration=row["initial_duration"],
    )


class LocalCache:
    """Device-local mirror of projects and sessions.

    Every public method raises StorageError instead of sqlite3 errors so
    callers can degrade to in-memory operation.
    """

    def __init__(self, db_path: Path | str = db.DEFAULT_DB_PATH, *, check_same_thread: bool = False):
        self.db_path = Path(db_path).expanduser()
        try:
            self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
            db.initialize_schema(self.conn)
        except sqlite3.Error as exc:
            raise StorageError(f"local cache unavailable: {exc}") from exc

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise StorageError(f"local cache {action} failed: {exc}") from exc

    @property
    def schema_version(self) -> int:
        with self._guard("version"):
            return db.schema_version(self.conn)

    def is_empty(self) -> bool:
        with self._guard("read"):
            row = self.conn.execute("SELECT COUNT(*) AS n FROM projects").fetchone()
        return int(row["n"]) == 0

    def get_all_projects(self) -> list[Project]:
        with self._guard("read"):
            rows = self.conn.execute("SELECT * FROM projects ORDER BY created_at, id").fetchall()
        return [_project_from_row(r) for r in rows]

    def get_project(self, project_id: str) -> Project | None:
        with self._guard("read"):
            row = self.conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return _project_from_row(row) if row else None

    def _upsert_project(self, project: Project) -> None:
        self.conn.execute(
            """
            INSERT INTO projects(
                id, name, description, color, total_time_spent, goal_hours, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                color = excluded.color,
                total_time_spent = excluded.total_time_spent,
                goal_hours = excluded.goal_hours,
                created_at = excluded.created_at,
                updated_at = excluded.updated_at
            """,
            (
                project.id,
                project.name,
                project.description,
                project.color,
                project.total_time_spent,
                project.goal_hours,
                project.created_at,
                project.updated_at,
            ),
        )

    def put_project(self, project: Project) -> str:
        with self._guard("write"):
            self._upsert_project(project)
            self.conn.commit()
        return project.id

    def delete_project(self, project_id: str) -> None:
        with self._guard("delete"):
            self.conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            self.conn.commit()

    def get_all_sessions(self) -> list[Session]:
        with self._guard("read"):
            rows = self.conn.execute("SELECT * FROM sessions ORDER BY start_time, id").fetchall()
        return [_session_from_row(r) for r in rows]

    def get_sessions_by_project(self, project_id: str) -> list[Session]:
        with self._guard("read"):
            rows = self.conn.execute(
                "SELECT * FROM sessions WHERE project_id = ? ORDER BY start_time, id",
                (project_id,),
            ).fetchall()
        return [_session_from_row(r) for r in rows]

    def get_session(self, session_id: str) -> Session | None:
        with self._guard("read"):
            row = self.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return _session_from_row(row) if row else None

    def _upsert_session(self, session: Session) -> None:
        self.conn.execute(
            """
            INSERT INTO sessions(
                id, project_id, start_time, end_time, duration, type, initial_duration
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                project_id = excluded.project_id,
                start_time = excluded.start_time,
                end_time = excluded.end_time,
                duration = excluded.duration,
                type = excluded.type,
                initial_duration = excluded.initial_duration
            """,
            (
                session.id,
                session.project_id,
                session.start_time,
                session.end_time,
                session.duration,
                session.type.value,
                session.initial_duration,
            ),
        )

    def put_session(self, session: Session) -> str:
        with self._guard("write"):
            self._upsert_session(session)
            self.conn.commit()
        return session.id

    def delete_session(self, session_id: str) -> None:
        with self._guard("delete"):
            self.conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            self.conn.commit()

    def replace_all(self, projects: Iterable[Project], sessions: Iterable[Session]) -> dict[str, int]:
        """Make the cache an exact mirror of the given records in one transaction."""
        stats = {"projects": 0, "sessions": 0, "orphans": 0}
        project_list = list(projects)
        known = {p.id for p in project_list}
        with self._guard("mirror"):
            self.conn.execute("DELETE FROM sessions")
            self.conn.execute("DELETE FROM projects")
            for project in project_list:
                self._upsert_project(project)
                stats["projects"] += 1
            for session in sessions:
                if session.project_id not in known:
                    stats["orphans"] += 1
                    continue
                self._upsert_session(session)
                stats["sessions"] += 1
            self.conn.commit()
        if stats["orphans"]:
            logger.warning("local cache mirror skipped %s orphan sessions", stats["orphans"])
        return stats

    def import_from_snapshot(self, snapshot: Snapshot | None) -> bool:
        """Seed an empty cache from a backup snapshot. Returns True when rows were imported."""
        if snapshot is None or not self.is_empty():
            return False
        if not snapshot.projects:
            return False
        stats = self.replace_all(snapshot.projects, snapshot.completed_sessions)
        logger.info(
            "imported %s projects and %s sessions from backup",
            stats["projects"],
            stats["sessions"],
        )
        return True

    def export_records(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "projects": [p.to_dict() for p in self.get_all_projects()],
            "sessions": [s.to_dict() for s in self.get_all_sessions()],
        }

    def close(self) -> None:
        self.conn.close()
