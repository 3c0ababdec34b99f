from __future__ import annotations

import time
from collections.abc import Iterator
from dataclasses import replace
from pathlib import Path

import pytest

from timetracker.engine import ReconciliationEngine
from timetracker.errors import ApiError, ConnectivityError, NotFoundError
from timetracker.local_cache import LocalCache
from timetracker.models import Project, Session
from timetracker.slots import SlotStore
from timetracker.snapshot import SnapshotStore


class FakeRemote:
    """In-memory stand-in for the remote service.

    Keeps project totals in step with session writes the way the real
    server does. ``offline`` makes every call fail as unreachable and
    ``reject`` makes every call fail with a 400.
    """

    def __init__(self) -> None:
        self.projects: dict[str, Project] = {}
        self.sessions: dict[str, Session] = {}
        self.settings: dict[str, str] = {}
        self.elapsed: dict[str, int] = {}
        self.offline = False
        self.reject: str | None = None
        self.calls: list[str] = []

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if self.offline:
            raise ConnectivityError(f"{op}: connection refused")
        if self.reject:
            raise ApiError(self.reject, status=400)

    def _add_total(self, project_id: str, delta: int) -> None:
        project = self.projects.get(project_id)
        if project is not None:
            self.projects[project_id] = replace(
                project, total_time_spent=max(0, project.total_time_spent + delta)
            )

    def ping(self) -> bool:
        return not self.offline

    def list_projects(self) -> list[Project]:
        self._check("list_projects")
        return list(self.projects.values())

    def get_project(self, project_id: str) -> Project:
        self._check("get_project")
        if project_id not in self.projects:
            raise NotFoundError("project not found")
        return self.projects[project_id]

    def create_project(self, project: Project) -> str:
        self._check("create_project")
        self.projects[project.id] = project
        return project.id

    def update_project(self, project: Project) -> str:
        self._check("update_project")
        if project.id not in self.projects:
            raise NotFoundError("project not found")
        self.projects[project.id] = project
        return project.id

    def delete_project(self, project_id: str) -> None:
        self._check("delete_project")
        if self.projects.pop(project_id, None) is None:
            raise NotFoundError("project not found")
        for session_id in [s.id for s in self.sessions.values() if s.project_id == project_id]:
            del self.sessions[session_id]

    def list_sessions(self) -> list[Session]:
        self._check("list_sessions")
        return list(self.sessions.values())

    def list_sessions_by_project(self, project_id: str) -> list[Session]:
        self._check("list_sessions_by_project")
        return [s for s in self.sessions.values() if s.project_id == project_id]

    def get_session(self, session_id: str) -> Session:
        self._check("get_session")
        if session_id not in self.sessions:
            raise NotFoundError("session not found")
        return self.sessions[session_id]

    def create_session(self, session: Session) -> str:
        self._check("create_session")
        if session.project_id not in self.projects:
            raise ApiError("project does not exist", status=400)
        self.sessions[session.id] = session
        if not session.is_active:
            self._add_total(session.project_id, session.duration)
        return session.id

    def update_session(self, session: Session) -> str:
        self._check("update_session")
        old = self.sessions.get(session.id)
        if old is None:
            raise NotFoundError("session not found")
        self.sessions[session.id] = session
        self._add_total(old.project_id, -old.duration)
        self._add_total(session.project_id, session.duration)
        return session.id

    def delete_session(self, session_id: str) -> None:
        self._check("delete_session")
        old = self.sessions.pop(session_id, None)
        if old is None:
            raise NotFoundError("session not found")
        if not old.is_active:
            self._add_total(old.project_id, -old.duration)

    def list_active_sessions(self) -> list[Session]:
        self._check("list_active_sessions")
        return [s for s in self.sessions.values() if s.is_active]

    def upsert_active_session(self, session: Session, *, elapsed: int | None = None) -> str:
        self._check("upsert_active_session")
        if session.project_id not in self.projects:
            raise ApiError("project does not exist", status=400)
        self.sessions[session.id] = replace(session, end_time=None)
        if elapsed is not None:
            self.elapsed[session.id] = elapsed
        return session.id

    def complete_active_session(self, session_id: str, end_time: str, duration: int) -> str:
        self._check("complete_active_session")
        session = self.sessions.get(session_id)
        if session is None or not session.is_active:
            raise NotFoundError("active session not found")
        self.sessions[session_id] = session.completed(end_time=end_time, duration=duration)
        self._add_total(session.project_id, duration)
        return session_id

    def get_settings(self) -> dict[str, str]:
        self._check("get_settings")
        return dict(self.settings)

    def get_setting(self, key: str) -> str:
        self._check("get_setting")
        if key not in self.settings:
            raise NotFoundError("setting not found")
        return self.settings[key]

    def put_setting(self, key: str, value: str) -> None:
        self._check("put_setting")
        self.settings[key] = value


class SlowRemote(FakeRemote):
    """Delays active-session upserts so queued writes overlap with later calls."""

    def __init__(self, delay_s: float = 0.2) -> None:
        super().__init__()
        self.delay_s = delay_s

    def upsert_active_session(self, session: Session, *, elapsed: int | None = None) -> str:
        time.sleep(self.delay_s)
        return super().upsert_active_session(session, elapsed=elapsed)


def make_project(project_id: str = "p1", name: str = "Website", **kwargs) -> Project:
    defaults = {
        "color": "blue-500",
        "created_at": "2024-01-01T09:00:00+00:00",
        "updated_at": "2024-01-01T09:00:00+00:00",
    }
    defaults.update(kwargs)
    return Project(id=project_id, name=name, **defaults)


def make_session(
    session_id: str, project_id: str = "p1", duration: int = 60, **kwargs
) -> Session:
    defaults = {
        "start_time": "2024-01-02T10:00:00+00:00",
        "end_time": "2024-01-02T10:01:00+00:00",
    }
    defaults.update(kwargs)
    return Session(id=session_id, project_id=project_id, duration=duration, **defaults)


def build_engine(
    tmp_path: Path,
    remote: FakeRemote,
    *,
    name: str = "client",
    with_cache: bool = True,
    background_writes: bool = False,
) -> ReconciliationEngine:
    slots = SlotStore(tmp_path / name / "state")
    cache = LocalCache(tmp_path / name / "cache.sqlite") if with_cache else None
    return ReconciliationEngine(
        remote,  # type: ignore[arg-type]
        snapshots=SnapshotStore(slots),
        slots=slots,
        cache=cache,
        background_writes=background_writes,
    )


def close_engine(engine: ReconciliationEngine) -> None:
    engine.close()
    if engine.cache is not None:
        engine.cache.close()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def engine(tmp_path: Path, remote: FakeRemote) -> Iterator[ReconciliationEngine]:
    instance = build_engine(tmp_path, remote)
    try:
        yield instance
    finally:
        close_engine(instance)
