from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from .models import AppState, Project, Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AddProject:
    project: Project


@dataclass(frozen=True)
class UpdateProject:
    project: Project


@dataclass(frozen=True)
class DeleteProject:
    project_id: str


@dataclass(frozen=True)
class SetActiveProject:
    project_id: str | None


@dataclass(frozen=True)
class StartTimer:
    session: Session


@dataclass(frozen=True)
class StopTimer:
    session_id: str


@dataclass(frozen=True)
class CompleteTimer:
    session: Session
    at: str


@dataclass(frozen=True)
class UpdateSession:
    session: Session
    at: str


@dataclass(frozen=True)
class DeleteSession:
    session_id: str
    at: str


@dataclass(frozen=True)
class SetProjects:
    projects: tuple[Project, ...]


@dataclass(frozen=True)
class SetCompletedSessions:
    sessions: tuple[Session, ...]


@dataclass(frozen=True)
class LoadState:
    state: AppState


Action = (
    AddProject
    | UpdateProject
    | DeleteProject
    | SetActiveProject
    | StartTimer
    | StopTimer
    | CompleteTimer
    | UpdateSession
    | DeleteSession
    | SetProjects
    | SetCompletedSessions
    | LoadState
)

Listener = Callable[[AppState, AppState], None]


def _without(sessions: Iterable[Session], session_id: str) -> tuple[Session, ...]:
    return tuple(s for s in sessions if s.id != session_id)


def _upsert(sessions: tuple[Session, ...], session: Session) -> tuple[Session, ...]:
    if any(s.id == session.id for s in sessions):
        return tuple(session if s.id == session.id else s for s in sessions)
    return (*sessions, session)


def _find(sessions: Iterable[Session], session_id: str) -> Session | None:
    for session in sessions:
        if session.id == session_id:
            return session
    return None


def _adjust_total(
    projects: tuple[Project, ...], project_id: str, delta: int, at: str
) -> tuple[Project, ...]:
    if not delta:
        return projects
    return tuple(
        p.with_total(p.total_time_spent + delta, updated_at=at) if p.id == project_id else p
        for p in projects
    )


def _apply_session_change(
    state: AppState, old: Session | None, new: Session | None, at: str
) -> AppState:
    """Swap one completed session for another and move its duration between project totals."""
    projects = state.projects
    completed = state.completed_sessions
    if old is not None:
        projects = _adjust_total(projects, old.project_id, -old.duration, at)
    if new is not None:
        projects = _adjust_total(projects, new.project_id, new.duration, at)
        completed = _upsert(completed, new)
    elif old is not None:
        completed = _without(completed, old.id)
    return replace(state, projects=projects, completed_sessions=completed)


def reduce(state: AppState, action: Action) -> AppState:
    """Pure transition function; the only place AppState changes shape."""
    if isinstance(action, AddProject):
        if state.project(action.project.id) is not None:
            return reduce(state, UpdateProject(action.project))
        return replace(state, projects=(*state.projects, action.project))
    if isinstance(action, UpdateProject):
        return replace(
            state,
            projects=tuple(
                action.project if p.id == action.project.id else p for p in state.projects
            ),
        )
    if isinstance(action, DeleteProject):
        pid = action.project_id
        return replace(
            state,
            projects=tuple(p for p in state.projects if p.id != pid),
            completed_sessions=tuple(s for s in state.completed_sessions if s.project_id != pid),
            active_sessions=tuple(s for s in state.active_sessions if s.project_id != pid),
            active_project=None if state.active_project == pid else state.active_project,
        )
    if isinstance(action, SetActiveProject):
        return replace(state, active_project=action.project_id)
    if isinstance(action, StartTimer):
        # Keyed by id so replaying a restore or a heartbeat never duplicates.
        return replace(state, active_sessions=_upsert(state.active_sessions, action.session))
    if isinstance(action, StopTimer):
        return replace(state, active_sessions=_without(state.active_sessions, action.session_id))
    if isinstance(action, CompleteTimer):
        session = action.session
        old = _find(state.completed_sessions, session.id)
        state = replace(state, active_sessions=_without(state.active_sessions, session.id))
        return _apply_session_change(state, old, session, action.at)
    if isinstance(action, UpdateSession):
        old = _find(state.completed_sessions, action.session.id)
        return _apply_session_change(state, old, action.session, action.at)
    if isinstance(action, DeleteSession):
        old = _find(state.completed_sessions, action.session_id)
        if old is None:
            return state
        return _apply_session_change(state, old, None, action.at)
    if isinstance(action, SetProjects):
        return replace(state, projects=tuple(action.projects))
    if isinstance(action, SetCompletedSessions):
        return replace(state, completed_sessions=tuple(action.sessions))
    if isinstance(action, LoadState):
        return action.state
    raise TypeError(f"unknown action: {action!r}")


class StateStore:
    """Owns the in-memory AppState. All mutation goes through dispatch()."""

    def __init__(self, initial: AppState | None = None):
        self._state = initial or AppState()
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self._muted = 0

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @contextmanager
    def muted(self) -> Iterator[None]:
        """Apply actions without notifying listeners (used while bootstrapping)."""
        with self._lock:
            self._muted += 1
            try:
                yield
            finally:
                self._muted -= 1

    def dispatch(self, action: Action) -> AppState:
        with self._lock:
            old = self._state
            new = reduce(old, action)
            self._state = new
            if new is old or self._muted:
                return new
            for listener in list(self._listeners):
                try:
                    listener(old, new)
                except Exception as exc:
                    logger.exception("state listener failed", exc_info=exc)
            return new
