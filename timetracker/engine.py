from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from typing import Any

from .api import RemoteService
from .errors import (
    ConnectivityError,
    CorruptStateError,
    NotFoundError,
    StorageError,
    TrackerError,
    ValidationError,
)
from .local_cache import LocalCache
from .models import AppState, CurrentSession, Project, Session, validate_project
from .providers import (
    LocalCacheProvider,
    ProviderChain,
    RecordKind,
    RemoteProvider,
    ServerStatus,
    SnapshotProvider,
)
from .slots import SlotStore
from .snapshot import Snapshot, SnapshotStore
from .state import (
    AddProject,
    CompleteTimer,
    DeleteProject,
    DeleteSession,
    LoadState,
    SetActiveProject,
    SetCompletedSessions,
    SetProjects,
    StartTimer,
    StateStore,
    StopTimer,
    UpdateProject,
    UpdateSession,
)
from .utils import now_iso

logger = logging.getLogger(__name__)

CURRENT_SESSION_KEY = "current-session"


class ReconciliationEngine:
    """Single authority for state-changing operations.

    Writes go to the remote service first. When the server cannot be
    reached the change is still applied in memory and mirrored locally;
    when the server rejects the change it is not applied and the error
    propagates. In-memory state is the source for the snapshot store,
    the local cache and the current-session slot, which are refreshed by
    a state listener on every relevant change.
    """

    def __init__(
        self,
        remote: RemoteService,
        *,
        snapshots: SnapshotStore,
        slots: SlotStore,
        cache: LocalCache | None = None,
        store: StateStore | None = None,
        status: ServerStatus | None = None,
        background_writes: bool = True,
    ):
        self.remote = remote
        self.snapshots = snapshots
        self.slots = slots
        self.cache = cache
        self.store = store or StateStore()
        self.status = status or ServerStatus()
        self.chain = ProviderChain(
            [
                RemoteProvider(remote, self.status),
                SnapshotProvider(snapshots),
                LocalCacheProvider(cache),
            ]
        )
        self.bootstrapped = False
        self.sources: dict[str, str] = {}
        self._dismissed: set[str] = set()
        self._executor: ThreadPoolExecutor | None = None
        if background_writes:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="timetracker-remote"
            )
        self._unsubscribe = self.store.subscribe(self._on_state_change)

    @property
    def state(self) -> AppState:
        return self.store.state

    @property
    def server_reachable(self) -> bool:
        return bool(self.status.reachable)

    # Bootstrap

    def bootstrap(self) -> AppState:
        """Assemble state from the best available tier. Never raises."""
        with self.store.muted():
            try:
                self._seed_local_cache()
                projects = self._load(RecordKind.PROJECTS)
                self.store.dispatch(SetProjects(tuple(projects)))
                sessions = self._load(RecordKind.SESSIONS)
                self.store.dispatch(SetCompletedSessions(tuple(sessions)))
                self._restore_current_session()
            except Exception as exc:
                logger.exception("bootstrap failed, continuing with partial state", exc_info=exc)
        self.bootstrapped = True
        state = self.store.state
        if not state.is_empty():
            self.mirror(state)
        logger.info(
            "bootstrapped %s projects (%s), %s sessions (%s), server %s",
            len(state.projects),
            self.sources.get(RecordKind.PROJECTS.value, "none"),
            len(state.completed_sessions),
            self.sources.get(RecordKind.SESSIONS.value, "none"),
            self.status.label,
        )
        return state

    def _seed_local_cache(self) -> None:
        if self.cache is None:
            return
        try:
            if self.cache.is_empty():
                self.cache.import_from_snapshot(self.snapshots.read_latest())
        except StorageError as exc:
            logger.warning("local cache seed failed", exc_info=exc)

    def _load(self, kind: RecordKind) -> list[Any]:
        result = self.chain.read(kind)
        if result is None:
            self.sources[kind.value] = "none"
            logger.warning("no source produced %s, starting empty", kind.value)
            return []
        self.sources[kind.value] = result.provider
        return result.records

    def _restore_current_session(self) -> None:
        try:
            data = self.slots.read(CURRENT_SESSION_KEY)
            if data is not None and not isinstance(data, dict):
                raise CorruptStateError("current session slot must be an object")
            current = CurrentSession.from_dict(data) if data else CurrentSession()
        except (CorruptStateError, ValidationError) as exc:
            logger.warning("current session slot unreadable, resetting", exc_info=exc)
            current = CurrentSession()
            self._write_current_session(current)
        except StorageError as exc:
            logger.warning("current session slot unavailable", exc_info=exc)
            return
        if current.active_project:
            self.store.dispatch(SetActiveProject(current.active_project))
        for session in current.active_sessions:
            self.store.dispatch(StartTimer(session))

    # Local mirrors

    def _on_state_change(self, old: AppState, new: AppState) -> None:
        if old.active_project != new.active_project or old.active_sessions is not new.active_sessions:
            self._write_current_session(
                CurrentSession(active_project=new.active_project, active_sessions=new.active_sessions)
            )
        if old.projects is not new.projects or old.completed_sessions is not new.completed_sessions:
            self.mirror(new)

    def _write_current_session(self, current: CurrentSession) -> None:
        try:
            self.slots.write(CURRENT_SESSION_KEY, current.to_dict())
        except StorageError as exc:
            logger.warning("current session slot write failed", exc_info=exc)

    def mirror(self, state: AppState | None = None) -> list[str]:
        """Copy state into the snapshot store and local cache. Failures are logged only."""
        return self.chain.write(state or self.store.state)

    def backup_now(self) -> Snapshot | None:
        try:
            return self.snapshots.write(self.store.state)
        except StorageError as exc:
            logger.warning("backup failed", exc_info=exc)
            return None

    def flush_current_session(self) -> None:
        """Best-effort synchronous save before the process goes away."""
        state = self.store.state
        self._write_current_session(
            CurrentSession(active_project=state.active_project, active_sessions=state.active_sessions)
        )
        self.backup_now()

    def restore_from_backup(self, key: str | None = None) -> Snapshot:
        """Replace in-memory state with a backup snapshot (explicit recovery action)."""
        try:
            snapshot = self.snapshots.read(key) if key else self.snapshots.read_latest()
        except ValueError as exc:
            raise NotFoundError(f"invalid backup key: {key!r}") from exc
        if snapshot is None:
            raise NotFoundError(f"backup {key or 'latest'} not found")
        self.store.dispatch(LoadState(snapshot.to_state()))
        logger.info(
            "restored %s projects and %s sessions from backup taken %s",
            len(snapshot.projects),
            len(snapshot.completed_sessions),
            snapshot.last_backup,
        )
        return snapshot

    # Remote calls

    def _remote_write(self, op: str, call: Callable[[], object]) -> bool:
        """Run a remote mutation. False means unreachable; rejections propagate."""
        try:
            call()
        except ConnectivityError as exc:
            self.status.mark_unreachable(str(exc))
            logger.warning("%s: server unreachable, keeping change locally", op, exc_info=exc)
            return False
        except ValidationError as exc:
            self.status.mark_reachable()
            logger.warning("%s rejected: %s", op, exc)
            raise
        self.status.mark_reachable()
        return True

    def _submit(self, fn: Callable[[], Any]) -> Future[Any]:
        if self._executor is not None:
            try:
                return self._executor.submit(fn)
            except RuntimeError:
                # Executor already shut down; run inline rather than drop the write.
                pass
        future: Future[Any] = Future()
        future.set_result(fn())
        return future

    def _ordered_write(self, op: str, call: Callable[[], object]) -> bool:
        """Queue a remote mutation behind earlier ones and wait for its outcome."""
        return bool(self._submit(lambda: self._remote_write(op, call)).result())

    def _fire_and_forget(self, op: str, call: Callable[[], object]) -> None:
        def _run() -> None:
            try:
                self._remote_write(op, call)
            except TrackerError as exc:
                logger.warning("%s failed in background", op, exc_info=exc)

        self._submit(_run)

    # Projects

    def add_project(self, project: Project) -> Project:
        now = now_iso()
        created_at = project.created_at or now
        project = replace(
            project,
            total_time_spent=0,
            created_at=created_at,
            updated_at=max(project.updated_at or created_at, created_at),
        )
        validate_project(project)
        if self.store.state.project(project.id) is not None:
            raise ValidationError(f"project {project.id} already exists")
        self._ordered_write("add project", lambda: self.remote.create_project(project))
        self.store.dispatch(AddProject(project))
        return project

    def update_project(self, project: Project) -> Project:
        existing = self.store.state.project(project.id)
        if existing is None:
            raise NotFoundError(f"project {project.id} not found")
        # Totals and creation time are owned by the engine, not the caller.
        project = replace(
            project,
            total_time_spent=existing.total_time_spent,
            created_at=existing.created_at,
            updated_at=max(now_iso(), existing.created_at),
        )
        validate_project(project)
        self._ordered_write("update project", lambda: self._push_project(project))
        self.store.dispatch(UpdateProject(project))
        return project

    def _push_project(self, project: Project) -> None:
        try:
            self.remote.update_project(project)
        except NotFoundError:
            # Created while offline; the server has never seen it.
            self.remote.create_project(project)

    def delete_project(self, project_id: str) -> None:
        if self.store.state.project(project_id) is None:
            raise NotFoundError(f"project {project_id} not found")
        self._ordered_write("delete project", lambda: self._push_project_delete(project_id))
        self.store.dispatch(DeleteProject(project_id))

    def _push_project_delete(self, project_id: str) -> None:
        try:
            self.remote.delete_project(project_id)
        except NotFoundError:
            logger.info("project %s already absent on server", project_id)

    def set_active_project(self, project_id: str | None) -> None:
        if project_id is not None and self.store.state.project(project_id) is None:
            raise NotFoundError(f"project {project_id} not found")
        self.store.dispatch(SetActiveProject(project_id))

    # Timers and sessions

    def start_timer(self, session: Session) -> Session:
        if self.store.state.project(session.project_id) is None:
            raise NotFoundError(f"project {session.project_id} not found")
        if not session.is_active:
            raise ValidationError("cannot start a session that already ended")
        with self.store.lock:
            self._dismissed.discard(session.id)
            self.store.dispatch(StartTimer(session))
            self._fire_and_forget(
                "start session",
                lambda: self.remote.upsert_active_session(session, elapsed=session.duration),
            )
        return session

    def heartbeat(self, session_id: str, elapsed: int) -> Session | None:
        """Record elapsed time on a running session and re-announce it to the server."""
        # Queued under the store lock so an upsert can never trail the completion.
        with self.store.lock:
            current = next((s for s in self.store.state.active_sessions if s.id == session_id), None)
            if current is None:
                return None
            updated = replace(current, duration=max(0, int(elapsed)))
            self.store.dispatch(StartTimer(updated))
            self._fire_and_forget(
                "session heartbeat",
                lambda: self.remote.upsert_active_session(updated, elapsed=updated.duration),
            )
        return updated

    def stop_timer(self, session_id: str) -> None:
        """Drop an in-flight session without recording it."""
        self._dismissed.add(session_id)
        self.store.dispatch(StopTimer(session_id))

    def complete_timer(self, session: Session) -> Session:
        if session.is_active:
            session = session.completed(end_time=now_iso(), duration=session.duration)
        if self.store.state.project(session.project_id) is None:
            raise NotFoundError(f"project {session.project_id} not found")
        with self.store.lock:
            self._ordered_write("complete session", lambda: self._push_completion(session))
            self.store.dispatch(CompleteTimer(session, at=now_iso()))
        return session

    def _push_completion(self, session: Session) -> None:
        assert session.end_time is not None
        try:
            self.remote.complete_active_session(session.id, session.end_time, session.duration)
        except NotFoundError:
            # The start upsert never reached the server.
            self.remote.create_session(session)

    def update_session(self, session: Session) -> Session:
        existing = next(
            (s for s in self.store.state.completed_sessions if s.id == session.id), None
        )
        if existing is None:
            raise NotFoundError(f"session {session.id} not found")
        if session.is_active:
            raise ValidationError("completed sessions need an end time")
        if self.store.state.project(session.project_id) is None:
            raise NotFoundError(f"project {session.project_id} not found")
        if session.duration < 0:
            raise ValidationError("duration cannot be negative")
        with self.store.lock:
            self._ordered_write("update session", lambda: self._push_session(session))
            self.store.dispatch(UpdateSession(session, at=now_iso()))
        return session

    def _push_session(self, session: Session) -> None:
        try:
            self.remote.update_session(session)
        except NotFoundError:
            self.remote.create_session(session)

    def delete_session(self, session_id: str) -> None:
        if not any(s.id == session_id for s in self.store.state.completed_sessions):
            raise NotFoundError(f"session {session_id} not found")
        with self.store.lock:
            self._ordered_write("delete session", lambda: self._push_session_delete(session_id))
            self.store.dispatch(DeleteSession(session_id, at=now_iso()))

    def _push_session_delete(self, session_id: str) -> None:
        try:
            self.remote.delete_session(session_id)
        except NotFoundError:
            logger.info("session %s already absent on server", session_id)

    # Cross-client merge

    def known_session_ids(self) -> set[str]:
        state = self.store.state
        ids = {s.id for s in state.active_sessions}
        ids.update(s.id for s in state.completed_sessions)
        ids.update(self._dismissed)
        return ids

    def adopt_sessions(self, sessions: Iterable[Session]) -> list[Session]:
        """Merge sessions started by another client; returns the ones actually added."""
        adopted: list[Session] = []
        with self.store.lock:
            known = self.known_session_ids()
            for session in sessions:
                if session.id in known or not session.is_active:
                    continue
                self.store.dispatch(StartTimer(session))
                known.add(session.id)
                adopted.append(session)
            if self.store.state.active_project is None:
                state = self.store.state
                owner = next((s.project_id for s in adopted if state.project(s.project_id)), None)
                if owner is not None:
                    self.store.dispatch(SetActiveProject(owner))
        return adopted

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._unsubscribe()
