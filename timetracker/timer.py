from __future__ import annotations

import logging
import threading
from dataclasses import replace
from enum import Enum

from .engine import ReconciliationEngine
from .errors import NoActiveProjectError, ValidationError
from .models import Session, TimerType
from .scheduler import Scheduler, TaskHandle
from .utils import generate_id, now_iso

logger = logging.getLogger(__name__)


class TimerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class TimerController:
    """Drives one stopwatch or countdown for the active project.

    Every run segment (start or resume up to the next pause, reset or
    expiry) is recorded as its own session whose duration is the ticks
    counted in that segment. ``elapsed`` is the displayed counter and
    keeps counting across segments until reset.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        scheduler: Scheduler,
        *,
        timer_type: TimerType = TimerType.STOPWATCH,
        countdown_s: int | None = None,
        tick_interval_s: float = 1.0,
        heartbeat_ticks: int = 15,
    ):
        if timer_type is TimerType.COUNTDOWN and (countdown_s is None or countdown_s <= 0):
            raise ValidationError("countdown timers need a positive duration")
        self.engine = engine
        self.scheduler = scheduler
        self.timer_type = timer_type
        self.countdown_s = int(countdown_s or 0)
        self.tick_interval_s = tick_interval_s
        self.heartbeat_ticks = max(1, int(heartbeat_ticks))
        self.state = TimerState.IDLE
        self.elapsed = 0
        self._segment_ticks = 0
        self._session: Session | None = None
        self._handle: TaskHandle | None = None
        self._lock = threading.RLock()

    @property
    def remaining(self) -> int | None:
        if self.timer_type is not TimerType.COUNTDOWN:
            return None
        return max(0, self.countdown_s - self.elapsed)

    @property
    def session(self) -> Session | None:
        return self._session

    def start(self, project_id: str | None = None) -> Session:
        with self._lock:
            if self.state is TimerState.RUNNING and self._session is not None:
                return self._session
            if self.state is TimerState.PAUSED:
                return self.resume()
            self.elapsed = 0
            return self._begin_segment(project_id)

    def resume(self) -> Session:
        with self._lock:
            if self.state is not TimerState.PAUSED:
                raise ValidationError(f"cannot resume a timer that is {self.state.value}")
            return self._begin_segment(None)

    def attach(self, session: Session) -> None:
        """Continue ticking a session that was restored or adopted from another client."""
        with self._lock:
            if self.state is TimerState.RUNNING:
                raise ValidationError("timer is already running")
            if session.type is not self.timer_type:
                raise ValidationError(f"session {session.id} is a {session.type.value} timer")
            self._session = session
            self._segment_ticks = session.duration
            self.elapsed = session.duration
            if self.timer_type is TimerType.COUNTDOWN:
                self.countdown_s = int(session.initial_duration or self.countdown_s)
            self.state = TimerState.RUNNING
            self._handle = self.scheduler.call_every(
                self.tick_interval_s, self.tick, name="timetracker-timer"
            )

    def _begin_segment(self, project_id: str | None) -> Session:
        project_id = project_id or self.engine.state.active_project
        if not project_id or self.engine.state.project(project_id) is None:
            raise NoActiveProjectError()
        if self.engine.state.active_project != project_id:
            self.engine.set_active_project(project_id)
        session = Session(
            id=generate_id(),
            project_id=project_id,
            start_time=now_iso(),
            type=self.timer_type,
            initial_duration=self.remaining,
        )
        self.engine.start_timer(session)
        self._session = session
        self._segment_ticks = 0
        self.state = TimerState.RUNNING
        self._handle = self.scheduler.call_every(
            self.tick_interval_s, self.tick, name="timetracker-timer"
        )
        logger.debug("timer segment %s started for project %s", session.id, project_id)
        return session

    def pause(self) -> Session | None:
        return self._stop(TimerState.PAUSED)

    def reset(self) -> Session | None:
        completed = self._stop(TimerState.IDLE)
        with self._lock:
            self.elapsed = 0
        return completed

    def _stop(self, next_state: TimerState) -> Session | None:
        with self._lock:
            was_running = self.state is TimerState.RUNNING
            if was_running or next_state is TimerState.IDLE:
                self.state = next_state
            handle, self._handle = self._handle, None
            session, self._session = self._session, None
            ticks = self._segment_ticks
        if handle is not None:
            handle.cancel()
        if not was_running or session is None:
            return None
        return self.engine.complete_timer(
            session.completed(end_time=now_iso(), duration=ticks)
        )

    def tick(self) -> None:
        with self._lock:
            if self.state is not TimerState.RUNNING or self._session is None:
                return
            self._segment_ticks += 1
            self.elapsed += 1
            session = self._session
            ticks = self._segment_ticks
            expired = self.timer_type is TimerType.COUNTDOWN and self.remaining == 0
            if expired:
                self.state = TimerState.COMPLETED
                handle, self._handle = self._handle, None
                self._session = None
        if expired:
            if handle is not None:
                handle.cancel()
            duration = session.initial_duration if session.initial_duration is not None else ticks
            self.engine.complete_timer(session.completed(end_time=now_iso(), duration=duration))
            logger.info("countdown finished after %s seconds", duration)
            return
        if ticks % self.heartbeat_ticks == 0:
            updated = self.engine.heartbeat(session.id, ticks)
            if updated is None:
                # Dropped elsewhere (project deleted or session dismissed).
                self._abandon(session.id)
            else:
                with self._lock:
                    if self._session is not None and self._session.id == updated.id:
                        self._session = replace(self._session, duration=updated.duration)

    def _abandon(self, session_id: str) -> None:
        with self._lock:
            if self._session is None or self._session.id != session_id:
                return
            handle, self._handle = self._handle, None
            self._session = None
            self.state = TimerState.IDLE
            self.elapsed = 0
        if handle is not None:
            handle.cancel()
        logger.info("timer session %s no longer active, stopping", session_id)
