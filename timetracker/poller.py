from __future__ import annotations

import logging

from .api import RemoteService
from .engine import ReconciliationEngine
from .errors import ConnectivityError, ValidationError
from .models import Session
from .providers import ServerStatus
from .scheduler import Scheduler, TaskHandle

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S = 15


class ActiveSessionPoller:
    """Picks up sessions other clients started against the same server."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        remote: RemoteService | None = None,
        status: ServerStatus | None = None,
    ):
        self.engine = engine
        self.remote = remote or engine.remote
        self.status = status or engine.status
        self._handle: TaskHandle | None = None

    @property
    def running(self) -> bool:
        return self._handle is not None and not self._handle.cancelled

    def poll_once(self) -> list[Session]:
        try:
            sessions = self.remote.list_active_sessions()
        except ConnectivityError as exc:
            self.status.mark_unreachable(str(exc))
            logger.debug("active session poll skipped: %s", exc)
            return []
        except ValidationError as exc:
            self.status.mark_reachable()
            logger.warning("active session poll rejected", exc_info=exc)
            return []
        self.status.mark_reachable()
        adopted = self.engine.adopt_sessions(sessions)
        if adopted:
            logger.info("adopted %s active sessions from other clients", len(adopted))
        return adopted

    def start(self, scheduler: Scheduler, interval_s: float = DEFAULT_POLL_INTERVAL_S) -> None:
        if self.running:
            return
        self._handle = scheduler.call_every(interval_s, self.poll_once, name="timetracker-poller")

    def stop(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()
