from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .api import RemoteService
from .config import TimetrackerConfig, load_config
from .engine import ReconciliationEngine
from .errors import StorageError
from .local_cache import LocalCache
from .models import TimerType
from .poller import ActiveSessionPoller
from .providers import ServerStatus
from .scheduler import Scheduler, TaskHandle, ThreadScheduler
from .settings import SettingsService
from .slots import SlotStore
from .snapshot import SnapshotStore
from .timer import TimerController

logger = logging.getLogger(__name__)


def open_cache(cfg: TimetrackerConfig) -> LocalCache | None:
    try:
        return LocalCache(cfg.resolved_db_path())
    except StorageError as exc:
        logger.warning("local cache unavailable, continuing without it", exc_info=exc)
        return None


@dataclass
class TrackerRuntime:
    """Wires the services together and owns the recurring tasks."""

    config: TimetrackerConfig
    engine: ReconciliationEngine
    settings: SettingsService
    poller: ActiveSessionPoller
    scheduler: Scheduler
    cache: LocalCache | None = None
    _tasks: list[TaskHandle] = field(default_factory=list, repr=False)

    @classmethod
    def from_config(
        cls,
        cfg: TimetrackerConfig | None = None,
        *,
        scheduler: Scheduler | None = None,
        remote: RemoteService | None = None,
        background_writes: bool = True,
    ) -> TrackerRuntime:
        cfg = cfg or load_config()
        slots = SlotStore(cfg.resolved_state_dir())
        snapshots = SnapshotStore(slots, history_limit=cfg.backup_history_limit)
        cache = open_cache(cfg)
        remote = remote or RemoteService(cfg.api_url, timeout_s=cfg.request_timeout_s)
        status = ServerStatus()
        engine = ReconciliationEngine(
            remote,
            snapshots=snapshots,
            slots=slots,
            cache=cache,
            status=status,
            background_writes=background_writes,
        )
        return cls(
            config=cfg,
            engine=engine,
            settings=SettingsService(remote, slots, status),
            poller=ActiveSessionPoller(engine, remote, status),
            scheduler=scheduler or ThreadScheduler(),
            cache=cache,
        )

    def start(self) -> None:
        self.engine.bootstrap()
        self._tasks.append(
            self.scheduler.call_every(
                self.config.backup_interval_s, self.engine.backup_now, name="timetracker-backup"
            )
        )
        if self.config.poll_enabled:
            self.poller.start(self.scheduler, self.config.poll_interval_s)

    def timer(
        self, timer_type: TimerType = TimerType.STOPWATCH, countdown_s: int | None = None
    ) -> TimerController:
        return TimerController(
            self.engine,
            self.scheduler,
            timer_type=timer_type,
            countdown_s=countdown_s,
            tick_interval_s=self.config.tick_interval_s,
            heartbeat_ticks=self.config.heartbeat_ticks,
        )

    def shutdown(self) -> None:
        self.poller.stop()
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        self.engine.flush_current_session()
        self.engine.close()
        if self.cache is not None:
            self.cache.close()

    def __enter__(self) -> TrackerRuntime:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
