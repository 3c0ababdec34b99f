from __future__ import annotations

import datetime as dt
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .api import RemoteService
from .errors import ConnectivityError, StorageError
from .local_cache import LocalCache
from .models import AppState
from .snapshot import SnapshotStore

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    PROJECTS = "projects"
    SESSIONS = "sessions"


class ServerStatus:
    """Passive connected/disconnected indicator shared by engine and poller."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reachable: bool | None = None
        self.last_checked: str | None = None
        self.last_error: str | None = None

    def _touch(self) -> None:
        self.last_checked = dt.datetime.now(dt.UTC).isoformat()

    def mark_reachable(self) -> None:
        with self._lock:
            if self.reachable is False:
                logger.info("server connection restored")
            self.reachable = True
            self.last_error = None
            self._touch()

    def mark_unreachable(self, error: str) -> None:
        with self._lock:
            if self.reachable is not False:
                logger.warning("server disconnected: %s", error)
            self.reachable = False
            self.last_error = error
            self._touch()

    @property
    def label(self) -> str:
        if self.reachable is None:
            return "checking"
        return "connected" if self.reachable else "disconnected"


class Provider(Protocol):
    name: str
    writable: bool

    def is_available(self) -> bool: ...

    def read(self, kind: RecordKind) -> list[Any] | None: ...

    def write(self, state: AppState) -> None: ...


class RemoteProvider:
    name = "remote"
    writable = False

    def __init__(self, remote: RemoteService, status: ServerStatus):
        self.remote = remote
        self.status = status

    def is_available(self) -> bool:
        return True

    def read(self, kind: RecordKind) -> list[Any] | None:
        try:
            if kind is RecordKind.PROJECTS:
                records: list[Any] = self.remote.list_projects()
            else:
                records = [s for s in self.remote.list_sessions() if not s.is_active]
        except ConnectivityError as exc:
            self.status.mark_unreachable(str(exc))
            raise
        self.status.mark_reachable()
        return records

    def write(self, state: AppState) -> None:
        raise NotImplementedError("remote writes are per mutation")


class SnapshotProvider:
    name = "snapshot"
    writable = True

    def __init__(self, snapshots: SnapshotStore):
        self.snapshots = snapshots

    def is_available(self) -> bool:
        return True

    def read(self, kind: RecordKind) -> list[Any] | None:
        snapshot = self.snapshots.read_latest()
        if snapshot is None:
            return None
        if kind is RecordKind.PROJECTS:
            return list(snapshot.projects)
        return list(snapshot.completed_sessions)

    def write(self, state: AppState) -> None:
        self.snapshots.write(state)


class LocalCacheProvider:
    name = "local_cache"
    writable = True

    def __init__(self, cache: LocalCache | None):
        self.cache = cache

    def is_available(self) -> bool:
        return self.cache is not None

    def read(self, kind: RecordKind) -> list[Any] | None:
        if self.cache is None or self.cache.is_empty():
            return None
        if kind is RecordKind.PROJECTS:
            return self.cache.get_all_projects()
        return [s for s in self.cache.get_all_sessions() if not s.is_active]

    def write(self, state: AppState) -> None:
        if self.cache is None:
            return
        self.cache.replace_all(state.projects, state.completed_sessions)


@dataclass(frozen=True)
class ChainRead:
    provider: str
    records: list[Any]


class ProviderChain:
    """Fixed-order fallback over named providers.

    read() returns the first provider that yields records; a provider
    that raises or has nothing is skipped. write() mirrors state into
    every writable provider and never raises for storage failures.
    """

    def __init__(self, providers: Sequence[Provider]):
        self.providers = list(providers)

    @property
    def names(self) -> list[str]:
        return [p.name for p in self.providers]

    def get(self, name: str) -> Provider | None:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    def read(self, kind: RecordKind) -> ChainRead | None:
        for provider in self.providers:
            if not provider.is_available():
                continue
            try:
                records = provider.read(kind)
            except Exception as exc:
                logger.warning(
                    "%s read of %s failed, trying next",
                    provider.name,
                    kind.value,
                    exc_info=exc,
                )
                continue
            if records is None:
                continue
            return ChainRead(provider=provider.name, records=records)
        return None

    def write(self, state: AppState) -> list[str]:
        written: list[str] = []
        for provider in self.providers:
            if not provider.writable or not provider.is_available():
                continue
            try:
                provider.write(state)
            except StorageError as exc:
                logger.warning("%s mirror failed", provider.name, exc_info=exc)
                continue
            written.append(provider.name)
        return written
