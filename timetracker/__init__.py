from __future__ import annotations

from .api import RemoteService
from .config import TimetrackerConfig, load_config
from .engine import ReconciliationEngine
from .errors import (
    ApiError,
    ConnectivityError,
    NoActiveProjectError,
    NotFoundError,
    StorageError,
    TrackerError,
    ValidationError,
)
from .models import AppState, Project, Session, TimerType
from .runtime import TrackerRuntime
from .timer import TimerController, TimerState

__all__ = [
    "ApiError",
    "AppState",
    "ConnectivityError",
    "NoActiveProjectError",
    "NotFoundError",
    "Project",
    "ReconciliationEngine",
    "RemoteService",
    "Session",
    "StorageError",
    "TimerController",
    "TimerState",
    "TimerType",
    "TimetrackerConfig",
    "TrackerError",
    "TrackerRuntime",
    "ValidationError",
    "load_config",
]
