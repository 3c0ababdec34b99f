from __future__ import annotations


class TrackerError(Exception):
    """Base class for everything the tracker raises on purpose."""


class ConnectivityError(TrackerError):
    """The remote service could not be reached (timeout, refused, reset).

    Recoverable: callers fall back to local storage.
    """


class ValidationError(TrackerError):
    """The operation is logically invalid and must be shown to the user."""


class ApiError(ValidationError):
    def __init__(self, message: str, *, status: int) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(ApiError):
    def __init__(self, message: str = "not found") -> None:
        super().__init__(message, status=404)


class NoActiveProjectError(ValidationError):
    def __init__(self, message: str = "select a project first") -> None:
        super().__init__(message)


class StorageError(TrackerError):
    """A local store (cache or slot) failed to read or write."""


class CorruptStateError(StorageError):
    """A persisted blob exists but cannot be parsed."""
