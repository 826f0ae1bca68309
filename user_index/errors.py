"""Exception hierarchy shared by the fetch, merge and index layers."""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for every failure raised by the sync engine."""


class DocumentNotFoundError(SyncError):
    """A record or indexed document does not exist."""

    def __init__(self, message: str, *, user_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_id = user_id


class DocumentMissingError(DocumentNotFoundError):
    """The index rejected an update because the target document is gone."""


class UpstreamUnavailableError(SyncError):
    """A collaborator timed out, was unreachable or answered with an unexpected status."""

    def __init__(self, service: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class IndexUnavailableError(UpstreamUnavailableError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__("elasticsearch", message, status_code=status_code)


class InvalidSyncRequestError(SyncError):
    """Caller input was rejected before any fetch ran."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class VersionConflictError(SyncError):
    """The indexed document changed between read and write."""

    def __init__(self, user_id: str, *, attempts: int = 1) -> None:
        super().__init__(f"Version conflict while updating user {user_id} after {attempts} attempt(s).")
        self.user_id = user_id
        self.attempts = attempts


class ConfigurationError(SyncError):
    """Fatal misconfiguration detected at startup."""


__all__ = [
    "ConfigurationError",
    "DocumentMissingError",
    "DocumentNotFoundError",
    "IndexUnavailableError",
    "InvalidSyncRequestError",
    "SyncError",
    "UpstreamUnavailableError",
    "VersionConflictError",
]
