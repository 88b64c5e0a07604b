"""
Exceptions raised across the package.

Validation and lookup errors are raised synchronously and nothing is
applied. Sync errors describe recoverable problems: the controller collects
SyncDegraded and SyncLost as warnings instead of raising them.
"""

from __future__ import annotations


class RacesyncError(Exception):
    """Base class for all package errors."""


class ValidationError(RacesyncError):
    """Bad input: unknown status, malformed slot key or document."""


class InvalidNameError(ValidationError):
    """Member name is empty after sanitizing or holds a forbidden character."""


class DuplicateNameError(ValidationError):
    """Member name is already on the roster."""


class NotFoundError(RacesyncError):
    """An update or sign-in referenced an unknown member or event."""


class RemoteStoreError(RacesyncError):
    """Transport failure talking to the remote store."""


class SyncError(RacesyncError):
    """Recoverable synchronization problem."""

    def __init__(self, message: str, doc_key: str | None = None) -> None:
        super().__init__(message)
        self.doc_key = doc_key


class SyncDegraded(SyncError):
    """A load fell back to the local cache."""


class SyncLost(SyncError):
    """A write-back failed after the change was applied locally."""


class RefreshFailed(SyncError):
    """Manual refresh failed; in-memory state was kept."""


class RefreshInProgress(SyncError):
    """A refresh was requested while another one was still running."""
