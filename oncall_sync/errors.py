from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    pass


class AuthenticationFailure(SyncError):
    pass


class SourceFetchFailure(SyncError):
    pass


class CalendarFetchFailure(SyncError):
    pass


class MutationFailure(SyncError):
    pass


class MalformedEntry(SyncError):
    """A schedule record that cannot be turned into a valid on-call shift."""

    def __init__(self, message: str, record: Optional[dict] = None):
        super().__init__(message)
        self.record = record
