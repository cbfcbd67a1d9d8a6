"""Exceptions raised while syncing calendar sources."""


class CalendarSyncError(Exception):
    """Base class for calendar sync failures."""


class SourceUnreachableError(CalendarSyncError):
    """Every direct and proxied fetch attempt failed."""


class MalformedSourceError(CalendarSyncError):
    """Source content or URL is not in the expected format."""


class StorageUnavailableError(CalendarSyncError):
    """A persistent store could not be read or written."""


class CalendarValidationError(CalendarSyncError):
    """A calendar descriptor failed validation."""
