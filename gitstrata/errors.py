"""
Error taxonomy for git-strata.

Source errors are fatal to opening or walking a repository, store errors abort
the current batch or run, and query errors are raised before any store access.
"""


class StrataError(Exception):
    """Base class for every error raised by git-strata"""


class SourceError(StrataError):
    """Git history could not be read"""


class NotARepositoryError(SourceError):
    """Location is not a git repository, or git itself is unavailable"""


class LogParseError(SourceError):
    """A commit metadata block in the log stream was truncated or unreadable"""


class StoreError(StrataError):
    """Schema creation, batch insert or cursor update failed"""


class InvalidQueryError(StrataError, ValueError):
    """Query parameters were rejected"""


class NoRepositoryOpenError(StrataError):
    """A query was issued before a repository was opened"""
