"""Commit facts extracted from a repository history."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class FileChange:
    """Per-file line counts for one commit. Binary files are recorded as 0/0."""

    path: str
    additions: int = 0
    deletions: int = 0

    @property
    def lines_changed(self) -> int:
        return self.additions + self.deletions


@dataclass(frozen=True)
class Commit:
    """
    Immutable commit fact.

    committed_at is the author date, timezone-aware. message holds the
    subject line only.
    """

    hash: str
    author_name: str
    author_email: str
    committed_at: datetime
    message: str = ""
    files: Tuple[FileChange, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "author_name": self.author_name,
            "author_email": self.author_email,
            "committed_at": format_timestamp(self.committed_at),
            "message": self.message,
            "files": [
                {"path": f.path, "additions": f.additions, "deletions": f.deletions}
                for f in self.files
            ],
        }


def format_timestamp(dt: datetime) -> str:
    """
    Render a datetime in the stored representation:
    local wall-clock time plus UTC offset, e.g. '2025-01-15 10:00:00+02:00'.
    Naive datetimes are taken as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0).isoformat(sep=" ")


def parse_timestamp(value: str) -> datetime:
    """Inverse of format_timestamp. Naive values are taken as UTC."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
