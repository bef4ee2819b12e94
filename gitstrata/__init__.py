"""
git-strata: commit history analytics.

Indexes a git repository's history into SQLite or DuckDB and answers
activity, churn, hotspot, contributor, coupling and ownership queries.
"""

from .errors import (
    InvalidQueryError,
    LogParseError,
    NoRepositoryOpenError,
    NotARepositoryError,
    SourceError,
    StoreError,
    StrataError,
)
from .indexer import Indexer, IndexResult
from .models import Commit, FileChange
from .session import AnalyticsSession, RepoInfo
from .source import open_source
from .store import open_store

VERSION = "0.3.0"

__all__ = [
    "VERSION",
    "AnalyticsSession",
    "Commit",
    "FileChange",
    "IndexResult",
    "Indexer",
    "InvalidQueryError",
    "LogParseError",
    "NoRepositoryOpenError",
    "NotARepositoryError",
    "RepoInfo",
    "SourceError",
    "StoreError",
    "StrataError",
    "open_source",
    "open_store",
]
