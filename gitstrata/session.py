"""
Host-facing session: one open repository, its store, and the query views
over it with ISO date-string parameters.
"""

import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from . import queries
from .errors import NoRepositoryOpenError
from .indexer import DEFAULT_BATCH_SIZE, Indexer, IndexResult
from .reporting import MemoryMonitor, ProgressReporter
from .source import CommitSource, open_source
from .store import AnalyticsStore, default_db_path, open_store

logger = logging.getLogger(__name__)


@dataclass
class RepoInfo:
    """Summary card for the open repository"""

    name: str
    branch: str
    head_hash: str
    last_author: str = ""
    last_email: str = ""
    last_message: str = ""
    last_commit_age: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def add_to_git_exclude(git_dir: str, pattern: str) -> bool:
    """
    Append pattern to <git_dir>/info/exclude unless an identical line exists.
    Returns True when the file was changed.
    """
    info_dir = os.path.join(git_dir, "info")
    exclude_path = os.path.join(info_dir, "exclude")

    existing = ""
    if os.path.exists(exclude_path):
        with open(exclude_path, "r", encoding="utf-8") as f:
            existing = f.read()

    if pattern in (line.rstrip("\r") for line in existing.split("\n")):
        return False

    os.makedirs(info_dir, exist_ok=True)
    prefix = "\n" if existing and not existing.endswith("\n") else ""
    with open(exclude_path, "a", encoding="utf-8") as f:
        f.write(f"{prefix}{pattern}\n")
    return True


class AnalyticsSession:
    """
    Owns the open CommitSource and AnalyticsStore for one repository at a time.

    open_repository() indexes before returning; every query method raises
    NoRepositoryOpenError until a repository has been opened.
    """

    def __init__(
        self,
        source_backend: str = "native",
        store_backend: str = "sqlite",
        batch_size: int = DEFAULT_BATCH_SIZE,
        db_path: Optional[str] = None,
        reporter: Optional[ProgressReporter] = None,
        memory_limit_mb: Optional[float] = None,
    ):
        self.source_backend = source_backend
        self.store_backend = store_backend
        self.batch_size = batch_size
        self.db_path = db_path
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.memory_limit_mb = memory_limit_mb
        self.source: Optional[CommitSource] = None
        self.store: Optional[AnalyticsStore] = None

    def open_repository(self, path: str) -> IndexResult:
        """Open path, prepare its store, and bring the index up to date"""
        self.close()

        source = open_source(path, self.source_backend)
        db_path = self.db_path or default_db_path(source.path, self.store_backend)
        try:
            store = open_store(db_path, self.store_backend)
        except Exception:
            source.close()
            raise

        try:
            store.initialize()
            self._exclude_database(source, db_path)
        except Exception:
            store.close()
            source.close()
            raise

        self.source = source
        self.store = store

        indexer = Indexer(
            source,
            store,
            batch_size=self.batch_size,
            reporter=self.reporter,
            memory_monitor=MemoryMonitor(limit_mb=self.memory_limit_mb),
        )
        # On failure the repository stays open so committed batches remain queryable.
        return indexer.run()

    def _exclude_database(self, source: CommitSource, db_path: str):
        db_path = os.path.abspath(db_path)
        relative = os.path.relpath(db_path, source.path)
        if relative.startswith(os.pardir):
            return
        if add_to_git_exclude(source.git_dir, relative.replace(os.sep, "/")):
            logger.debug("Added %s to %s/info/exclude", relative, source.git_dir)

    def _require_store(self) -> AnalyticsStore:
        if self.store is None or self.source is None:
            raise NoRepositoryOpenError("No repository open")
        return self.store

    def close(self):
        if self.source is not None:
            self.source.close()
            self.source = None
        if self.store is not None:
            self.store.close()
            self.store = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # ------------------------------------------------------------------
    # Query views
    # ------------------------------------------------------------------

    def heatmap(self, from_date: str, to_date: str, author_email: str = "") -> List[queries.HeatmapDay]:
        store = self._require_store()
        return queries.heatmap(store, queries.DateRange.parse(from_date, to_date), author_email)

    def file_hotspots(
        self, from_date: str, to_date: str, exclude_globs: Optional[Iterable[str]] = None
    ) -> List[queries.FileHotspot]:
        store = self._require_store()
        rng = queries.DateRange.parse(from_date, to_date)
        return queries.file_hotspots(store, rng, exclude_globs)

    def temporal_hotspots(
        self,
        from_date: str,
        to_date: str,
        half_life_days: float,
        exclude_globs: Optional[Iterable[str]] = None,
    ) -> List[queries.TemporalHotspot]:
        store = self._require_store()
        rng = queries.DateRange.parse(from_date, to_date)
        return queries.temporal_hotspots(store, rng, half_life_days, exclude_globs)

    def contributors(
        self, from_date: str, to_date: str, exclude_globs: Optional[Iterable[str]] = None
    ) -> List[queries.Contributor]:
        store = self._require_store()
        rng = queries.DateRange.parse(from_date, to_date)
        return queries.contributors(store, rng, exclude_globs)

    def co_changes(
        self,
        from_date: str,
        to_date: str,
        min_count: int = 1,
        limit: int = 100,
        exclude_globs: Optional[Iterable[str]] = None,
    ) -> List[queries.CoChangePair]:
        store = self._require_store()
        rng = queries.DateRange.parse(from_date, to_date)
        return queries.co_changes(store, rng, min_count, limit, exclude_globs)

    def file_ownerships(
        self, from_date: str, to_date: str, exclude_globs: Optional[Iterable[str]] = None
    ) -> List[queries.FileOwnership]:
        store = self._require_store()
        rng = queries.DateRange.parse(from_date, to_date)
        return queries.file_ownerships(store, rng, exclude_globs)

    def dashboard_stats(self, from_date: str, to_date: str) -> queries.DashboardStats:
        store = self._require_store()
        return queries.dashboard_stats(store, queries.DateRange.parse(from_date, to_date))

    def commits_by_hour(self, from_date: str, to_date: str) -> List[queries.HourBucket]:
        store = self._require_store()
        return queries.commits_by_hour(store, queries.DateRange.parse(from_date, to_date))

    def repo_info(self, now: Optional[datetime] = None) -> RepoInfo:
        store = self._require_store()
        head = self.source.head_hash()
        info = RepoInfo(
            name=self.source.repo_name,
            branch=self.source.current_branch(),
            head_hash=head[:7],
        )

        latest = queries.latest_commit(store)
        if latest is not None:
            info.last_author = latest.author_name
            info.last_email = latest.author_email
            info.last_message = latest.message
            info.last_commit_age = queries.relative_time(latest.committed_at, now)
        return info
