"""
Resumable, batched indexing of a commit source into an analytics store.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .models import Commit
from .reporting import MemoryMonitor, ProgressReporter
from .source import CommitSource
from .store import AnalyticsStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500
MEMORY_CHECK_INTERVAL = 5000


@dataclass
class IndexResult:
    """Outcome of one indexing run"""

    commits_indexed: int = 0
    batches_written: int = 0
    previous_cursor: str = ""
    head: str = ""
    up_to_date: bool = False
    elapsed_seconds: float = 0.0
    memory_peak_mb: float = 0.0
    skipped_stat_lines: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commits_indexed": self.commits_indexed,
            "batches_written": self.batches_written,
            "previous_cursor": self.previous_cursor,
            "head": self.head,
            "up_to_date": self.up_to_date,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "memory_peak_mb": round(self.memory_peak_mb, 2),
            "skipped_stat_lines": self.skipped_stat_lines,
        }


class Indexer:
    """
    Copy every commit newer than the store's cursor into the store.

    Commits are written in batches of batch_size while the stream is still
    being read. The cursor moves to the head hash only after the last batch
    is written, so an interrupted run resumes from the previous cursor and
    re-inserts are ignored by the store.
    """

    def __init__(
        self,
        source: CommitSource,
        store: AnalyticsStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        reporter: Optional[ProgressReporter] = None,
        memory_monitor: Optional[MemoryMonitor] = None,
    ):
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size!r}")
        self.source = source
        self.store = store
        self.batch_size = batch_size
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.memory_monitor = memory_monitor

    def run(self) -> IndexResult:
        start_time = time.time()
        cursor = self.store.get_cursor()
        head = self.source.head_hash()
        result = IndexResult(previous_cursor=cursor, head=head)

        if cursor == head:
            logger.debug("Index is up to date at %s", head[:12])
            result.up_to_date = True
            result.elapsed_seconds = time.time() - start_time
            return result

        scope = f"resuming after {cursor[:7]}" if cursor else "full history"
        self.reporter.stage_start("Indexing", f"{self.source.repo_name}: {scope}")
        progress_bar = self.reporter.create_progress_bar(desc="Indexing commits")
        batch: List[Commit] = []

        try:
            with self.source.log(cursor, until=head) as stream:
                for commit in stream:
                    batch.append(commit)
                    result.commits_indexed += 1
                    if progress_bar is not None:
                        progress_bar.update(1)

                    if self.memory_monitor and result.commits_indexed % MEMORY_CHECK_INTERVAL == 0:
                        memory_mb = self.memory_monitor.check_memory()
                        if self.reporter.verbose:
                            self.reporter.info(f"Memory usage: {memory_mb:.1f} MB")

                    if len(batch) >= self.batch_size:
                        self._flush(batch, result)
                        batch = []

                if batch:
                    self._flush(batch, result)
                result.skipped_stat_lines = stream.skipped_lines
        finally:
            if progress_bar is not None:
                progress_bar.close()

        if result.skipped_stat_lines:
            self.reporter.warning(
                f"Skipped {result.skipped_stat_lines} malformed stat lines"
            )

        self.store.set_cursor(head)

        result.elapsed_seconds = time.time() - start_time
        if self.memory_monitor:
            result.memory_peak_mb = self.memory_monitor.get_peak()

        logger.info(
            "Indexed %d commits in %d batches (cursor %s -> %s)",
            result.commits_indexed,
            result.batches_written,
            cursor[:12] or "<none>",
            head[:12],
        )
        self.reporter.stage_complete(
            "Indexing",
            {
                "Commits indexed": f"{result.commits_indexed:,}",
                "Batches written": result.batches_written,
            },
        )
        return result

    def _flush(self, batch: List[Commit], result: IndexResult):
        self.store.insert_batch(batch)
        result.batches_written += 1
        logger.info("Wrote batch %d (%d commits)", result.batches_written, len(batch))
