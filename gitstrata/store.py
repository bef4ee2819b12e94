"""
Durable storage for commit facts and the indexing cursor.

SQLite and DuckDB share one schema and the same INSERT OR IGNORE statements,
so either engine can back the indexer and the query layer.
"""

import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence, Tuple

import duckdb

from .errors import StoreError
from .models import Commit, format_timestamp

logger = logging.getLogger(__name__)

CURSOR_KEY = "last_indexed_commit"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS commits (
        hash         VARCHAR PRIMARY KEY,
        author_name  VARCHAR NOT NULL,
        author_email VARCHAR NOT NULL,
        committed_at VARCHAR NOT NULL,
        message      VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS file_stats (
        commit_hash VARCHAR NOT NULL,
        file_path   VARCHAR NOT NULL,
        additions   INTEGER NOT NULL,
        deletions   INTEGER NOT NULL,
        PRIMARY KEY (commit_hash, file_path)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS index_state (
        key   VARCHAR PRIMARY KEY,
        value VARCHAR NOT NULL
    )
    """,
)

INSERT_COMMIT_SQL = """
    INSERT OR IGNORE INTO commits (hash, author_name, author_email, committed_at, message)
    VALUES (?, ?, ?, ?, ?)
"""

INSERT_FILE_STAT_SQL = """
    INSERT OR IGNORE INTO file_stats (commit_hash, file_path, additions, deletions)
    VALUES (?, ?, ?, ?)
"""

GET_CURSOR_SQL = "SELECT value FROM index_state WHERE key = ?"

SET_CURSOR_SQL = "INSERT OR REPLACE INTO index_state (key, value) VALUES (?, ?)"


def commit_rows(commits: Sequence[Commit]) -> Tuple[List[tuple], List[tuple]]:
    """Flatten commits into parameter rows for the commits and file_stats tables"""
    commit_params = []
    file_params = []
    for c in commits:
        commit_params.append(
            (c.hash, c.author_name, c.author_email, format_timestamp(c.committed_at), c.message)
        )
        for f in c.files:
            file_params.append((c.hash, f.path, f.additions, f.deletions))
    return commit_params, file_params


class AnalyticsStore(ABC):
    """Persistence for Commit/FileChange facts and the single indexing cursor."""

    backend_name = ""
    default_filename = ""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path

    @abstractmethod
    def initialize(self):
        """Create the schema. Safe to call on an initialized store."""

    @abstractmethod
    def insert_batch(self, commits: Sequence[Commit]):
        """
        Insert commits and their file changes in one transaction.
        Rows already present are skipped.
        """

    @abstractmethod
    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        """Run a read query and return every row"""

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def get_cursor(self) -> str:
        """Hash of the last fully indexed commit, or '' if never indexed"""
        row = self.fetch_one(GET_CURSOR_SQL, (CURSOR_KEY,))
        return row[0] if row else ""

    @abstractmethod
    def set_cursor(self, commit_hash: str):
        pass

    @abstractmethod
    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class SQLiteStore(AnalyticsStore):
    """
    SQLite backend. File databases run in WAL mode so readers are not blocked
    by the indexer's write transactions.
    """

    backend_name = "sqlite"
    default_filename = ".git-strata.db"

    def __init__(self, db_path: str = ":memory:"):
        super().__init__(db_path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            if db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open SQLite database {db_path}: {e}") from e

    def initialize(self):
        with self._lock:
            try:
                with self._conn:
                    for statement in SCHEMA_STATEMENTS:
                        self._conn.execute(statement)
                    self._conn.execute(
                        "CREATE INDEX IF NOT EXISTS idx_commits_committed_at "
                        "ON commits (committed_at)"
                    )
            except sqlite3.Error as e:
                raise StoreError(f"Schema initialization failed: {e}") from e

    def insert_batch(self, commits: Sequence[Commit]):
        commit_params, file_params = commit_rows(commits)
        with self._lock:
            try:
                # The connection context manager commits, or rolls back on error.
                with self._conn:
                    self._conn.executemany(INSERT_COMMIT_SQL, commit_params)
                    self._conn.executemany(INSERT_FILE_STAT_SQL, file_params)
            except sqlite3.Error as e:
                raise StoreError(f"Batch insert of {len(commits)} commits failed: {e}") from e

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    def set_cursor(self, commit_hash: str):
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(SET_CURSOR_SQL, (CURSOR_KEY, commit_hash))
            except sqlite3.Error as e:
                raise StoreError(f"Failed to update cursor: {e}") from e

    def close(self):
        with self._lock:
            self._conn.close()


class DuckDBStore(AnalyticsStore):
    """DuckDB backend. Reads go through per-call cursors."""

    backend_name = "duckdb"
    default_filename = ".git-strata.duckdb"

    def __init__(self, db_path: str = ":memory:"):
        super().__init__(db_path)
        try:
            self._conn = duckdb.connect(db_path)
        except duckdb.Error as e:
            raise StoreError(f"Failed to open DuckDB database {db_path}: {e}") from e

    def initialize(self):
        try:
            for statement in SCHEMA_STATEMENTS:
                self._conn.execute(statement)
        except duckdb.Error as e:
            raise StoreError(f"Schema initialization failed: {e}") from e

    def insert_batch(self, commits: Sequence[Commit]):
        commit_params, file_params = commit_rows(commits)
        if not commit_params:
            return
        try:
            self._conn.begin()
            try:
                self._conn.executemany(INSERT_COMMIT_SQL, commit_params)
                if file_params:
                    self._conn.executemany(INSERT_FILE_STAT_SQL, file_params)
            except duckdb.Error:
                self._conn.rollback()
                raise
            self._conn.commit()
        except duckdb.Error as e:
            raise StoreError(f"Batch insert of {len(commits)} commits failed: {e}") from e

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        cursor = self._conn.cursor()
        try:
            return cursor.execute(sql, list(params)).fetchall()
        finally:
            cursor.close()

    def set_cursor(self, commit_hash: str):
        try:
            self._conn.execute(SET_CURSOR_SQL, [CURSOR_KEY, commit_hash])
        except duckdb.Error as e:
            raise StoreError(f"Failed to update cursor: {e}") from e

    def close(self):
        self._conn.close()


STORE_BACKENDS = {
    SQLiteStore.backend_name: SQLiteStore,
    DuckDBStore.backend_name: DuckDBStore,
}


def open_store(db_path: str, backend: str = "sqlite") -> AnalyticsStore:
    """Open (or create) a store with the named engine"""
    try:
        store_cls = STORE_BACKENDS[backend]
    except KeyError:
        raise ValueError(
            f"Unknown store backend {backend!r} (choose from {', '.join(STORE_BACKENDS)})"
        ) from None

    if db_path != ":memory:":
        parent = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(parent, exist_ok=True)
    logger.debug("Opening %s store at %s", backend, db_path)
    return store_cls(db_path)


def default_db_path(repo_path: str, backend: str = "sqlite") -> str:
    """Database location inside the repository working tree"""
    return os.path.join(repo_path, STORE_BACKENDS[backend].default_filename)
