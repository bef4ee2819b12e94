import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from conftest import make_commit
from gitstrata.errors import StoreError
from gitstrata.store import (
    CURSOR_KEY,
    DuckDBStore,
    SQLiteStore,
    commit_rows,
    default_db_path,
    open_store,
)


def counts(store):
    commits = store.fetch_one("SELECT COUNT(*) FROM commits")[0]
    files = store.fetch_one("SELECT COUNT(*) FROM file_stats")[0]
    return commits, files


@pytest.fixture
def batch():
    return [
        make_commit("aaa1", (2025, 1, 15, 10), [("main.go", 10, 5), ("util.go", 3, 2)]),
        make_commit("bbb2", (2025, 1, 16, 12), [("main.go", 20, 10)], name="Bob", email="bob@example.com"),
        make_commit("ccc3", (2025, 1, 17, 8)),
    ]


def test_commit_rows_flattens_files(batch):
    commit_params, file_params = commit_rows(batch)
    assert len(commit_params) == 3
    assert commit_params[0] == ("aaa1", "Alice", "alice@example.com", "2025-01-15 10:00:00+00:00", "msg")
    assert ("bbb2", "main.go", 20, 10) in file_params
    assert len(file_params) == 3


def test_initialize_is_idempotent(store):
    store.initialize()
    store.initialize()
    assert counts(store) == (0, 0)


def test_insert_batch(store, batch):
    store.insert_batch(batch)
    assert counts(store) == (3, 3)

    row = store.fetch_one("SELECT author_name, committed_at FROM commits WHERE hash = ?", ["bbb2"])
    assert row == ("Bob", "2025-01-16 12:00:00+00:00")


def test_insert_batch_is_idempotent(store, batch):
    store.insert_batch(batch)
    first = store.fetch_all("SELECT * FROM file_stats ORDER BY commit_hash, file_path")
    store.insert_batch(batch)

    assert counts(store) == (3, 3)
    assert store.fetch_all("SELECT * FROM file_stats ORDER BY commit_hash, file_path") == first


@pytest.mark.parametrize("backend", ["sqlite", "duckdb"])
def test_overlapping_batches_commute(tmp_path, batch, backend):
    c1, c2, c3 = batch

    def contents(store):
        return (
            store.fetch_all("SELECT * FROM commits ORDER BY hash"),
            store.fetch_all("SELECT * FROM file_stats ORDER BY commit_hash, file_path"),
        )

    with open_store(str(tmp_path / f"forward.{backend}"), backend) as forward:
        forward.initialize()
        forward.insert_batch([c1, c2])
        forward.insert_batch([c2, c3])
        expected = contents(forward)

    with open_store(str(tmp_path / f"reverse.{backend}"), backend) as reverse:
        reverse.initialize()
        reverse.insert_batch([c3])
        reverse.insert_batch([c1, c2, c3])
        assert contents(reverse) == expected

    assert len(expected[0]) == 3
    assert len(expected[1]) == 3


def test_insert_duplicates_within_batch(store):
    commit = make_commit("aaa1", (2025, 1, 15), [("a.py", 1, 0)])
    store.insert_batch([commit, commit])
    assert counts(store) == (1, 1)


def test_insert_empty_batch(store):
    store.insert_batch([])
    assert counts(store) == (0, 0)


def test_timestamp_keeps_local_time(store):
    when = datetime(2025, 1, 15, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    store.insert_batch([make_commit("aaa1", when)])
    assert store.fetch_one("SELECT committed_at FROM commits")[0] == "2025-01-15 23:30:00-05:00"


def test_cursor_round_trip(store):
    assert store.get_cursor() == ""
    store.set_cursor("abc")
    assert store.get_cursor() == "abc"
    store.set_cursor("def")
    assert store.get_cursor() == "def"
    assert store.fetch_one("SELECT COUNT(*) FROM index_state WHERE key = ?", [CURSOR_KEY])[0] == 1


def test_store_persists_across_reopen(tmp_path, batch):
    path = str(tmp_path / "persist.db")
    with open_store(path, "sqlite") as s:
        s.initialize()
        s.insert_batch(batch)
        s.set_cursor("bbb2")

    with open_store(path, "sqlite") as s:
        s.initialize()
        assert counts(s) == (3, 3)
        assert s.get_cursor() == "bbb2"


def test_open_store_creates_parent_dirs(tmp_path):
    path = tmp_path / "nested" / "dir" / "a.duckdb"
    with open_store(str(path), "duckdb") as s:
        s.initialize()
    assert path.exists()


def test_open_store_unknown_backend(tmp_path):
    with pytest.raises(ValueError):
        open_store(str(tmp_path / "x.db"), "postgres")


def test_default_db_path():
    assert default_db_path("/repo", "sqlite").endswith(".git-strata.db")
    assert default_db_path("/repo", "duckdb").endswith(".git-strata.duckdb")


def test_sqlite_uses_wal(tmp_path):
    with SQLiteStore(str(tmp_path / "wal.db")) as s:
        assert s.fetch_one("PRAGMA journal_mode")[0] == "wal"


def test_sqlite_insert_failure_rolls_back(tmp_path, batch):
    s = SQLiteStore(str(tmp_path / "fail.db"))
    s.initialize()
    s._conn.execute("DROP TABLE file_stats")

    with pytest.raises(StoreError):
        s.insert_batch(batch)
    # Commit rows from the failed batch were rolled back with it.
    assert s.fetch_one("SELECT COUNT(*) FROM commits")[0] == 0
    s.close()


def test_duckdb_insert_failure_rolls_back(tmp_path, batch):
    s = DuckDBStore(str(tmp_path / "fail.duckdb"))
    s.initialize()
    s._conn.execute("DROP TABLE file_stats")

    with pytest.raises(StoreError):
        s.insert_batch(batch)
    assert s.fetch_one("SELECT COUNT(*) FROM commits")[0] == 0
    s.close()


def test_sqlite_initialize_failure_raises_store_error(tmp_path):
    s = SQLiteStore(str(tmp_path / "init.db"))
    s._conn = MagicMock()
    s._conn.execute.side_effect = sqlite3.OperationalError("disk I/O error")
    s._conn.__enter__ = MagicMock(return_value=s._conn)
    s._conn.__exit__ = MagicMock(return_value=False)

    with pytest.raises(StoreError, match="Schema initialization failed"):
        s.initialize()


def test_read_errors_propagate_unwrapped(store):
    with pytest.raises(Exception) as excinfo:
        store.fetch_all("SELECT * FROM no_such_table")
    assert not isinstance(excinfo.value, StoreError)
