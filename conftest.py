import os
import subprocess
from datetime import datetime, timezone

import pytest

from gitstrata.models import Commit, FileChange
from gitstrata.reporting import ProgressReporter
from gitstrata.store import open_store


@pytest.fixture
def quiet_reporter():
    return ProgressReporter(quiet=True)


def make_commit(commit_hash, when, files=(), name="Alice", email="alice@example.com", message="msg"):
    """Commit fact with files given as (path, additions, deletions) tuples."""
    if isinstance(when, tuple):
        when = datetime(*when, tzinfo=timezone.utc)
    return Commit(
        hash=commit_hash,
        author_name=name,
        author_email=email,
        committed_at=when,
        message=message,
        files=tuple(FileChange(p, a, d) for p, a, d in files),
    )


@pytest.fixture(params=["sqlite", "duckdb"])
def store(request, tmp_path):
    s = open_store(str(tmp_path / f"analytics.{request.param}"), request.param)
    s.initialize()
    yield s
    s.close()


# ============================================================================
# REAL GIT REPOSITORIES
# ============================================================================


def run_git(repo, *args, env=None):
    return subprocess.run(
        ["git", "-c", "commit.gpgsign=false", "-C", str(repo)] + list(args),
        check=True,
        capture_output=True,
        env=env,
    )


def git_commit(repo, files, message, name, email, date):
    """Write files (str or bytes content) and commit them with a fixed author date."""
    for rel_path, content in files.items():
        path = repo / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")

    env = dict(os.environ)
    env.update(
        {
            "GIT_AUTHOR_NAME": name,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_NAME": name,
            "GIT_COMMITTER_EMAIL": email,
            "GIT_COMMITTER_DATE": date,
        }
    )
    run_git(repo, "add", ".", env=env)
    run_git(repo, "commit", "-m", message, env=env)
    return run_git(repo, "rev-parse", "HEAD").stdout.decode().strip()


def init_repo(path):
    path.mkdir()
    run_git(path, "init")
    run_git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(path, "config", "user.email", "tester@test.com")
    run_git(path, "config", "user.name", "Tester")
    return path


@pytest.fixture
def git_repo(tmp_path):
    """
    Four commits, two authors:

    c1 2025-01-10 09:00 +00:00 Alice  app.py +2, lib.py +1
    c2 2025-01-11 14:30 +00:00 Bob    app.py +1, lib.py +1/-1
    c3 2025-01-12 10:00 +02:00 Alice  logo.bin (binary), readme.md +1
    c4 2025-01-12 16:00 +00:00 Bob    app.py +1
    """
    repo = init_repo(tmp_path / "repo")

    git_commit(
        repo,
        {"app.py": "a\nb\n", "lib.py": "x\n"},
        "initial",
        "Alice",
        "alice@example.com",
        "2025-01-10T09:00:00+00:00",
    )
    git_commit(
        repo,
        {"app.py": "a\nb\nc\n", "lib.py": "y\n"},
        "update both",
        "Bob",
        "bob@example.com",
        "2025-01-11T14:30:00+00:00",
    )
    git_commit(
        repo,
        {"logo.bin": b"\x00\x01\x02\x03", "readme.md": "# R\n"},
        "add assets",
        "Alice",
        "alice@example.com",
        "2025-01-12T10:00:00+02:00",
    )
    git_commit(
        repo,
        {"app.py": "a\nb\nc\nd\n"},
        "tweak app",
        "Bob",
        "bob@example.com",
        "2025-01-12T16:00:00+00:00",
    )

    return str(repo)
