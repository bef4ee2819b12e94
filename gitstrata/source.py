"""
Commit extraction from a git repository.

Two interchangeable backends yield the same Commit records, newest first:

- NativeGitSource streams `git log --numstat` from a child process and parses
  the sentinel-framed output one line at a time.
- LibraryGitSource walks history with GitPython.
"""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Iterator, List, Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName, BadObject

from .errors import LogParseError, NotARepositoryError, SourceError
from .models import Commit, FileChange

logger = logging.getLogger(__name__)

COMMIT_SENTINEL = "GITSTRATA_COMMIT"
BINARY_PLACEHOLDER = "-"

# hash, author name, author email, strict ISO author date, subject
LOG_FORMAT = f"--format={COMMIT_SENTINEL}%n%H%n%an%n%ae%n%aI%n%s"
METADATA_LINES = 5


def parse_numstat_line(line: str) -> FileChange:
    """
    Parse one `git log --numstat` line: "<added>\\t<deleted>\\t<path>".

    Binary files show "-" for both counts and are recorded as 0/0.
    Raises ValueError for anything else that is not a well-formed stat line.
    """
    parts = line.split("\t", 2)
    if len(parts) != 3:
        raise ValueError(f"expected 3 tab-separated fields, got {len(parts)}")

    added_str, deleted_str, path = parts
    if not path:
        raise ValueError("empty path")

    additions = 0 if added_str == BINARY_PLACEHOLDER else int(added_str)
    deletions = 0 if deleted_str == BINARY_PLACEHOLDER else int(deleted_str)
    if additions < 0 or deletions < 0:
        raise ValueError(f"negative line count in {line!r}")

    return FileChange(path=unquote_path(path), additions=additions, deletions=deletions)


# git's C-style escapes inside a quoted path name
_C_ESCAPES = {
    "a": 0x07,
    "b": 0x08,
    "t": 0x09,
    "n": 0x0A,
    "v": 0x0B,
    "f": 0x0C,
    "r": 0x0D,
    '"': 0x22,
    "\\": 0x5C,
}
_OCTAL_DIGITS = "01234567"


def unquote_path(path: str) -> str:
    """
    Undo git's quoting of unusual path names.

    git wraps such names in double quotes and writes control characters,
    quotes and backslashes as C escapes. Unless core.quotePath is off, bytes
    above 0x7f come out as octal escapes too (`"caf\\303\\251.txt"`).
    Unquoted names are returned unchanged.
    """
    if len(path) < 2 or path[0] != '"' or path[-1] != '"':
        return path

    body = path[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\":
            out.extend(ch.encode("utf-8"))
            i += 1
            continue

        escape = body[i + 1 : i + 2]
        octal = body[i + 1 : i + 4]
        if escape in _C_ESCAPES:
            out.append(_C_ESCAPES[escape])
            i += 2
        elif len(octal) == 3 and all(d in _OCTAL_DIGITS for d in octal):
            out.append(int(octal, 8) & 0xFF)
            i += 4
        else:
            out.extend(b"\\")
            i += 1

    return out.decode("utf-8", errors="replace")


class PushbackLineReader:
    """Line source with exactly one line of push-back."""

    def __init__(self, lines: Iterable[str]):
        self._lines = iter(lines)
        self._pushed: Optional[str] = None

    def next_line(self) -> Optional[str]:
        """Return the next line without its terminator, or None at end of input"""
        if self._pushed is not None:
            line, self._pushed = self._pushed, None
            return line
        try:
            return next(self._lines).rstrip("\r\n")
        except StopIteration:
            return None

    def unread(self, line: str):
        if self._pushed is not None:
            raise RuntimeError("push-back buffer already holds a line")
        self._pushed = line


class NumstatLogParser:
    """
    Iterate Commit records out of sentinel-framed `git log --numstat` output.

    Layout per commit:
        GITSTRATA_COMMIT
        <hash>
        <author name>
        <author email>
        <ISO-8601 author date>
        <subject>
        [<added>\\t<deleted>\\t<path> ...]

    A stat block only ends when the next sentinel is seen, so that sentinel is
    pushed back for the following call. Malformed stat lines are skipped and
    counted in skipped_lines. A truncated metadata block raises LogParseError
    and ends the iteration.
    """

    def __init__(self, lines: Iterable[str], sentinel: str = COMMIT_SENTINEL):
        self._reader = PushbackLineReader(lines)
        self.sentinel = sentinel
        self.skipped_lines = 0
        self._exhausted = False

    def __iter__(self) -> Iterator[Commit]:
        return self

    def __next__(self) -> Commit:
        if self._exhausted:
            raise StopIteration

        # Anything before the first sentinel is noise.
        while True:
            line = self._reader.next_line()
            if line is None:
                self._exhausted = True
                raise StopIteration
            if line == self.sentinel:
                break

        meta = self._read_metadata()
        try:
            committed_at = datetime.fromisoformat(meta[3])
        except ValueError as e:
            self._exhausted = True
            raise LogParseError(f"invalid commit date {meta[3]!r} for {meta[0]}") from e

        return Commit(
            hash=meta[0],
            author_name=meta[1],
            author_email=meta[2],
            committed_at=committed_at,
            message=meta[4],
            files=tuple(self._read_stats(meta[0])),
        )

    def _read_metadata(self) -> List[str]:
        meta = []
        for i in range(METADATA_LINES):
            line = self._reader.next_line()
            if line is None or line == self.sentinel:
                self._exhausted = True
                raise LogParseError(
                    f"truncated commit metadata: expected {METADATA_LINES} lines, got {i}"
                )
            meta.append(line)
        return meta

    def _read_stats(self, commit_hash: str) -> List[FileChange]:
        files = []
        while True:
            line = self._reader.next_line()
            if line is None:
                self._exhausted = True
                break
            if line == self.sentinel:
                self._reader.unread(line)
                break
            if not line:
                continue

            try:
                files.append(parse_numstat_line(line))
            except ValueError as e:
                self.skipped_lines += 1
                logger.debug("Skipping stat line in %s: %r (%s)", commit_hash[:12], line, e)
        return files


class CommitStream:
    """
    Forward-only, single-use sequence of commits.

    Must be closed when abandoned; use it as a context manager so the
    underlying process or walker is released on every exit path.
    """

    def __init__(self, commits: Iterator[Commit]):
        self._commits = commits
        self.closed = False

    @property
    def skipped_lines(self) -> int:
        """Malformed stat lines dropped so far"""
        return 0

    def __iter__(self) -> "CommitStream":
        return self

    def __next__(self) -> Commit:
        if self.closed:
            raise StopIteration
        return next(self._commits)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class GitLogStream(CommitStream):
    """CommitStream fed by a `git log` child process."""

    def __init__(self, process: subprocess.Popen):
        self.process = process
        self.parser = NumstatLogParser(process.stdout)
        super().__init__(self.parser)

    @property
    def skipped_lines(self) -> int:
        return self.parser.skipped_lines

    def __next__(self) -> Commit:
        try:
            return super().__next__()
        except StopIteration:
            self._finish()
            raise
        except LogParseError:
            self.close()
            raise

    def _finish(self):
        """Reap the child at natural end of output and surface a failed exit"""
        if self.closed:
            return
        stderr = self.process.stderr.read() if self.process.stderr else ""
        returncode = self.process.wait()
        self.close()
        if returncode != 0:
            raise SourceError(f"git log failed ({returncode}): {stderr.strip()}")
        if self.parser.skipped_lines:
            logger.debug("Skipped %d malformed stat lines", self.parser.skipped_lines)

    def close(self):
        if self.process.poll() is None:
            self.process.kill()
            self.process.wait()
        for pipe in (self.process.stdout, self.process.stderr):
            if pipe:
                pipe.close()
        super().close()


class CommitSource(ABC):
    """A repository history exposed as a sequence of Commit facts."""

    backend_name = ""

    def __init__(self, path: str):
        self.path = os.path.abspath(path)

    @property
    def repo_name(self) -> str:
        return os.path.basename(self.path.rstrip(os.sep))

    @property
    @abstractmethod
    def git_dir(self) -> str:
        """Absolute path of the repository's git directory"""

    @abstractmethod
    def head_hash(self) -> str:
        """Hash of the current tip"""

    @abstractmethod
    def current_branch(self) -> str:
        """Short branch name, or 'HEAD' when detached"""

    @abstractmethod
    def log(self, since_hash: str = "", until: str = "HEAD") -> CommitStream:
        """
        Commits reachable from until, newest first. With since_hash, only
        commits strictly newer than it are returned.
        """

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class NativeGitSource(CommitSource):
    """
    Source backed by the git CLI.

    Native git streams large histories much faster than a library walk, so this
    is the default backend.
    """

    backend_name = "native"

    def __init__(self, path: str):
        super().__init__(path)
        try:
            result = subprocess.run(
                ["git", "-C", self.path, "rev-parse", "--absolute-git-dir"],
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise NotARepositoryError(f"git is not available: {e}") from e

        if result.returncode != 0:
            raise NotARepositoryError(
                f"Not a git repository: {self.path} ({result.stderr.strip()})"
            )
        self._git_dir = result.stdout.strip()

    @property
    def git_dir(self) -> str:
        return self._git_dir

    def _git(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["git", "-C", self.path, *args],
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
        )

    def head_hash(self) -> str:
        result = self._git("rev-parse", "--verify", "HEAD")
        if result.returncode != 0:
            raise SourceError(f"rev-parse HEAD failed: {result.stderr.strip()}")
        return result.stdout.strip()

    def current_branch(self) -> str:
        result = self._git("symbolic-ref", "--short", "HEAD")
        if result.returncode != 0:
            return "HEAD"
        return result.stdout.strip()

    def log(self, since_hash: str = "", until: str = "HEAD") -> GitLogStream:
        cmd = [
            "git",
            "-C",
            self.path,
            "-c",
            "core.quotePath=false",
            "log",
            "--no-color",
            "--no-renames",
            LOG_FORMAT,
            "--numstat",
        ]
        if since_hash:
            check = self._git("rev-parse", "--verify", "--quiet", f"{since_hash}^{{commit}}")
            if check.returncode != 0:
                raise SourceError(f"Unknown commit: {since_hash}")
            cmd.append(f"{since_hash}..{until}")
        else:
            cmd.append(until)

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise SourceError(f"Failed to start git log: {e}") from e

        logger.debug("Started git log (pid %s) since %r", process.pid, since_hash)
        return GitLogStream(process)


class LibraryGitSource(CommitSource):
    """Source backed by a GitPython history walk."""

    backend_name = "library"

    def __init__(self, path: str):
        super().__init__(path)
        try:
            self.repo = Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise NotARepositoryError(f"Not a git repository: {self.path}") from e

    @property
    def git_dir(self) -> str:
        return os.path.abspath(self.repo.git_dir)

    def head_hash(self) -> str:
        try:
            return self.repo.head.commit.hexsha
        except ValueError as e:
            raise SourceError(f"rev-parse HEAD failed: {e}") from e

    def current_branch(self) -> str:
        if self.repo.head.is_detached:
            return "HEAD"
        return self.repo.active_branch.name

    def log(self, since_hash: str = "", until: str = "HEAD") -> CommitStream:
        rev = until
        if since_hash:
            # An unknown hash must fail here, not on the first next().
            try:
                self.repo.git.rev_parse("--verify", "--quiet", f"{since_hash}^{{commit}}")
            except GitCommandError as e:
                raise SourceError(f"Unknown commit: {since_hash}") from e
            rev = f"{since_hash}..{until}"

        walker = self._walk(rev)
        return _GeneratorStream(walker)

    def _walk(self, rev: str) -> Iterator[Commit]:
        try:
            for c in self.repo.iter_commits(rev):
                files = ()
                # git log --numstat prints nothing for merges; match it.
                if len(c.parents) <= 1:
                    files = tuple(
                        FileChange(
                            path=unquote_path(path),
                            additions=int(stats.get("insertions", 0)),
                            deletions=int(stats.get("deletions", 0)),
                        )
                        for path, stats in c.stats.files.items()
                    )
                yield Commit(
                    hash=c.hexsha,
                    author_name=c.author.name or "",
                    author_email=c.author.email or "",
                    committed_at=c.authored_datetime,
                    message=_text(c.summary),
                    files=files,
                )
        except (GitCommandError, BadName, BadObject, ValueError) as e:
            raise SourceError(f"git history walk failed for {rev}: {e}") from e

    def close(self):
        self.repo.close()


class _GeneratorStream(CommitStream):
    def close(self):
        self._commits.close()
        super().close()


SOURCE_BACKENDS = {
    NativeGitSource.backend_name: NativeGitSource,
    LibraryGitSource.backend_name: LibraryGitSource,
}


def open_source(location: str, backend: str = "native") -> CommitSource:
    """Open a repository with the named extraction backend"""
    try:
        source_cls = SOURCE_BACKENDS[backend]
    except KeyError:
        raise ValueError(
            f"Unknown source backend {backend!r} (choose from {', '.join(SOURCE_BACKENDS)})"
        ) from None
    return source_cls(location)


def _text(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
