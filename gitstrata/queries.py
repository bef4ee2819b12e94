"""
Analytical views over stored commit facts.

Every function is a read-only aggregation over the commits and file_stats
tables for a half-open calendar range [start, end). Parameters are validated
before the store is touched; store read errors propagate unchanged.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import InvalidQueryError
from .models import parse_timestamp
from .store import AnalyticsStore


# ============================================================================
# PARAMETERS
# ============================================================================


@dataclass(frozen=True)
class DateRange:
    """Half-open range of calendar days, [start 00:00, end 00:00)."""

    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise InvalidQueryError(
                f"Range end {self.end.isoformat()} is before start {self.start.isoformat()}"
            )

    @classmethod
    def parse(cls, from_date: str, to_date: str) -> "DateRange":
        """Build a range from two ISO calendar dates ('2025-01-31')"""
        return cls(_parse_date(from_date, "from"), _parse_date(to_date, "to"))

    @property
    def lower_bound(self) -> str:
        return f"{self.start.isoformat()} 00:00:00"

    @property
    def upper_bound(self) -> str:
        return f"{self.end.isoformat()} 00:00:00"

    @property
    def end_instant(self) -> datetime:
        """Reference instant for recency decay"""
        return datetime.combine(self.end, time.min, tzinfo=timezone.utc)

    def params(self) -> Tuple[str, str]:
        return self.lower_bound, self.upper_bound


def _parse_date(value: str, name: str) -> date:
    if not isinstance(value, str):
        raise InvalidQueryError(f"{name} date must be a string, got {type(value).__name__}")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as e:
        raise InvalidQueryError(f"Invalid {name} date {value!r}: expected YYYY-MM-DD") from e


def normalize_exclude_globs(globs: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Strip patterns, drop blanks and duplicates, reject non-strings"""
    if globs is None:
        return ()
    if isinstance(globs, str):
        globs = [globs]

    result = []
    for g in globs:
        if not isinstance(g, str):
            raise InvalidQueryError(f"Exclude pattern must be a string, got {g!r}")
        g = g.strip()
        if g and g not in result:
            result.append(g)
    return tuple(result)


def build_exclude_clauses(column: str, globs: Sequence[str]) -> Tuple[str, List[str]]:
    """SQL fragment ' AND NOT (col GLOB ?) ...' plus its parameters"""
    clause = "".join(f" AND NOT ({column} GLOB ?)" for _ in globs)
    return clause, list(globs)


def _require_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidQueryError(f"{name} must be a positive integer, got {value!r}")
    return value


# ============================================================================
# RESULT TYPES
# ============================================================================


@dataclass
class HeatmapDay:
    date: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FileHotspot:
    path: str
    lines_changed: int
    additions: int
    deletions: int
    commits: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TemporalHotspot:
    path: str
    lines_changed: int
    additions: int
    deletions: int
    commits: int
    last_changed: str
    days_since: int
    score: float

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["score"] = round(self.score, 4)
        return d


@dataclass
class Contributor:
    author_name: str
    author_email: str
    commits: int
    additions: int
    deletions: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CoChangePair:
    file_a: str
    file_b: str
    co_change_count: int
    commits_a: int
    commits_b: int
    coupling_ratio: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["coupling_ratio"] = round(self.coupling_ratio, 4)
        return d


@dataclass
class AuthorShare:
    author_name: str
    author_email: str
    lines: int
    pct: float


@dataclass
class FileOwnership:
    """
    Ownership of one file by lines changed. The top two contributors are
    broken out; shares holds every contributor, largest first.
    """

    path: str
    total_lines: int
    contributor_count: int
    top_author_name: str = ""
    top_author_email: str = ""
    top_author_pct: float = 0.0
    second_author_name: str = ""
    second_author_email: str = ""
    second_author_pct: float = 0.0
    shares: List[AuthorShare] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "top_author_name": self.top_author_name,
            "top_author_email": self.top_author_email,
            "top_author_pct": round(self.top_author_pct, 2),
            "second_author_name": self.second_author_name,
            "second_author_email": self.second_author_email,
            "second_author_pct": round(self.second_author_pct, 2),
            "contributor_count": self.contributor_count,
            "total_lines": self.total_lines,
            "shares": [
                {
                    "author_name": s.author_name,
                    "author_email": s.author_email,
                    "lines": s.lines,
                    "pct": round(s.pct, 2),
                }
                for s in self.shares
            ],
        }


@dataclass
class DashboardStats:
    commits: int = 0
    contributors: int = 0
    additions: int = 0
    deletions: int = 0
    files_changed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HourBucket:
    hour: int
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LatestCommit:
    hash: str
    author_name: str
    author_email: str
    message: str
    committed_at: datetime


# ============================================================================
# QUERIES
# ============================================================================

# Most recent display name per email among in-range commits.
_LATEST_NAME_CTE = """
latest_name AS (
    SELECT author_email, author_name
    FROM (
        SELECT author_email, author_name,
               ROW_NUMBER() OVER (
                   PARTITION BY author_email
                   ORDER BY committed_at DESC, hash DESC
               ) AS rn
        FROM in_range
    ) ranked
    WHERE rn = 1
)"""

_IN_RANGE_CTE = """
in_range AS (
    SELECT hash, author_name, author_email, committed_at
    FROM commits
    WHERE committed_at >= ? AND committed_at < ?
)"""


def heatmap(store: AnalyticsStore, rng: DateRange, author_email: str = "") -> List[HeatmapDay]:
    """
    Commits per calendar day, oldest first. Days without commits are omitted.
    A non-empty author_email restricts the count to that author.
    """
    sql = """
        SELECT SUBSTR(committed_at, 1, 10) AS commit_day, COUNT(*) AS commit_count
        FROM commits
        WHERE committed_at >= ? AND committed_at < ?"""
    params: List[Any] = list(rng.params())
    if author_email:
        sql += " AND author_email = ?"
        params.append(author_email)
    sql += """
        GROUP BY SUBSTR(committed_at, 1, 10)
        ORDER BY commit_day"""

    return [HeatmapDay(date=day, count=count) for day, count in store.fetch_all(sql, params)]


def file_hotspots(
    store: AnalyticsStore, rng: DateRange, exclude_globs: Optional[Iterable[str]] = None
) -> List[FileHotspot]:
    """Per-file churn and distinct commit count, highest churn first"""
    globs = normalize_exclude_globs(exclude_globs)
    exclude_sql, exclude_params = build_exclude_clauses("fs.file_path", globs)

    sql = f"""
        SELECT fs.file_path,
               SUM(fs.additions + fs.deletions) AS lines_changed,
               SUM(fs.additions) AS additions,
               SUM(fs.deletions) AS deletions,
               COUNT(DISTINCT fs.commit_hash) AS commit_count
        FROM file_stats fs
        JOIN commits c ON c.hash = fs.commit_hash
        WHERE c.committed_at >= ? AND c.committed_at < ?{exclude_sql}
        GROUP BY fs.file_path
        ORDER BY lines_changed DESC, fs.file_path"""

    rows = store.fetch_all(sql, [*rng.params(), *exclude_params])
    return [
        FileHotspot(
            path=path,
            lines_changed=int(lines),
            additions=int(adds),
            deletions=int(dels),
            commits=int(commits),
        )
        for path, lines, adds, dels, commits in rows
    ]


def temporal_hotspots(
    store: AnalyticsStore,
    rng: DateRange,
    half_life_days: float,
    exclude_globs: Optional[Iterable[str]] = None,
) -> List[TemporalHotspot]:
    """
    Per-file churn weighted by recency.

    score = lines_changed * e^(-lambda * days_since), lambda = ln(2) / half_life_days,
    where days_since is the age of the file's latest in-range change measured
    from the range end (00:00 UTC), floored at zero. Highest score first.
    """
    if isinstance(half_life_days, bool) or not isinstance(half_life_days, (int, float)):
        raise InvalidQueryError(f"half_life_days must be a number, got {half_life_days!r}")
    if not math.isfinite(half_life_days) or half_life_days <= 0:
        raise InvalidQueryError(f"half_life_days must be > 0, got {half_life_days!r}")

    globs = normalize_exclude_globs(exclude_globs)
    exclude_sql, exclude_params = build_exclude_clauses("fs.file_path", globs)

    sql = f"""
        SELECT fs.file_path,
               SUM(fs.additions + fs.deletions) AS lines_changed,
               SUM(fs.additions) AS additions,
               SUM(fs.deletions) AS deletions,
               COUNT(DISTINCT fs.commit_hash) AS commit_count,
               MAX(c.committed_at) AS last_committed_at
        FROM file_stats fs
        JOIN commits c ON c.hash = fs.commit_hash
        WHERE c.committed_at >= ? AND c.committed_at < ?{exclude_sql}
        GROUP BY fs.file_path"""

    decay = math.log(2) / half_life_days
    reference = rng.end_instant

    result = []
    for path, lines, adds, dels, commits, last_at in store.fetch_all(
        sql, [*rng.params(), *exclude_params]
    ):
        last_changed = parse_timestamp(last_at)
        days_since = max((reference - last_changed).total_seconds() / 86400, 0.0)
        result.append(
            TemporalHotspot(
                path=path,
                lines_changed=int(lines),
                additions=int(adds),
                deletions=int(dels),
                commits=int(commits),
                last_changed=last_changed.date().isoformat(),
                days_since=int(days_since),
                score=int(lines) * math.exp(-decay * days_since),
            )
        )

    result.sort(key=lambda h: (-h.score, h.path))
    return result


def contributors(
    store: AnalyticsStore, rng: DateRange, exclude_globs: Optional[Iterable[str]] = None
) -> List[Contributor]:
    """
    Per-author commit count and line totals, keyed by email, most commits first.
    Commits without file stats still count. Excluded files drop out of the
    line totals only.
    """
    globs = normalize_exclude_globs(exclude_globs)
    exclude_sql, exclude_params = build_exclude_clauses("fs.file_path", globs)

    sql = f"""
        WITH {_IN_RANGE_CTE},
        {_LATEST_NAME_CTE},
        totals AS (
            SELECT c.author_email,
                   COUNT(DISTINCT c.hash) AS commit_count,
                   COALESCE(SUM(fs.additions), 0) AS additions,
                   COALESCE(SUM(fs.deletions), 0) AS deletions
            FROM in_range c
            LEFT JOIN file_stats fs ON fs.commit_hash = c.hash{exclude_sql}
            GROUP BY c.author_email
        )
        SELECT t.author_email, n.author_name, t.commit_count, t.additions, t.deletions
        FROM totals t
        JOIN latest_name n ON n.author_email = t.author_email
        ORDER BY t.commit_count DESC, t.author_email"""

    rows = store.fetch_all(sql, [*rng.params(), *exclude_params])
    return [
        Contributor(
            author_name=name,
            author_email=email,
            commits=int(commits),
            additions=int(adds),
            deletions=int(dels),
        )
        for email, name, commits, adds, dels in rows
    ]


def co_changes(
    store: AnalyticsStore,
    rng: DateRange,
    min_count: int = 1,
    limit: int = 100,
    exclude_globs: Optional[Iterable[str]] = None,
) -> List[CoChangePair]:
    """
    File pairs that change in the same commits, most shared commits first.

    coupling_ratio = shared / min(commits_a, commits_b), where each count is
    the file's own in-range commit count after exclusions.
    """
    min_count = _require_positive_int(min_count, "min_count")
    limit = _require_positive_int(limit, "limit")
    globs = normalize_exclude_globs(exclude_globs)
    exclude_a, args_a = build_exclude_clauses("a.file_path", globs)
    exclude_b, args_b = build_exclude_clauses("b.file_path", globs)
    exclude_fs, args_fs = build_exclude_clauses("fs.file_path", globs)

    sql = f"""
        WITH pairs AS (
            SELECT a.file_path AS file_a,
                   b.file_path AS file_b,
                   COUNT(DISTINCT a.commit_hash) AS co_change_count
            FROM file_stats a
            JOIN file_stats b ON a.commit_hash = b.commit_hash
                 AND a.file_path < b.file_path
            JOIN commits c ON c.hash = a.commit_hash
            WHERE c.committed_at >= ? AND c.committed_at < ?{exclude_a}{exclude_b}
            GROUP BY a.file_path, b.file_path
            HAVING COUNT(DISTINCT a.commit_hash) >= ?
        ),
        file_commits AS (
            SELECT fs.file_path, COUNT(DISTINCT fs.commit_hash) AS commit_count
            FROM file_stats fs
            JOIN commits c ON c.hash = fs.commit_hash
            WHERE c.committed_at >= ? AND c.committed_at < ?{exclude_fs}
            GROUP BY fs.file_path
        )
        SELECT p.file_a, p.file_b, p.co_change_count, fa.commit_count, fb.commit_count
        FROM pairs p
        JOIN file_commits fa ON fa.file_path = p.file_a
        JOIN file_commits fb ON fb.file_path = p.file_b
        ORDER BY p.co_change_count DESC, p.file_a, p.file_b
        LIMIT {limit}"""

    params = [*rng.params(), *args_a, *args_b, min_count, *rng.params(), *args_fs]

    result = []
    for file_a, file_b, shared, commits_a, commits_b in store.fetch_all(sql, params):
        pair = CoChangePair(
            file_a=file_a,
            file_b=file_b,
            co_change_count=int(shared),
            commits_a=int(commits_a),
            commits_b=int(commits_b),
        )
        denominator = min(pair.commits_a, pair.commits_b)
        if denominator > 0:
            pair.coupling_ratio = pair.co_change_count / denominator
        result.append(pair)
    return result


def file_ownerships(
    store: AnalyticsStore, rng: DateRange, exclude_globs: Optional[Iterable[str]] = None
) -> List[FileOwnership]:
    """
    Per-file ownership by lines changed, most concentrated first.
    pct = author lines / file lines * 100.
    """
    globs = normalize_exclude_globs(exclude_globs)
    exclude_sql, exclude_params = build_exclude_clauses("fs.file_path", globs)

    sql = f"""
        WITH {_IN_RANGE_CTE},
        {_LATEST_NAME_CTE},
        file_author AS (
            SELECT fs.file_path, c.author_email,
                   SUM(fs.additions + fs.deletions) AS lines_changed
            FROM file_stats fs
            JOIN in_range c ON c.hash = fs.commit_hash
            WHERE 1 = 1{exclude_sql}
            GROUP BY fs.file_path, c.author_email
        )
        SELECT fa.file_path, fa.author_email, n.author_name, fa.lines_changed,
               SUM(fa.lines_changed) OVER (PARTITION BY fa.file_path) AS total_lines,
               COUNT(*) OVER (PARTITION BY fa.file_path) AS contributor_count
        FROM file_author fa
        JOIN latest_name n ON n.author_email = fa.author_email
        ORDER BY fa.file_path, fa.lines_changed DESC, fa.author_email"""

    result: List[FileOwnership] = []
    current: Optional[FileOwnership] = None

    for path, email, name, lines, total, count in store.fetch_all(
        sql, [*rng.params(), *exclude_params]
    ):
        lines, total = int(lines), int(total)
        pct = lines / total * 100 if total > 0 else 0.0

        if current is None or current.path != path:
            current = FileOwnership(
                path=path,
                total_lines=total,
                contributor_count=int(count),
                top_author_name=name,
                top_author_email=email,
                top_author_pct=pct,
            )
            result.append(current)
        elif len(current.shares) == 1:
            current.second_author_name = name
            current.second_author_email = email
            current.second_author_pct = pct

        current.shares.append(AuthorShare(author_name=name, author_email=email, lines=lines, pct=pct))

    result.sort(key=lambda o: (-o.top_author_pct, o.path))
    return result


def dashboard_stats(store: AnalyticsStore, rng: DateRange) -> DashboardStats:
    """In-range totals for the summary cards"""
    commits, authors = store.fetch_one(
        """
        SELECT COUNT(*), COUNT(DISTINCT author_email)
        FROM commits
        WHERE committed_at >= ? AND committed_at < ?""",
        rng.params(),
    )
    additions, deletions, files = store.fetch_one(
        """
        SELECT COALESCE(SUM(fs.additions), 0),
               COALESCE(SUM(fs.deletions), 0),
               COUNT(DISTINCT fs.file_path)
        FROM file_stats fs
        JOIN commits c ON c.hash = fs.commit_hash
        WHERE c.committed_at >= ? AND c.committed_at < ?""",
        rng.params(),
    )
    return DashboardStats(
        commits=int(commits),
        contributors=int(authors),
        additions=int(additions),
        deletions=int(deletions),
        files_changed=int(files),
    )


def commits_by_hour(store: AnalyticsStore, rng: DateRange) -> List[HourBucket]:
    """Commits per hour of the author's local day (0-23). Empty hours are omitted."""
    rows = store.fetch_all(
        """
        SELECT CAST(SUBSTR(committed_at, 12, 2) AS INTEGER) AS hour_of_day,
               COUNT(*) AS commit_count
        FROM commits
        WHERE committed_at >= ? AND committed_at < ?
        GROUP BY CAST(SUBSTR(committed_at, 12, 2) AS INTEGER)
        ORDER BY hour_of_day""",
        rng.params(),
    )
    return [HourBucket(hour=int(hour), count=int(count)) for hour, count in rows]


def latest_commit(store: AnalyticsStore) -> Optional[LatestCommit]:
    """Most recent stored commit, or None for an empty store"""
    row = store.fetch_one(
        """
        SELECT hash, author_name, author_email, message, committed_at
        FROM commits
        ORDER BY committed_at DESC
        LIMIT 1"""
    )
    if row is None:
        return None
    commit_hash, name, email, message, committed_at = row
    return LatestCommit(
        hash=commit_hash,
        author_name=name,
        author_email=email,
        message=message.strip(),
        committed_at=parse_timestamp(committed_at),
    )


def relative_time(when: datetime, now: Optional[datetime] = None) -> str:
    """Human age of a timestamp: 'just now', '5 minutes ago', '3 days ago'"""
    now = now or datetime.now(timezone.utc)
    delta = now - when
    if delta < timedelta(minutes=1):
        return "just now"
    if delta < timedelta(hours=1):
        minutes = int(delta.total_seconds() // 60)
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    if delta < timedelta(days=1):
        hours = int(delta.total_seconds() // 3600)
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    days = delta.days
    return "1 day ago" if days == 1 else f"{days} days ago"
