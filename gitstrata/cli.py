"""
git-strata command line interface.

Every command opens REPO_PATH (which brings the index up to date) and prints
its result as JSON, or writes it to --output.
"""

import json
import logging
import sys
import traceback
from functools import wraps
from typing import Any, Callable, Dict, Optional

import click

from . import VERSION
from .config import DATE_PRESETS, ConfigResolver
from .queries import DateRange
from .reporting import ProfilingContext, ProgressReporter
from .session import AnalyticsSession
from .source import SOURCE_BACKENDS
from .store import STORE_BACKENDS

logger = logging.getLogger(__name__)


# ============================================================================
# SHARED OPTIONS
# ============================================================================


def repo_argument(func):
    return click.argument(
        "repo_path",
        type=click.Path(exists=True, file_okay=False, resolve_path=True),
    )(func)


def output_option(func):
    return click.option(
        "-o",
        "--output",
        type=click.Path(dir_okay=False),
        help="Write JSON to this file instead of stdout",
    )(func)


def range_options(func):
    func = click.option(
        "--range",
        "range_preset",
        type=click.Choice(list(DATE_PRESETS)),
        help="Lookback preset (default: 6mo)",
    )(func)
    func = click.option("--to", "to_date", help="End date, exclusive (YYYY-MM-DD)")(func)
    func = click.option("--from", "from_date", help="Start date, inclusive (YYYY-MM-DD)")(func)
    return func


def exclude_option(func):
    return click.option(
        "--exclude",
        multiple=True,
        help="Glob of file paths to leave out (repeatable), e.g. 'vendor/*'",
    )(func)


# ============================================================================
# EXECUTION
# ============================================================================


def _emit(payload: Any, output: Optional[str], reporter: ProgressReporter):
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        reporter.success(f"Results saved to: {output}")
    else:
        click.echo(text)


def run_with_session(
    ctx: click.Context,
    repo_path: str,
    command_args: Dict[str, Any],
    action: Callable[[AnalyticsSession, ConfigResolver, ProgressReporter], Any],
):
    """Resolve configuration, open the repository and emit what action returns"""
    settings = ctx.obj
    verbose = bool(settings["cli"].get("verbose"))
    reporter = ProgressReporter(
        quiet=bool(settings["cli"].get("quiet")),
        verbose=verbose,
        use_colors=not settings["cli"].get("no_color"),
    )

    try:
        cli_args = {**settings["cli"], **command_args}
        resolver = ConfigResolver(
            cli_args, settings["config"], command_args.get("range"), repo_path
        )
        if resolver.config_source:
            reporter.info(f"Using configuration: {resolver.config_source}")

        memory_limit = resolver.get("memory_limit")
        session = AnalyticsSession(
            source_backend=resolver.get("source_backend"),
            store_backend=resolver.get("store_backend"),
            batch_size=int(resolver.get("batch_size")),
            db_path=resolver.get("db_path"),
            reporter=reporter,
            memory_limit_mb=float(memory_limit) if memory_limit else None,
        )
        with session:
            payload = action(session, resolver, reporter)
            _emit(payload, command_args.get("output"), reporter)

    except Exception as e:
        reporter.error(str(e))
        if verbose:
            traceback.print_exc()
        sys.exit(1)


def query_command(func):
    """Open the repository, then hand the session to the query body"""

    @wraps(func)
    @click.pass_context
    def wrapper(ctx, repo_path, from_date=None, to_date=None, range_preset=None, output=None, **kwargs):
        command_args = {
            "from": from_date,
            "to": to_date,
            "range": range_preset,
            "output": output,
            **kwargs,
        }

        def action(session, resolver, reporter):
            # Reject a bad range before indexing touches the store.
            start, end = resolver.date_range()
            DateRange.parse(start, end)
            session.open_repository(repo_path)
            return func(session, resolver, start, end)

        run_with_session(ctx, repo_path, command_args, action)

    return wrapper


# ============================================================================
# CLI INTERFACE
# ============================================================================


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option(
    "--source-backend",
    type=click.Choice(list(SOURCE_BACKENDS)),
    help="How history is read: native git (default) or the GitPython library",
)
@click.option(
    "--store-backend",
    type=click.Choice(list(STORE_BACKENDS)),
    help="Database engine (default: sqlite)",
)
@click.option("--db", "db_path", type=click.Path(dir_okay=False), help="Database file path")
@click.option("--batch-size", type=click.IntRange(min=1), help="Commits per insert transaction")
@click.option("--memory-limit", type=float, help="Memory limit in MB")
@click.option("-q", "--quiet", is_flag=True, default=None, help="Suppress progress output")
@click.option(
    "-v", "--verbose", is_flag=True, default=None, help="Show detailed progress and debug logs"
)
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
@click.version_option(version=VERSION)
@click.pass_context
def main(ctx, config, **kwargs):
    """
    git-strata - commit history analytics.

    Indexes a repository's history incrementally into a local database and
    reports activity, churn, hotspots, contributors, coupling and ownership.
    """
    logging.basicConfig(
        level=logging.DEBUG if kwargs.get("verbose") else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["cli"] = kwargs


@main.command()
@repo_argument
@output_option
@click.option("--profile", is_flag=True, help="Enable performance profiling")
@click.option("--profile-output", type=click.Path(dir_okay=False), help="Save raw profile stats")
@click.pass_context
def index(ctx, repo_path, output, profile, profile_output):
    """Index new commits and report what was written."""

    def action(session, resolver, reporter):
        with ProfilingContext(enabled=profile, output_path=profile_output):
            result = session.open_repository(repo_path)

        if result.up_to_date:
            reporter.success("Index already up to date")
        else:
            reporter.summary(
                {
                    "Repository": repo_path,
                    "Commits indexed": f"{result.commits_indexed:,}",
                    "Batches written": result.batches_written,
                    "Head": result.head[:7],
                    "Peak memory": f"{result.memory_peak_mb:.1f} MB",
                }
            )
        return result.to_dict()

    run_with_session(ctx, repo_path, {"output": output}, action)


@main.command()
@repo_argument
@output_option
@click.pass_context
def info(ctx, repo_path, output):
    """Repository name, branch and latest commit."""

    def action(session, resolver, reporter):
        session.open_repository(repo_path)
        return session.repo_info().to_dict()

    run_with_session(ctx, repo_path, {"output": output}, action)


@main.command()
@repo_argument
@range_options
@output_option
@click.option("--author", "author_email", help="Only count commits by this author email")
@query_command
def heatmap(session, resolver, start, end):
    """Commits per day."""
    author = resolver.get("author_email", "")
    return [d.to_dict() for d in session.heatmap(start, end, author)]


@main.command()
@repo_argument
@range_options
@exclude_option
@output_option
@query_command
def hotspots(session, resolver, start, end):
    """Files ranked by lines changed."""
    rows = session.file_hotspots(start, end, resolver.exclude_globs())
    return [h.to_dict() for h in rows]


@main.command("temporal-hotspots")
@repo_argument
@range_options
@exclude_option
@output_option
@click.option("--half-life", "half_life_days", type=float, help="Decay half-life in days (default: 30)")
@query_command
def temporal_hotspots(session, resolver, start, end):
    """Files ranked by churn weighted toward recent changes."""
    half_life = float(resolver.get("half_life_days"))
    rows = session.temporal_hotspots(start, end, half_life, resolver.exclude_globs())
    return [h.to_dict() for h in rows]


@main.command()
@repo_argument
@range_options
@exclude_option
@output_option
@query_command
def contributors(session, resolver, start, end):
    """Authors ranked by commit count."""
    rows = session.contributors(start, end, resolver.exclude_globs())
    return [c.to_dict() for c in rows]


@main.command()
@repo_argument
@range_options
@exclude_option
@output_option
@click.option("--min-count", type=int, help="Minimum shared commits per pair (default: 1)")
@click.option("--limit", type=int, help="Maximum pairs returned (default: 100)")
@query_command
def coupling(session, resolver, start, end):
    """File pairs that change together."""
    rows = session.co_changes(
        start,
        end,
        min_count=int(resolver.get("min_count")),
        limit=int(resolver.get("limit")),
        exclude_globs=resolver.exclude_globs(),
    )
    return [p.to_dict() for p in rows]


@main.command()
@repo_argument
@range_options
@exclude_option
@output_option
@query_command
def ownership(session, resolver, start, end):
    """Per-file ownership concentration."""
    rows = session.file_ownerships(start, end, resolver.exclude_globs())
    return [o.to_dict() for o in rows]


@main.command()
@repo_argument
@range_options
@output_option
@query_command
def dashboard(session, resolver, start, end):
    """Totals for the selected range."""
    return session.dashboard_stats(start, end).to_dict()


@main.command()
@repo_argument
@range_options
@output_option
@query_command
def hours(session, resolver, start, end):
    """Commits per hour of day."""
    return [b.to_dict() for b in session.commits_by_hour(start, end)]


if __name__ == "__main__":
    main()
