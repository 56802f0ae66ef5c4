"""runnerops logs - installation log maintenance."""

from __future__ import annotations

import re

import click

from runnerops.cli.context import CliContext, pass_context
from runnerops.contracts.timeouts import LOG_RETENTION_DAYS
from runnerops.logger import cleanup_logs, recent_logs, search_logs


@click.group()
def logs():
    """Read, search and prune the installation log."""
    pass


@logs.command("recent")
@click.option("--lines", "-n", type=click.IntRange(min=0), default=50, help="Number of lines")
@pass_context
def logs_recent(obj: CliContext, lines):
    """Show the last lines of the installation log."""
    path = obj.installation_log()
    try:
        for line in recent_logs(path, lines):
            click.echo(line)
    except FileNotFoundError:
        raise click.ClickException(f"Log file not found: {path}")


@logs.command("search")
@click.argument("pattern")
@click.option("--max-results", "-m", type=click.IntRange(min=1), default=50, help="Most recent matches to show")
@pass_context
def logs_search(obj: CliContext, pattern, max_results):
    """Search the installation log for PATTERN (case-insensitive regex)."""
    path = obj.installation_log()
    try:
        matches = search_logs(path, pattern, max_results)
    except FileNotFoundError:
        raise click.ClickException(f"Log file not found: {path}")
    except re.error as e:
        raise click.BadParameter(f"Invalid pattern: {e}", param_hint="PATTERN")
    if not matches:
        click.echo(f"No matches for {pattern!r}")
        return
    for match in matches:
        click.echo(match)


@logs.command("cleanup")
@click.option("--days", type=click.IntRange(min=0), default=LOG_RETENTION_DAYS, help="Retention in days")
@pass_context
def logs_cleanup(obj: CliContext, days):
    """Delete log and metrics files older than --days."""
    log_dir = obj.installation_log().parent
    removed = cleanup_logs(log_dir, days)
    for path in removed:
        click.echo(f"Removed {path}")
    click.echo(f"Removed {len(removed)} files older than {days} days from {log_dir}")
