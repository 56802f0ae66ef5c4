"""runnerops session - inspect and export installation sessions."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError

from runnerops.cli.context import CliContext, pass_context
from runnerops.contracts import paths
from runnerops.errors import SessionNotSealedError
from runnerops.logger import resolve_log_dir
from runnerops.session import InstallationSession, export_session, load_session


def _load(obj: CliContext, path: Optional[Path]) -> InstallationSession:
    if path is None:
        try:
            path = resolve_log_dir(obj.config) / paths.SESSION_ARTIFACT_NAME
        except PermissionError as e:
            raise click.ClickException(str(e))
    try:
        return load_session(path)
    except FileNotFoundError:
        raise click.ClickException(f"No session artifact at {path}")
    except (ValueError, ValidationError) as e:
        raise click.ClickException(f"Invalid session artifact {path}: {e}")


@click.group()
def session():
    """Installation session artifacts."""
    pass


@session.command("show")
@click.argument("path", required=False, type=click.Path(dir_okay=False, path_type=Path))
@pass_context
def session_show(obj: CliContext, path):
    """Summarize the session at PATH (default: the log directory artifact)."""
    click.echo(_load(obj, path).summary(use_colors=obj.use_colors))


@session.command("export")
@click.argument("path", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["json", "csv"]),
    default="json",
    help="Export format",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write to a file instead of stdout",
)
@pass_context
def session_export(obj: CliContext, path, output_format, output):
    """Export a sealed session as JSON or CSV.

    Examples:

        runnerops session export --format csv --output steps.csv
    """
    loaded = _load(obj, path)
    try:
        text = export_session(loaded, output_format, output)
    except SessionNotSealedError as e:
        raise click.ClickException(str(e))
    if output is None:
        click.echo(text)
    else:
        click.echo(f"Exported {loaded.installation_id} to {output}")
