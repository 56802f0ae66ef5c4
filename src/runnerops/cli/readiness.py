"""runnerops readiness - gate installation on host readiness."""

from __future__ import annotations

import json
import sys

import click

from runnerops.advice import advise
from runnerops.cli.context import CliContext, pass_context
from runnerops.readiness import ReadinessProber

_LABEL_COLORS = {"PASS": "green", "WARN": "yellow", "FAIL": "red"}


@click.command("readiness")
@click.option(
    "--boot-timeout",
    type=float,
    default=None,
    help="Seconds to wait for cloud-init (default from config)",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.option(
    "--post-install",
    is_flag=True,
    help="Verify runner dependencies and service instead of pre-install readiness",
)
@pass_context
def readiness(obj: CliContext, boot_timeout, output_format, post_install):
    """Probe boot completion, resources, network and the package manager.

    Exits 0 when the host is ready, otherwise with the error code of the
    first blocking failure.

    Examples:

        runnerops readiness

        runnerops readiness --boot-timeout 60 --format json

        runnerops readiness --post-install
    """
    prober = ReadinessProber(obj.system, obj.config)
    if post_install:
        result = prober.validate_runner_installation()
    else:
        result = prober.validate_system_readiness(boot_timeout=boot_timeout)

    if output_format == "json":
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        sys.exit(result.exit_code)

    click.echo(click.style("=== System Readiness ===", fg="cyan"))
    click.echo()
    for report in result.reports:
        label = report.status_label
        indicator = click.style(f"[{label}]", fg=_LABEL_COLORS[label], bold=True) if obj.use_colors else f"[{label}]"
        click.echo(f"  {indicator} {report.dimension}: {report.detail}")
    click.echo()

    if result.passed:
        click.echo(click.style("System ready for installation", fg="green"))
    else:
        kind = result.error_kind
        click.echo(click.style(f"System not ready: {kind.label} ({kind.code})", fg="red"), err=True)
        click.echo(advise(kind))
    sys.exit(result.exit_code)
