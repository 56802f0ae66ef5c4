"""runnerops health - run the runner health check suite."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from runnerops.aws import AwsClient
from runnerops.cli.context import CliContext, pass_context
from runnerops.github import GitHubClient
from runnerops.health import HealthAggregator, RunnerHealthChecks, render_summary, write_report


@click.command("health")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Report path (default from config)",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Seconds allowed for each check",
)
@click.option(
    "--check",
    "-c",
    "only",
    multiple=True,
    help="Run only the named checks",
)
@pass_context
def health(obj: CliContext, output_format, output, timeout, only):
    """Check GitHub, the local runner, AWS and workflows.

    Exits 0 (HEALTHY), 1 (DEGRADED) or 2 (UNHEALTHY). The JSON report is
    always written to the report path.

    Examples:

        runnerops health

        runnerops health --format json --output report.json

        runnerops health -c github_connectivity -c runner_service
    """
    config = obj.config
    aws = AwsClient.from_config(config)
    with GitHubClient.from_config(config) as github:
        suite = RunnerHealthChecks(config, obj.system, github, aws)
        checks = suite.canonical_checks()
        if only:
            known = {name for name, _ in checks}
            unknown = sorted(set(only) - known)
            if unknown:
                raise click.BadParameter(
                    f"Unknown checks: {', '.join(unknown)}. Known: {', '.join(sorted(known))}",
                    param_hint="--check",
                )
            checks = [(name, fn) for name, fn in checks if name in only]
        report = HealthAggregator(config, timeout=timeout).run_health_checks(checks)

    path = write_report(report, output or Path(config.health_report_path))

    if output_format == "json":
        click.echo(json.dumps(report.to_report_dict(), indent=2))
    else:
        click.echo(render_summary(report, use_colors=obj.use_colors))
        click.echo()
        click.echo(f"Report: {path}")
    sys.exit(report.exit_code)
