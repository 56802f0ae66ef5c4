"""
runnerops CLI - readiness, retried installation and health for self-hosted runners.

Commands:
    runnerops readiness     Probe host readiness before installation
    runnerops health        Run the runner health check suite
    runnerops diagnostics   Collect a diagnostic snapshot
    runnerops errors        Error kinds and remediation
    runnerops session       Inspect and export installation sessions
    runnerops packages      Retried, recorded package installation
    runnerops logs          Installation log maintenance
    runnerops instance      EC2 lifecycle for the runner host
"""

import click

from runnerops import __version__
from runnerops.config import get_config
from runnerops.logger import configure_installation_log

from .context import CliContext
from .diagnostics import diagnostics, errors
from .health import health
from .instance import instance
from .logs import logs
from .packages import packages
from .readiness import readiness
from .session import session


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Installation log level (default from config)",
)
@click.option("--verbose", "-v", is_flag=True, help="Echo log records to stderr")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.option(
    "--otlp-endpoint",
    envvar="OTEL_EXPORTER_OTLP_ENDPOINT",
    default=None,
    help="Export traces and metrics to this OTLP gRPC endpoint",
)
@click.pass_context
def main(ctx, log_level, verbose, no_color, otlp_endpoint):
    """runnerops - Self-hosted GitHub Actions runner operations."""
    overrides = {"log_level": log_level} if log_level else {}
    if otlp_endpoint:
        overrides["otlp_endpoint"] = otlp_endpoint
    config = get_config(**overrides)

    log_path = None
    try:
        log_path = configure_installation_log(config, console=verbose)
    except PermissionError as e:
        click.echo(f"Warning: installation log disabled: {e}", err=True)

    ctx.obj = CliContext(config=config, use_colors=not no_color, log_path=log_path)

    if config.otlp_endpoint:
        from runnerops.otel import configure_otel_providers, flush_otel_providers

        if configure_otel_providers(config.otlp_endpoint):
            ctx.call_on_close(flush_otel_providers)


# Register standalone commands
main.add_command(readiness)
main.add_command(health)
main.add_command(diagnostics)

# Register command groups
main.add_command(errors)
main.add_command(session)
main.add_command(packages)
main.add_command(logs)
main.add_command(instance)


if __name__ == "__main__":
    main()
