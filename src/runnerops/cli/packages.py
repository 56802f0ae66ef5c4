"""runnerops packages - retried, recorded package installation."""

from __future__ import annotations

import signal
import sys
from pathlib import Path

import click

from runnerops.advice import format_error_report
from runnerops.cli.context import CliContext, pass_context
from runnerops.errors import ErrorKind, SessionConflictError
from runnerops.installer import InstallationStep, RunnerInstaller
from runnerops.steps import install_packages, install_runner_dependencies, update_package_lists


@click.group()
def packages():
    """Package installation through the retrying executor."""
    pass


@packages.command("install")
@click.argument("names", nargs=-1, required=False)
@click.option("--max-attempts", type=click.IntRange(min=1), default=None, help="Attempts per step")
@click.option("--timeout", type=float, default=None, help="Per-attempt timeout in seconds")
@click.option("--skip-readiness", is_flag=True, help="Do not gate on system readiness")
@click.option("--runner-deps", is_flag=True, help="Also run the runner's installdependencies.sh")
@click.option(
    "--artifact",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Session artifact path (default under the log directory)",
)
@pass_context
def packages_install(obj: CliContext, names, max_attempts, timeout, skip_readiness, runner_deps, artifact):
    """Update package lists and install NAMES in one recorded session.

    Exits 0 on success, otherwise with the error code of the failed step.

    Examples:

        runnerops packages install curl jq

        runnerops packages install --runner-deps --max-attempts 2
    """
    if not names and not runner_deps:
        raise click.UsageError("Give package names, --runner-deps, or both")

    config = obj.config
    system = obj.system
    try:
        steps = [
            InstallationStep(
                "update_package_lists",
                update_package_lists(system),
                max_attempts=max_attempts,
                timeout=timeout,
                requires_idle_package_manager=True,
                timeout_kind=ErrorKind.LOCK_TIMEOUT,
            ),
        ]
        if names:
            steps.append(InstallationStep(
                "install_packages",
                install_packages(system, names),
                max_attempts=max_attempts,
                timeout=timeout,
                requires_idle_package_manager=True,
                timeout_kind=ErrorKind.LOCK_TIMEOUT,
            ))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="NAMES")
    if runner_deps:
        steps.append(InstallationStep(
            "install_runner_dependencies",
            install_runner_dependencies(system, config),
            max_attempts=max_attempts,
            timeout=timeout,
            requires_idle_package_manager=True,
        ))

    installer = RunnerInstaller(config, system, artifact_path=artifact)
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: installer.prober.cancel.set())
    try:
        result = installer.run(steps, session_name="package-install", check_readiness=not skip_readiness)
    except SessionConflictError as e:
        raise click.ClickException(str(e))
    except KeyboardInterrupt:
        installer.prober.cancel.set()
        raise click.Abort()
    finally:
        signal.signal(signal.SIGTERM, previous)

    click.echo(result.session.summary(use_colors=obj.use_colors))

    if not result.succeeded:
        failed = result.failed_step
        message = failed.detail if failed else "System readiness validation failed"
        context = f"step {failed.name}, attempt {failed.attempt_index + 1}" if failed else "readiness gate"
        bundle = failed.diagnostics if failed else None
        click.echo(format_error_report(result.error_kind, message, context=context, bundle=bundle), err=True)
    sys.exit(result.exit_code)
