"""
Stock installation step bodies.

Each factory returns a ``StepBody`` for ``StepExecutor.run_step``. Bodies
run apt non-interactively through ``SystemQuery`` and raise
``CommandFailedError`` on a non-zero exit so the classifier sees the
command's stderr.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Optional, Sequence

from runnerops.config import RunnerOpsConfig
from runnerops.contracts import paths
from runnerops.contracts.timeouts import PACKAGE_INSTALL_TIMEOUT_S
from runnerops.errors import CommandFailedError, ErrorKind, InstallationError
from runnerops.executor import StepBody, StepContext
from runnerops.system import SystemQuery

__all__ = [
    "apt_command",
    "update_package_lists",
    "install_packages",
    "install_runner_dependencies",
]

logger = logging.getLogger(__name__)

# Debian package name with an optional =version pin
_PACKAGE_NAME = re.compile(r"^[a-z0-9][a-z0-9+.\-]+(=[A-Za-z0-9.+~:\-]+)?$")


def _needs_sudo() -> bool:
    return os.geteuid() != 0


def apt_command(args: Sequence[str], use_sudo: Optional[bool] = None) -> list[str]:
    """
    ``apt-get`` invocation with the non-interactive environment inlined.

    ``sudo`` drops the caller's environment, so the variables are passed as
    ``NAME=value`` arguments in front of the command.
    """
    if use_sudo is None:
        use_sudo = _needs_sudo()
    assignments = [f"{k}={v}" for k, v in paths.NONINTERACTIVE_APT_ENV.items()]
    base = ["apt-get", *args]
    if use_sudo:
        return ["sudo", *assignments, *base]
    return ["env", *assignments, *base]


def _run(system: SystemQuery, command: list[str], timeout: float, cwd: Optional[str] = None) -> str:
    result = system.run(command, timeout=timeout, env=paths.NONINTERACTIVE_APT_ENV, cwd=cwd)
    if not result.ok:
        raise CommandFailedError(result)
    return result.stdout


def update_package_lists(
    system: SystemQuery,
    timeout: float = PACKAGE_INSTALL_TIMEOUT_S,
    use_sudo: Optional[bool] = None,
) -> StepBody:
    """``apt-get update``."""

    def body(ctx: StepContext) -> str:
        _run(system, apt_command(["update", "-y"], use_sudo), timeout)
        return "Package lists updated"

    return body


def install_packages(
    system: SystemQuery,
    packages: Sequence[str],
    timeout: float = PACKAGE_INSTALL_TIMEOUT_S,
    use_sudo: Optional[bool] = None,
) -> StepBody:
    """
    ``apt-get install`` for ``packages``.

    Raises:
        ValueError: no packages, or a name apt would not accept
    """
    packages = list(packages)
    if not packages:
        raise ValueError("No packages to install")
    invalid = [p for p in packages if not _PACKAGE_NAME.match(p)]
    if invalid:
        raise ValueError(f"Invalid package names: {', '.join(invalid)}")

    def body(ctx: StepContext) -> str:
        command = apt_command(["install", "-y", "--no-install-recommends", *packages], use_sudo)
        _run(system, command, timeout)
        return f"Installed {len(packages)} packages: {' '.join(packages)}"

    return body


def install_runner_dependencies(
    system: SystemQuery,
    config: RunnerOpsConfig,
    timeout: float = PACKAGE_INSTALL_TIMEOUT_S,
    use_sudo: Optional[bool] = None,
) -> StepBody:
    """Run the runner's bundled ``bin/installdependencies.sh``."""

    def body(ctx: StepContext) -> str:
        script = config.get_runner_path("bin", "installdependencies.sh")
        if not system.path_exists(str(script)):
            raise InstallationError(
                ErrorKind.DEPENDENCY_MISSING,
                f"Runner dependency installer not found: {script}",
                {"runner_dir": config.runner_dir},
            )
        sudo = _needs_sudo() if use_sudo is None else use_sudo
        command = ["sudo", "./bin/installdependencies.sh"] if sudo else ["./bin/installdependencies.sh"]
        _run(system, command, timeout, cwd=str(config.get_runner_path()))
        return "Runner dependencies installed"

    return body
