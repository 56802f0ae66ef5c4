"""
Readiness probes for a freshly booted runner host.

Each probe checks one dimension (boot completion, disk, memory, network,
package-manager idleness, ...) and returns a ``ReadinessReport``. Probes
never raise and never mutate the host; failures are typed results.

``validate_system_readiness`` runs the composite pre-installation check.
Boot completion, disk space and network reachability are blocking; memory,
writable directories, package repositories, a busy package manager and
automatic system updates only warn. Both of the latter are left to the step
executor, which re-probes before every attempt that needs the package
manager.

Usage::

    prober = ReadinessProber(LocalSystem(), config)
    result = prober.validate_system_readiness()
    if not result.passed:
        sys.exit(result.error_kind.code)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from runnerops.config import RunnerOpsConfig
from runnerops.contracts import paths
from runnerops.errors import ErrorKind
from runnerops.system import SystemQuery

logger = logging.getLogger(__name__)

__all__ = [
    "ReadinessReport",
    "ReadinessResult",
    "ReadinessProber",
    "BootStatus",
]


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class ReadinessReport(BaseModel):
    """Outcome of one readiness probe."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    dimension: str
    passed: bool
    detail: str = ""
    warning: bool = False
    blocking: bool = False
    error_kind: Optional[ErrorKind] = None
    measured: Optional[float] = Field(
        None, description="Measured value (MB free, seconds waited, ...)"
    )

    @property
    def status_label(self) -> str:
        if not self.passed:
            return "FAIL"
        return "WARN" if self.warning else "PASS"


class ReadinessResult(BaseModel):
    """Composite pre-installation readiness verdict."""

    model_config = ConfigDict(extra="forbid")

    passed: bool
    reports: list[ReadinessReport] = Field(default_factory=list)
    error_kind: Optional[ErrorKind] = None

    @property
    def blocking_failures(self) -> list[ReadinessReport]:
        return [r for r in self.reports if not r.passed and r.blocking]

    @property
    def warnings(self) -> list[ReadinessReport]:
        return [r for r in self.reports if r.warning or (not r.passed and not r.blocking)]

    @property
    def exit_code(self) -> int:
        if self.passed:
            return 0
        return (self.error_kind or ErrorKind.SYSTEM_NOT_READY).code


class BootStatus:
    DONE = "done"
    RUNNING = "running"
    ERROR = "error"
    ABSENT = "absent"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Prober
# ---------------------------------------------------------------------------


class ReadinessProber:
    """
    Readiness probes over a ``SystemQuery``.

    Args:
        system: Host query implementation
        config: Thresholds, timeouts and paths
        clock: Monotonic clock, injectable for tests
        sleeper: Replaces the cancellable wait between boot polls
        cancel: Event that aborts boot polling when set
    """

    def __init__(
        self,
        system: SystemQuery,
        config: RunnerOpsConfig,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Optional[Callable[[float], None]] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.system = system
        self.config = config
        self.clock = clock
        self.sleeper = sleeper
        self.cancel = cancel or threading.Event()

    # -- boot completion -----------------------------------------------------

    def boot_status(self) -> str:
        """
        Current cloud-init state.

        Sources, in order: the ``cloud-init`` tool's own status output, a
        running cloud-init process, the boot-finished marker file. When
        none of them is conclusive the boot is treated as complete.
        """
        if self.system.which("cloud-init") is None:
            return BootStatus.ABSENT

        result = self.system.run(["cloud-init", "status"], timeout=self.config.command_timeout_s)
        output = result.stdout
        if "status: done" in output:
            return BootStatus.DONE
        if "status: running" in output:
            return BootStatus.RUNNING
        if "status: error" in output:
            return BootStatus.ERROR

        if self.system.running_processes(["cloud-init"]):
            return BootStatus.RUNNING
        if self.system.path_exists(paths.CLOUD_INIT_BOOT_FINISHED):
            return BootStatus.DONE
        return BootStatus.UNKNOWN

    def probe_boot_completion(
        self,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> ReadinessReport:
        timeout = self.config.boot_timeout_s if timeout is None else timeout
        poll_interval = poll_interval or self.config.boot_poll_interval_s
        dimension = "boot_completion"
        start = self.clock()
        logger.info("Waiting for cloud-init to complete (timeout: %ss)", timeout)

        while True:
            status = self.boot_status()
            elapsed = self.clock() - start

            if status == BootStatus.ABSENT:
                return ReadinessReport(
                    dimension=dimension, passed=True, measured=elapsed,
                    detail="cloud-init not installed, assuming boot complete",
                )
            if status == BootStatus.DONE:
                return ReadinessReport(
                    dimension=dimension, passed=True, measured=elapsed,
                    detail=f"cloud-init completed after {elapsed:.0f}s",
                )
            if status == BootStatus.ERROR:
                logger.warning("cloud-init finished with errors, continuing")
                return ReadinessReport(
                    dimension=dimension, passed=True, warning=True, measured=elapsed,
                    detail="cloud-init completed with errors",
                )
            if status == BootStatus.UNKNOWN:
                return ReadinessReport(
                    dimension=dimension, passed=True, warning=True, measured=elapsed,
                    detail="cloud-init state undeterminable, assuming boot complete",
                )

            if elapsed >= timeout:
                logger.error("Timeout waiting for cloud-init after %.0fs", elapsed)
                return ReadinessReport(
                    dimension=dimension, passed=False, blocking=True, measured=elapsed,
                    error_kind=ErrorKind.CLOUD_INIT_TIMEOUT,
                    detail=f"cloud-init still running after {elapsed:.0f}s (timeout {timeout:.0f}s)",
                )

            logger.debug("cloud-init still running (%.0fs elapsed)", elapsed)
            if self._wait(min(poll_interval, max(timeout - elapsed, 0.0))):
                return ReadinessReport(
                    dimension=dimension, passed=False, blocking=True, measured=elapsed,
                    error_kind=ErrorKind.SYSTEM_NOT_READY,
                    detail="boot completion wait cancelled",
                )

    def _wait(self, seconds: float) -> bool:
        """Sleep between polls. Returns True when cancelled."""
        if self.sleeper is not None:
            self.sleeper(seconds)
            return self.cancel.is_set()
        return self.cancel.wait(seconds)

    # -- resources -----------------------------------------------------------

    def probe_disk_space(self, min_mb: Optional[int] = None, path: str = "/") -> ReadinessReport:
        min_mb = self.config.min_root_disk_mb if min_mb is None else min_mb
        dimension = f"disk_space:{path}"
        free = self.system.disk_free_mb(path)
        if free is None:
            return ReadinessReport(
                dimension=dimension, passed=False, blocking=True,
                error_kind=ErrorKind.INSUFFICIENT_RESOURCES,
                detail=f"Unable to determine free space on {path}",
            )
        if free < min_mb:
            logger.error("Insufficient disk space on %s: %.0fMB available, %sMB required", path, free, min_mb)
            return ReadinessReport(
                dimension=dimension, passed=False, blocking=True, measured=free,
                error_kind=ErrorKind.INSUFFICIENT_RESOURCES,
                detail=f"Insufficient disk space on {path}: {free:.0f}MB available, {min_mb}MB required",
            )
        return ReadinessReport(
            dimension=dimension, passed=True, measured=free,
            detail=f"{free:.0f}MB available on {path} ({min_mb}MB required)",
        )

    def probe_memory(self, min_mb: Optional[int] = None) -> ReadinessReport:
        min_mb = self.config.min_memory_mb if min_mb is None else min_mb
        available = self.system.memory_available_mb()
        if available is None:
            return ReadinessReport(
                dimension="memory", passed=True, warning=True,
                detail="Unable to determine available memory",
            )
        if available < min_mb:
            logger.warning("Low memory: %.0fMB available, %sMB recommended", available, min_mb)
            return ReadinessReport(
                dimension="memory", passed=True, warning=True, measured=available,
                error_kind=ErrorKind.INSUFFICIENT_RESOURCES,
                detail=f"Low memory: {available:.0f}MB available, {min_mb}MB recommended",
            )
        return ReadinessReport(
            dimension="memory", passed=True, measured=available,
            detail=f"{available:.0f}MB memory available",
        )

    def probe_writable_dirs(self, dirs: Sequence[str] = paths.WRITABLE_DIRS) -> ReadinessReport:
        unwritable = [d for d in dirs if not self.system.is_writable(d)]
        if unwritable:
            return ReadinessReport(
                dimension="writable_dirs", passed=True, warning=True,
                detail="Not writable: " + ", ".join(unwritable),
            )
        return ReadinessReport(
            dimension="writable_dirs", passed=True,
            detail="All required directories writable",
        )

    # -- network -------------------------------------------------------------

    def probe_network(self, required_hosts: Optional[Sequence[str]] = None) -> ReadinessReport:
        """
        Basic internet reachability plus the GitHub API.

        Basic connectivity means any public resolver answers a ping. GitHub
        needs one of ``required_hosts`` accepting TCP 443 and the zen
        endpoint answering.
        """
        hosts = list(required_hosts or paths.GITHUB_API_HOSTS)
        timeout = self.config.network_timeout_s
        problems = []

        if not any(self.system.ping(target, timeout) for target in paths.PING_TARGETS):
            problems.append("no basic network connectivity")

        github_ok = False
        for host in hosts:
            if self.system.tcp_connect(host, 443, timeout):
                zen = self.system.http_get(paths.GITHUB_ZEN_URL, timeout=self.config.http_timeout_s)
                if zen.ok:
                    github_ok = True
                    break
        if not github_ok:
            problems.append("cannot connect to GitHub API")

        if problems:
            logger.error("Network connectivity validation failed: %s", "; ".join(problems))
            return ReadinessReport(
                dimension="network", passed=False, blocking=True,
                error_kind=ErrorKind.NETWORK_CONNECTIVITY,
                detail="; ".join(problems),
            )
        return ReadinessReport(
            dimension="network", passed=True,
            detail="Internet and GitHub API reachable",
        )

    def probe_package_repositories(
        self, hosts: Sequence[str] = paths.PACKAGE_REPOSITORY_HOSTS
    ) -> ReadinessReport:
        timeout = self.config.network_timeout_s
        unreachable = [
            host for host in hosts
            if not (self.system.tcp_connect(host, 443, timeout) or self.system.tcp_connect(host, 80, timeout))
        ]
        reachable = len(hosts) - len(unreachable)
        if unreachable:
            return ReadinessReport(
                dimension="package_repositories", passed=True, warning=True,
                measured=float(reachable),
                detail=f"Package repositories reachable {reachable}/{len(hosts)}; unreachable: {', '.join(unreachable)}",
            )
        return ReadinessReport(
            dimension="package_repositories", passed=True, measured=float(reachable),
            detail=f"All {len(hosts)} package repositories reachable",
        )

    # -- package manager -----------------------------------------------------

    def probe_package_manager_idle(self) -> ReadinessReport:
        running = self.system.running_processes(paths.PACKAGE_MANAGER_PROCESSES)
        locked = [lock for lock in paths.PACKAGE_MANAGER_LOCK_FILES if self.system.lock_held(lock)]
        if running or locked:
            parts = []
            if running:
                parts.append("running: " + ", ".join(running))
            if locked:
                parts.append("locked: " + ", ".join(locked))
            return ReadinessReport(
                dimension="package_manager", passed=False,
                error_kind=ErrorKind.PACKAGE_MANAGER_BUSY,
                detail="Package manager busy (" + "; ".join(parts) + ")",
            )
        return ReadinessReport(
            dimension="package_manager", passed=True,
            detail="Package manager idle",
        )

    def probe_system_updates(self) -> ReadinessReport:
        """Automatic apt runs (apt-daily timers, update-manager) in progress."""
        active = []
        for service in paths.SYSTEM_UPDATE_SERVICES:
            result = self.system.run(
                ["systemctl", "is-active", "--quiet", service],
                timeout=self.config.command_timeout_s,
            )
            if result.ok:
                active.append(service)
        active.extend(self.system.running_processes(paths.SYSTEM_UPDATE_PROCESSES))
        if active:
            return ReadinessReport(
                dimension="system_updates", passed=True, warning=True,
                error_kind=ErrorKind.PACKAGE_MANAGER_BUSY,
                detail="System updates in progress: " + ", ".join(active),
            )
        return ReadinessReport(
            dimension="system_updates", passed=True,
            detail="No system updates in progress",
        )

    # -- post-install --------------------------------------------------------

    def probe_runner_dependencies(self) -> ReadinessReport:
        missing = [cmd for cmd in paths.RUNNER_REQUIRED_COMMANDS if self.system.which(cmd) is None]
        for package in paths.RUNNER_REQUIRED_PACKAGES:
            result = self.system.run(["dpkg", "-l", package], timeout=self.config.command_timeout_s)
            if not result.ok:
                missing.append(package)
        if missing:
            return ReadinessReport(
                dimension="runner_dependencies", passed=False, blocking=True,
                error_kind=ErrorKind.DEPENDENCY_MISSING,
                detail="Missing runner dependencies: " + " ".join(missing),
            )
        return ReadinessReport(
            dimension="runner_dependencies", passed=True,
            detail="All runner dependencies are installed",
        )

    def probe_runner_service(self) -> ReadinessReport:
        runner_dir = self.config.runner_dir
        if not self.system.path_exists(runner_dir):
            detail = f"Runner directory not found: {runner_dir}"
        elif not self.system.path_exists(str(self.config.get_runner_path("svc.sh"))):
            detail = f"Runner service script not found: {runner_dir}/svc.sh"
        else:
            result = self.system.run(
                ["sudo", "./svc.sh", "status"], timeout=self.config.command_timeout_s, cwd=runner_dir
            )
            if result.ok and "active (running)" in result.output:
                return ReadinessReport(
                    dimension="runner_service", passed=True,
                    detail="Runner service is active and running",
                )
            detail = "Runner service is not running" if result.ok else "Failed to check runner service status"
        return ReadinessReport(
            dimension="runner_service", passed=False, blocking=True,
            error_kind=ErrorKind.RUNNER_SERVICE_FAILED, detail=detail,
        )

    # -- composite -----------------------------------------------------------

    def validate_system_readiness(self, boot_timeout: Optional[float] = None) -> ReadinessResult:
        logger.info("Starting system readiness validation")
        reports = [
            self.probe_boot_completion(timeout=boot_timeout),
            self.probe_disk_space(self.config.min_root_disk_mb, "/"),
            self.probe_disk_space(self.config.min_tmp_disk_mb, "/tmp"),
            self.probe_memory(),
            self.probe_writable_dirs(),
            self.probe_network(),
            self.probe_package_repositories(),
            self.probe_package_manager_idle(),
            self.probe_system_updates(),
        ]
        blocking = [r for r in reports if not r.passed and r.blocking]
        passed = not blocking
        error_kind = blocking[0].error_kind if blocking else None
        if passed:
            logger.info("System readiness validation PASSED")
        else:
            logger.error(
                "System readiness validation FAILED: %s",
                "; ".join(f"{r.dimension}: {r.detail}" for r in blocking),
            )
        return ReadinessResult(passed=passed, reports=reports, error_kind=error_kind)

    def validate_runner_installation(self) -> ReadinessResult:
        """Post-install verification: runner dependencies and service."""
        reports = [self.probe_runner_dependencies(), self.probe_runner_service()]
        blocking = [r for r in reports if not r.passed and r.blocking]
        if blocking:
            logger.error(
                "Runner installation verification FAILED: %s",
                "; ".join(f"{r.dimension}: {r.detail}" for r in blocking),
            )
        return ReadinessResult(
            passed=not blocking,
            reports=reports,
            error_kind=blocking[0].error_kind if blocking else None,
        )
