"""
Kind-specific remediation text and the operator error report.

``REMEDIATION`` is static data: one checklist per ``ErrorKind``. Nothing
here is computed from the failure itself. ``format_error_report`` lays out
the full incident report shown when a step escalates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from runnerops.errors import ErrorKind

if TYPE_CHECKING:
    from runnerops.diagnostics import DiagnosticBundle

__all__ = [
    "Remediation",
    "REMEDIATION",
    "SUPPORT_RESOURCES",
    "NEXT_STEPS",
    "advise",
    "format_error_report",
]


@dataclass(frozen=True)
class Remediation:
    """Troubleshooting checklist for one error kind."""

    title: str
    causes: tuple[str, ...]
    steps: tuple[tuple[str, tuple[str, ...]], ...]
    notes: tuple[str, ...] = field(default_factory=tuple)

    def render(self) -> str:
        lines = [self.title, "=" * len(self.title), ""]
        if self.causes:
            lines.append("This can be caused by:")
            lines.extend(f"  - {cause}" for cause in self.causes)
            lines.append("")
        lines.append("Troubleshooting steps:")
        for i, (description, commands) in enumerate(self.steps, start=1):
            lines.append(f"{i}. {description}")
            lines.extend(f"     {cmd}" for cmd in commands)
        if self.notes:
            lines.append("")
            lines.extend(f"Note: {note}" for note in self.notes)
        return "\n".join(lines)


_GENERAL_STEPS = (
    ("Check system logs:", ("sudo journalctl -xe",)),
    ("Verify system status:", ("systemctl status",)),
    ("Check available resources:", ("df -h && free -h",)),
    ("Test network connectivity:", ("ping -c 3 github.com",)),
    ("Collect diagnostic information:", ("runnerops diagnostics --scope all",)),
)

_CLOUD_INIT = Remediation(
    title="Cloud-init troubleshooting",
    causes=(
        "The instance is still initializing",
        "System updates are running in the background",
        "Network connectivity is slow",
    ),
    steps=(
        ("Check cloud-init status:", ("cloud-init status --long",)),
        ("Monitor cloud-init logs:", ("tail -f /var/log/cloud-init-output.log",)),
        ("Check for running processes:", ("ps aux | grep cloud-init",)),
        ("If cloud-init is stuck, reset it and reboot:", ("sudo cloud-init clean --reboot",)),
    ),
    notes=("Raising the boot timeout (RUNNEROPS_BOOT_TIMEOUT_S) gives slow instances more time.",),
)

_PACKAGE_MANAGER = Remediation(
    title="Package manager troubleshooting",
    causes=(
        "Automatic updates are running",
        "Another package installation is in progress",
        "A previous installation was interrupted",
    ),
    steps=(
        ("Check what is holding the locks:", ("sudo lsof /var/lib/dpkg/lock*",)),
        ("Check running package processes:", ("ps aux | grep -E '(apt|dpkg|unattended-upgrade)'",)),
        ("Wait for automatic updates to complete:", ("sudo systemctl status unattended-upgrades",)),
        (
            "If processes are stuck:",
            ("sudo killall apt apt-get dpkg", "sudo dpkg --configure -a", "sudo apt-get update"),
        ),
    ),
    notes=("Only kill package manager processes when you are sure they are stuck.",),
)

_LOCK_TIMEOUT = Remediation(
    title="Package lock timeout troubleshooting",
    causes=(
        "A package manager process held the dpkg lock past the wait limit",
        "A crashed dpkg run left the database in an interrupted state",
    ),
    steps=(
        ("Identify the lock holder:", ("sudo lsof /var/lib/dpkg/lock-frontend /var/lib/dpkg/lock",)),
        ("Check the apt timers:", ("systemctl list-timers 'apt-daily*'",)),
        ("Repair an interrupted dpkg run:", ("sudo dpkg --configure -a",)),
        ("Retry once the lock is free:", ("runnerops packages install <package>",)),
    ),
)

_PACKAGE_INSTALL = Remediation(
    title="Package installation troubleshooting",
    causes=(
        "Package lists are stale or a mirror is unavailable",
        "A package post-install script failed",
        "The dpkg database is in an inconsistent state",
    ),
    steps=(
        ("Refresh package lists:", ("sudo apt-get update",)),
        ("Repair broken installs:", ("sudo dpkg --configure -a", "sudo apt-get install -f")),
        ("Review the recent apt history:", ("tail -n 50 /var/log/apt/history.log",)),
        ("Review the terminal log:", ("tail -n 100 /var/log/apt/term.log",)),
    ),
)

_DEPENDENCY = Remediation(
    title="Missing dependency troubleshooting",
    causes=(
        "A package required by the runner is not installed",
        "The package name is not available on this distribution release",
    ),
    steps=(
        ("Check the runner libraries:", ("dpkg -l libc6 libgcc1 libgssapi-krb5-2 libstdc++6 zlib1g",)),
        ("Check the required commands:", ("command -v curl tar ps id systemctl",)),
        ("Install the runner dependencies:", ("sudo ./bin/installdependencies.sh",)),
        ("Search for a renamed package:", ("apt-cache search <name>",)),
    ),
)

_NETWORK = Remediation(
    title="Network troubleshooting",
    causes=(
        "Internet connection problems",
        "DNS resolution issues",
        "Firewall or security group restrictions",
        "GitHub service outages",
    ),
    steps=(
        ("Test basic connectivity:", ("ping -c 3 8.8.8.8",)),
        ("Test DNS resolution:", ("nslookup github.com",)),
        ("Test GitHub connectivity:", ("curl -I https://api.github.com",)),
        (
            "Check security group rules (AWS):",
            ("Ensure outbound HTTPS (443) is allowed", "Ensure outbound HTTP (80) is allowed"),
        ),
        ("Check GitHub status:", ("https://www.githubstatus.com/",)),
    ),
)

_RESOURCES = Remediation(
    title="Resource troubleshooting",
    causes=("Low disk space", "Insufficient memory", "High system load"),
    steps=(
        ("Check disk space:", ("df -h",)),
        ("Free up disk space:", ("sudo apt-get clean", "sudo apt-get autoremove")),
        ("Check memory usage:", ("free -h",)),
        ("Check system load:", ("top",)),
        ("Use a larger instance type if resources are consistently low", ()),
    ),
)

_SYSTEM_NOT_READY = Remediation(
    title="System readiness troubleshooting",
    causes=(
        "The instance has not finished booting",
        "A required system service has not started yet",
    ),
    steps=(
        ("Check overall boot state:", ("systemctl is-system-running",)),
        ("List failed units:", ("systemctl --failed",)),
        ("Re-run the readiness checks:", ("runnerops readiness",)),
    ),
)

_RUNNER_DOWNLOAD = Remediation(
    title="Runner download troubleshooting",
    causes=(
        "The runner release URL is unreachable",
        "The downloaded archive is truncated or corrupt",
    ),
    steps=(
        ("Test release downloads:", ("curl -I https://github.com/actions/runner/releases/latest",)),
        ("Test asset hosting:", ("curl -I https://objects.githubusercontent.com",)),
        ("Remove the partial archive and retry:", ("rm -f ~/actions-runner/actions-runner-linux-*.tar.gz",)),
    ),
)

_RUNNER_CONFIG = Remediation(
    title="Runner configuration troubleshooting",
    causes=(
        "The registration token expired (tokens are valid for one hour)",
        "The runner directory is already configured for another repository",
        "A runner with the same name already exists",
    ),
    steps=(
        ("Inspect the current configuration:", ("cat ~/actions-runner/.runner",)),
        ("Remove the old configuration:", ("cd ~/actions-runner && ./config.sh remove --token <token>",)),
        ("Request a fresh registration token and configure again", ()),
    ),
)

_RUNNER_SERVICE = Remediation(
    title="Runner service troubleshooting",
    causes=(
        "The runner service was never installed",
        "The service crashed or failed to start",
    ),
    steps=(
        ("Check the service:", ("cd ~/actions-runner && sudo ./svc.sh status",)),
        ("Install and start it:", ("sudo ./svc.sh install", "sudo ./svc.sh start")),
        ("Read the service journal:", ("journalctl -u 'actions.runner.*' -n 100",)),
        ("Read the runner diagnostics:", ("ls -lt ~/actions-runner/_diag",)),
    ),
)

_GITHUB_AUTH = Remediation(
    title="GitHub authentication troubleshooting",
    causes=(
        "Invalid or expired Personal Access Token (PAT)",
        "Insufficient token permissions",
        "Repository access restrictions",
    ),
    steps=(
        ("Verify your PAT is valid:", ('curl -H "Authorization: token YOUR_PAT" https://api.github.com/user',)),
        ("Check PAT permissions:", ("Ensure the 'repo' scope is enabled",)),
        (
            "Verify repository access:",
            (
                "Check you have admin permissions on the repository",
                "Ensure Actions are enabled in repository settings",
            ),
        ),
        ("Generate a new PAT if needed:", ("https://github.com/settings/tokens",)),
    ),
    notes=("Required PAT scopes: repo, workflow.",),
)

_GITHUB_REGISTRATION = Remediation(
    title="GitHub runner registration troubleshooting",
    causes=(
        "The token lacks admin rights on the repository",
        "GitHub Actions is disabled for the repository",
        "A stale runner with the same name is still registered",
    ),
    steps=(
        (
            "List registered runners:",
            ('curl -H "Authorization: token YOUR_PAT" https://api.github.com/repos/OWNER/REPO/actions/runners',),
        ),
        ("Remove stale runners in Settings > Actions > Runners", ()),
        ("Check runner health:", ("runnerops health",)),
    ),
)

_GENERAL = Remediation(
    title="General troubleshooting",
    causes=(),
    steps=_GENERAL_STEPS,
)

REMEDIATION: dict[ErrorKind, Remediation] = {
    ErrorKind.SYSTEM_NOT_READY: _SYSTEM_NOT_READY,
    ErrorKind.CLOUD_INIT_TIMEOUT: _CLOUD_INIT,
    ErrorKind.INSUFFICIENT_RESOURCES: _RESOURCES,
    ErrorKind.NETWORK_CONNECTIVITY: _NETWORK,
    ErrorKind.PACKAGE_MANAGER_BUSY: _PACKAGE_MANAGER,
    ErrorKind.PACKAGE_INSTALL_FAILED: _PACKAGE_INSTALL,
    ErrorKind.DEPENDENCY_MISSING: _DEPENDENCY,
    ErrorKind.LOCK_TIMEOUT: _LOCK_TIMEOUT,
    ErrorKind.RUNNER_DOWNLOAD_FAILED: _RUNNER_DOWNLOAD,
    ErrorKind.RUNNER_CONFIG_FAILED: _RUNNER_CONFIG,
    ErrorKind.RUNNER_SERVICE_FAILED: _RUNNER_SERVICE,
    ErrorKind.GITHUB_AUTH_FAILED: _GITHUB_AUTH,
    ErrorKind.GITHUB_REGISTRATION_FAILED: _GITHUB_REGISTRATION,
    ErrorKind.UNKNOWN: _GENERAL,
}

NEXT_STEPS = (
    "Review the error details and troubleshooting steps above",
    "Address any identified issues",
    "Retry the installation with the same command",
    "If issues persist, save this diagnostic report for support",
)

SUPPORT_RESOURCES = (
    ("GitHub Actions Documentation", "https://docs.github.com/en/actions"),
    (
        "GitHub Actions Runner Documentation",
        "https://docs.github.com/en/actions/hosting-your-own-runners",
    ),
    ("Ubuntu Package Management", "https://help.ubuntu.com/community/AptGet/Howto"),
)


def advise(kind: ErrorKind) -> str:
    """Static remediation checklist for ``kind``."""
    return REMEDIATION.get(kind, _GENERAL).render()


def format_error_report(
    kind: ErrorKind,
    message: str,
    context: Optional[str] = None,
    bundle: Optional["DiagnosticBundle"] = None,
    timestamp: Optional[datetime] = None,
) -> str:
    """
    Full operator report for an escalated failure.

    Sections: error details, kind-specific troubleshooting, the diagnostic
    bundle (when one was collected), next steps and support resources.
    """
    ts = (timestamp or datetime.now(timezone.utc)).isoformat()
    lines = [
        "ERROR DETAILS",
        "-------------",
        f"Error Code: {kind.code} ({kind.label})",
        f"Error Message: {message}",
    ]
    if context:
        lines.append(f"Context: {context}")
    lines.extend([f"Timestamp: {ts}", "", advise(kind), ""])

    if bundle is not None:
        lines.extend([bundle.render(), ""])

    lines.extend(["NEXT STEPS", "----------"])
    lines.extend(f"{i}. {step}" for i, step in enumerate(NEXT_STEPS, start=1))
    lines.extend(["", "Support Resources:"])
    lines.extend(f"  - {name}: {url}" for name, url in SUPPORT_RESOURCES)
    return "\n".join(lines)
