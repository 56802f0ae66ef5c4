"""
Well-known host paths, hosts and names used by probes and checks.
"""

from __future__ import annotations

# =============================================================================
# Package Manager
# =============================================================================

PACKAGE_MANAGER_PROCESSES = (
    "apt",
    "apt-get",
    "aptitude",
    "dpkg",
    "unattended-upgrade",
)

PACKAGE_MANAGER_LOCK_FILES = (
    "/var/lib/dpkg/lock",
    "/var/lib/dpkg/lock-frontend",
    "/var/cache/apt/archives/lock",
    "/var/lib/apt/lists/lock",
)

PACKAGE_MANAGER_SERVICES = (
    "unattended-upgrades",
    "apt-daily",
    "apt-daily-upgrade",
)

# Units active only while an automatic update run is in progress
# (unattended-upgrades.service stays active on idle hosts)
SYSTEM_UPDATE_SERVICES = (
    "apt-daily.service",
    "apt-daily-upgrade.service",
)

SYSTEM_UPDATE_PROCESSES = ("update-manager",)

APT_HISTORY_LOG = "/var/log/apt/history.log"

# Environment applied to every non-interactive apt invocation
NONINTERACTIVE_APT_ENV = {
    "DEBIAN_FRONTEND": "noninteractive",
    "NEEDRESTART_MODE": "a",
}

# =============================================================================
# Boot Completion
# =============================================================================

CLOUD_INIT_BOOT_FINISHED = "/var/lib/cloud/instance/boot-finished"

# =============================================================================
# Network
# =============================================================================

PING_TARGETS = ("8.8.8.8", "1.1.1.1")

GITHUB_API_HOSTS = (
    "api.github.com",
    "github.com",
    "objects.githubusercontent.com",
)

GITHUB_ZEN_URL = "https://api.github.com/zen"

GITHUB_STATUS_URL = "https://www.githubstatus.com/api/v2/status.json"

PACKAGE_REPOSITORY_HOSTS = (
    "archive.ubuntu.com",
    "security.ubuntu.com",
    "download.docker.com",
    "deb.nodesource.com",
)

DIAGNOSTIC_PING_TARGETS = ("8.8.8.8", "1.1.1.1", "github.com", "api.github.com")

DIAGNOSTIC_DNS_NAMES = ("github.com", "api.github.com", "archive.ubuntu.com")

DIAGNOSTIC_TCP_TARGETS = (
    ("github.com", 443),
    ("api.github.com", 443),
    ("archive.ubuntu.com", 80),
)

# =============================================================================
# Runner
# =============================================================================

RUNNER_REQUIRED_FILES = ("config.sh", "run.sh", "svc.sh")

RUNNER_REQUIRED_COMMANDS = ("curl", "tar", "ps", "id", "systemctl")

RUNNER_REQUIRED_PACKAGES = (
    "libc6",
    "libgcc1",
    "libgssapi-krb5-2",
    "libstdc++6",
    "zlib1g",
)

WRITABLE_DIRS = ("/tmp", "/var/tmp", "~")

# =============================================================================
# Log Files
# =============================================================================

DEFAULT_LOG_DIR = "/var/log/github-runner"
FALLBACK_LOG_DIR = "~/.github-runner-logs"
INSTALLATION_LOG_NAME = "runner-installation.log"
SESSION_ARTIFACT_NAME = "installation-metrics.json"
SESSION_LOCK_NAME = ".installation-session.lock"
DEFAULT_HEALTH_REPORT_PATH = "/tmp/runner-health-report.json"
