"""
Timeout, retry and threshold constants for runnerops.

Centralizes the numeric defaults so probes, the step executor and the
health checks agree on them. ``RunnerOpsConfig`` reads its defaults from
here; override through configuration rather than editing these values.
"""

from __future__ import annotations

# =============================================================================
# Retry / Backoff
# =============================================================================

# First backoff delay between attempts
BACKOFF_BASE_DELAY_S = 30.0

# Upper bound on any single backoff delay
BACKOFF_MAX_DELAY_S = 300.0

# Attempts per step, including the first one
DEFAULT_MAX_ATTEMPTS = 4

# HTTP status codes treated as transient
RETRYABLE_HTTP_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# =============================================================================
# Boot Completion
# =============================================================================

# How long to wait for cloud-init before giving up
BOOT_COMPLETION_TIMEOUT_S = 600.0

# Poll interval while waiting for boot completion
BOOT_POLL_INTERVAL_S = 10.0

# =============================================================================
# Resource Thresholds
# =============================================================================

# Free space required on the root filesystem
MIN_ROOT_DISK_MB = 2048

# Free space required on /tmp
MIN_TMP_DISK_MB = 500

# Available memory below which a warning is raised
MIN_MEMORY_MB = 1024

# =============================================================================
# Network Probe Timeouts
# =============================================================================

# TCP connect, ping and DNS lookups
NETWORK_PROBE_TIMEOUT_S = 5.0

# HTTP requests against GitHub and status pages
HTTP_PROBE_TIMEOUT_S = 10.0

# GitHub REST calls made by the health checks
GITHUB_API_TIMEOUT_S = 10.0

# =============================================================================
# Subprocess / Check Timeouts
# =============================================================================

# Default timeout for local commands (cloud-init status, svc.sh, dpkg)
SUBPROCESS_DEFAULT_TIMEOUT_S = 30.0

# Per-check bound inside the health aggregator
HEALTH_CHECK_TIMEOUT_S = 15.0

# Package installs can legitimately take a while
PACKAGE_INSTALL_TIMEOUT_S = 900.0

# =============================================================================
# Log Retention
# =============================================================================

# Rotate the installation log past this size
LOG_MAX_BYTES = 10 * 1024 * 1024

# Number of rotated log files kept
LOG_BACKUP_COUNT = 5

# Default age for cleanup_logs
LOG_RETENTION_DAYS = 30
