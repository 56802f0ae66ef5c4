"""
Centralized configuration for runnerops.

Uses Pydantic BaseSettings for environment variable integration
and validation. Components never read the environment themselves: they
receive a ``RunnerOpsConfig`` instance explicitly.

Configuration sources (in order of precedence):
1. Explicit constructor arguments
2. Environment variables (RUNNEROPS_*, plus the provisioning variables
   GH_PAT, GITHUB_USERNAME, GITHUB_REPOSITORY, RUNNER_NAME,
   EC2_INSTANCE_ID, AWS_REGION and RUNNER_LOG_DIR)
3. .env file
4. Default values

Example:
    from runnerops.config import get_config

    config = get_config()
    print(config.repository_slug)  # "owner/repo" or None

    # Override at runtime
    config = get_config(runner_name="build-box")
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from runnerops.contracts import paths, timeouts


class RunnerOpsConfig(BaseSettings):
    """
    Central configuration for runnerops.

    All settings can be overridden via environment variables
    prefixed with RUNNEROPS_.

    Example:
        export RUNNEROPS_RUNNER_DIR=/opt/actions-runner
        export GH_PAT=ghp_xxx
    """

    model_config = SettingsConfigDict(
        env_prefix="RUNNEROPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # GitHub
    github_api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the GitHub REST API",
    )
    github_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("RUNNEROPS_GITHUB_TOKEN", "GH_PAT"),
        description="Personal access token with repo scope",
    )
    github_owner: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("RUNNEROPS_GITHUB_OWNER", "GITHUB_USERNAME"),
        description="Owner (user) of the repository the runner serves",
    )
    github_repository: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("RUNNEROPS_GITHUB_REPOSITORY", "GITHUB_REPOSITORY"),
        description="Repository name, or owner/name",
    )

    # Runner
    runner_name: str = Field(
        default="gha_aws_runner",
        validation_alias=AliasChoices("RUNNEROPS_RUNNER_NAME", "RUNNER_NAME"),
        description="Name the runner registers under",
    )
    runner_dir: str = Field(
        default="~/actions-runner",
        description="Directory holding the runner installation",
    )
    workflow_dir: str = Field(
        default=".github/workflows",
        description="Workflow directory inspected by the workflow_files check",
    )

    # AWS
    aws_region: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "RUNNEROPS_AWS_REGION", "AWS_REGION", "AWS_DEFAULT_REGION"
        ),
        description="AWS region of the runner instance",
    )
    ec2_instance_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("RUNNEROPS_EC2_INSTANCE_ID", "EC2_INSTANCE_ID"),
        description="EC2 instance id hosting the runner",
    )

    # Logging
    log_dir: str = Field(
        default=paths.DEFAULT_LOG_DIR,
        validation_alias=AliasChoices("RUNNEROPS_LOG_DIR", "RUNNER_LOG_DIR"),
        description="Directory for the installation log and session artifact",
    )
    fallback_log_dir: str = Field(
        default=paths.FALLBACK_LOG_DIR,
        description="Used when log_dir is not writable",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for runnerops",
    )
    max_log_bytes: int = Field(
        default=timeouts.LOG_MAX_BYTES,
        ge=1024,
        description="Rotate the installation log past this size",
    )
    max_log_files: int = Field(
        default=timeouts.LOG_BACKUP_COUNT,
        ge=1,
        description="Rotated installation logs kept",
    )

    # Health
    health_report_path: str = Field(
        default=paths.DEFAULT_HEALTH_REPORT_PATH,
        description="Where the JSON health report is written",
    )
    check_timeout_s: float = Field(
        default=timeouts.HEALTH_CHECK_TIMEOUT_S,
        gt=0,
        description="Per-check bound inside the health aggregator",
    )

    # Retry
    retry_base_delay_s: float = Field(
        default=timeouts.BACKOFF_BASE_DELAY_S,
        ge=0,
        description="First backoff delay between attempts",
    )
    retry_max_delay_s: float = Field(
        default=timeouts.BACKOFF_MAX_DELAY_S,
        ge=0,
        description="Upper bound on a single backoff delay",
    )
    max_attempts: int = Field(
        default=timeouts.DEFAULT_MAX_ATTEMPTS,
        ge=1,
        description="Attempts per step, including the first",
    )

    # Readiness
    boot_timeout_s: float = Field(
        default=timeouts.BOOT_COMPLETION_TIMEOUT_S,
        ge=0,
        description="How long to wait for cloud-init to finish",
    )
    boot_poll_interval_s: float = Field(
        default=timeouts.BOOT_POLL_INTERVAL_S,
        gt=0,
        description="Poll interval while waiting for boot completion",
    )
    min_root_disk_mb: int = Field(
        default=timeouts.MIN_ROOT_DISK_MB,
        ge=0,
        description="Free MB required on /",
    )
    min_tmp_disk_mb: int = Field(
        default=timeouts.MIN_TMP_DISK_MB,
        ge=0,
        description="Free MB required on /tmp",
    )
    min_memory_mb: int = Field(
        default=timeouts.MIN_MEMORY_MB,
        ge=0,
        description="Available MB below which memory is flagged",
    )

    # Probe timeouts
    network_timeout_s: float = Field(
        default=timeouts.NETWORK_PROBE_TIMEOUT_S,
        gt=0,
        description="TCP, ping and DNS probe timeout",
    )
    http_timeout_s: float = Field(
        default=timeouts.HTTP_PROBE_TIMEOUT_S,
        gt=0,
        description="HTTP probe and GitHub API timeout",
    )
    command_timeout_s: float = Field(
        default=timeouts.SUBPROCESS_DEFAULT_TIMEOUT_S,
        gt=0,
        description="Default timeout for local commands",
    )

    # OTLP export
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP gRPC endpoint; telemetry export is off when unset",
    )

    @field_validator("runner_dir", "log_dir", "fallback_log_dir", "health_report_path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ and environment variables in paths."""
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("github_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("otlp_endpoint")
    @classmethod
    def validate_endpoint(cls, v: Optional[str]) -> Optional[str]:
        """Drop the protocol prefix, the gRPC exporter adds its own."""
        if v is None:
            return v
        if v.startswith("http://"):
            v = v[7:]
        elif v.startswith("https://"):
            v = v[8:]
        return v or None

    @property
    def repository_slug(self) -> Optional[str]:
        """``owner/repo`` when both halves are known."""
        if self.github_repository and "/" in self.github_repository:
            return self.github_repository
        if self.github_owner and self.github_repository:
            return f"{self.github_owner}/{self.github_repository}"
        return None

    @property
    def repository_url(self) -> Optional[str]:
        slug = self.repository_slug
        return f"https://github.com/{slug}" if slug else None

    def get_runner_path(self, *parts: str) -> Path:
        """Path inside the runner installation directory."""
        return Path(self.runner_dir).joinpath(*parts)


# Global singleton
_config: Optional[RunnerOpsConfig] = None


def get_config(**overrides) -> RunnerOpsConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        RunnerOpsConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = RunnerOpsConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
