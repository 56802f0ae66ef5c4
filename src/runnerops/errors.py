"""
Error taxonomy and exception hierarchy for runnerops.

``ErrorKind`` is the closed set of failure categories. Each kind carries a
stable numeric code that doubles as the process exit code of the CLI
(1xx system and readiness, 2xx package manager, 3xx runner and GitHub).
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

if TYPE_CHECKING:
    from runnerops.system import CommandResult

__all__ = [
    "ErrorKind",
    "RunnerOpsError",
    "InstallationError",
    "CommandFailedError",
    "SessionError",
    "SessionConflictError",
    "SessionClosedError",
    "SessionNotSealedError",
    "AwsError",
]


class ErrorKind(str, Enum):
    """Failure categories driving remediation, diagnostics and retry."""

    SYSTEM_NOT_READY = "system_not_ready"
    CLOUD_INIT_TIMEOUT = "cloud_init_timeout"
    INSUFFICIENT_RESOURCES = "insufficient_resources"
    NETWORK_CONNECTIVITY = "network_connectivity"
    PACKAGE_MANAGER_BUSY = "package_manager_busy"
    PACKAGE_INSTALL_FAILED = "package_install_failed"
    DEPENDENCY_MISSING = "dependency_missing"
    LOCK_TIMEOUT = "lock_timeout"
    RUNNER_DOWNLOAD_FAILED = "runner_download_failed"
    RUNNER_CONFIG_FAILED = "runner_config_failed"
    RUNNER_SERVICE_FAILED = "runner_service_failed"
    GITHUB_AUTH_FAILED = "github_auth_failed"
    GITHUB_REGISTRATION_FAILED = "github_registration_failed"
    UNKNOWN = "unknown"

    @property
    def code(self) -> int:
        return _ERROR_CODES[self]

    @property
    def label(self) -> str:
        """Upper-case name as shown in operator reports."""
        return self.name

    @classmethod
    def from_code(cls, code: int) -> "ErrorKind":
        """
        Raises:
            ValueError: if no kind carries ``code``
        """
        for kind, value in _ERROR_CODES.items():
            if value == code:
                return kind
        raise ValueError(f"Unknown error code: {code}")

    @classmethod
    def parse(cls, text: Union[str, int]) -> "ErrorKind":
        """
        Resolve a kind from its name, value or numeric code.

        Raises:
            ValueError: if ``text`` names no kind
        """
        if isinstance(text, int):
            return cls.from_code(text)
        candidate = text.strip()
        if candidate.isdigit():
            return cls.from_code(int(candidate))
        lowered = candidate.lower().replace("-", "_")
        for kind in cls:
            if kind.value == lowered:
                return kind
        raise ValueError(f"Unknown error kind: {text!r}")


_ERROR_CODES = {
    ErrorKind.SYSTEM_NOT_READY: 100,
    ErrorKind.CLOUD_INIT_TIMEOUT: 101,
    ErrorKind.INSUFFICIENT_RESOURCES: 102,
    ErrorKind.NETWORK_CONNECTIVITY: 103,
    ErrorKind.PACKAGE_MANAGER_BUSY: 200,
    ErrorKind.PACKAGE_INSTALL_FAILED: 201,
    ErrorKind.DEPENDENCY_MISSING: 202,
    ErrorKind.LOCK_TIMEOUT: 203,
    ErrorKind.RUNNER_DOWNLOAD_FAILED: 300,
    ErrorKind.RUNNER_CONFIG_FAILED: 301,
    ErrorKind.RUNNER_SERVICE_FAILED: 302,
    ErrorKind.GITHUB_AUTH_FAILED: 303,
    ErrorKind.GITHUB_REGISTRATION_FAILED: 304,
    ErrorKind.UNKNOWN: 999,
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class RunnerOpsError(Exception):
    """Base class for all runnerops errors."""


class InstallationError(RunnerOpsError):
    """
    A step failure whose category is already known.

    Step bodies raise this when they can name the failure themselves;
    the classifier then uses ``kind`` as-is.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        self.kind = kind
        self.message = message
        self.details = details or {}
        super().__init__(f"[{kind.label}] {message}")


class CommandFailedError(RunnerOpsError):
    """A local command exited non-zero or could not be started."""

    def __init__(self, result: "CommandResult", message: Optional[str] = None):
        self.result = result
        cmd = " ".join(result.command)
        text = message or f"Command failed ({result.returncode}): {cmd}"
        stderr = result.stderr.strip()
        if stderr:
            text += f"\n  stderr: {stderr[:500]}"
        super().__init__(text)


class SessionError(RunnerOpsError):
    """Misuse of the installation session lifecycle."""


class SessionConflictError(SessionError):
    """Another installation session is already open on this host."""


class SessionClosedError(SessionError):
    """The session was already sealed."""


class SessionNotSealedError(SessionError):
    """The operation needs a sealed session."""


class AwsError(RunnerOpsError):
    """An EC2 or STS call failed."""
