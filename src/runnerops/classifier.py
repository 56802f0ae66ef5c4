"""
Failure classification.

``classify`` maps any failure symptom (an exception, a command result,
an HTTP status, raw output text) to exactly one ``ErrorKind``. The mapping
is an ordered rule table: rules are evaluated top to bottom, the first
match wins, and ``ErrorKind.UNKNOWN`` is the fallback. An
``InstallationError`` already names its kind and bypasses the table.

Rule order matters where patterns overlap. Lock timeouts come before
generic lock contention, and cloud-init timeouts before generic network
timeouts.

Usage::

    from runnerops.classifier import classify, is_retryable

    kind = classify(exc)
    if is_retryable(kind):
        ...
"""

from __future__ import annotations

import re
import socket
from dataclasses import dataclass
from typing import Callable, Optional, Union

import httpx

from runnerops.contracts.timeouts import RETRYABLE_HTTP_STATUS_CODES
from runnerops.diagnostics import DiagnosticScope
from runnerops.errors import CommandFailedError, ErrorKind, InstallationError
from runnerops.system import CommandResult, HttpResult

__all__ = [
    "Symptom",
    "ClassificationRule",
    "RULES",
    "RETRYABLE_KINDS",
    "classify",
    "match_rule",
    "is_retryable",
    "diagnostic_scope_for",
]

SymptomInput = Union[BaseException, CommandResult, HttpResult, int, str, None]


# ---------------------------------------------------------------------------
# Symptom normalization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Symptom:
    """Normalized view of a failure that the rules inspect."""

    text: str = ""
    status_code: Optional[int] = None
    exception: Optional[BaseException] = None

    @classmethod
    def from_input(cls, raw: SymptomInput) -> "Symptom":
        if raw is None:
            return cls()
        if isinstance(raw, bool):
            return cls(text=str(raw).lower())
        if isinstance(raw, int):
            return cls(status_code=raw)
        if isinstance(raw, str):
            return cls(text=raw.lower())
        if isinstance(raw, CommandResult):
            return cls(text=_command_text(raw))
        if isinstance(raw, HttpResult):
            return cls(text=(raw.error or raw.text).lower(), status_code=raw.status_code)
        if isinstance(raw, CommandFailedError):
            return cls(text=_command_text(raw.result) + "\n" + str(raw).lower(), exception=raw)
        if isinstance(raw, httpx.HTTPStatusError):
            return cls(
                text=str(raw).lower(),
                status_code=raw.response.status_code,
                exception=raw,
            )
        return cls(text=f"{type(raw).__name__}: {raw}".lower(), exception=raw)


def _command_text(result: CommandResult) -> str:
    return f"{' '.join(result.command)}\n{result.output}".lower()


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    predicate: Callable[[Symptom], bool]
    kind: ErrorKind


def _status(*codes: int) -> Callable[[Symptom], bool]:
    wanted = frozenset(codes)
    return lambda s: s.status_code in wanted


def _text(pattern: str) -> Callable[[Symptom], bool]:
    regex = re.compile(pattern)
    return lambda s: bool(s.text) and regex.search(s.text) is not None


def _exception(*types: type) -> Callable[[Symptom], bool]:
    return lambda s: s.exception is not None and isinstance(s.exception, types)


RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule("http_auth", _status(401, 403), ErrorKind.GITHUB_AUTH_FAILED),
    ClassificationRule(
        "http_transient",
        lambda s: s.status_code in RETRYABLE_HTTP_STATUS_CODES
        or (s.status_code is not None and 500 <= s.status_code < 600),
        ErrorKind.NETWORK_CONNECTIVITY,
    ),
    ClassificationRule(
        "github_auth_text",
        _text(r"bad credentials|requires authentication|authentication failed|401 unauthorized|403 forbidden|resource not accessible by"),
        ErrorKind.GITHUB_AUTH_FAILED,
    ),
    ClassificationRule(
        "runner_registration",
        _text(r"registration token|failed to register|runner registration|already exists.*runner|http 422"),
        ErrorKind.GITHUB_REGISTRATION_FAILED,
    ),
    ClassificationRule(
        "lock_timeout",
        _text(r"timed out waiting for .*lock|lock timeout|could not acquire .*lock within"),
        ErrorKind.LOCK_TIMEOUT,
    ),
    ClassificationRule(
        "package_manager_lock",
        _text(r"could not get lock|unable to acquire the dpkg frontend lock|unable to lock|is another process using it|waiting for cache lock|dpkg was interrupted"),
        ErrorKind.PACKAGE_MANAGER_BUSY,
    ),
    ClassificationRule(
        "cloud_init_timeout",
        _text(r"cloud-init.*(timeout|timed out)|(timeout|timed out).*cloud-init"),
        ErrorKind.CLOUD_INIT_TIMEOUT,
    ),
    ClassificationRule(
        "resources_exhausted",
        _text(r"no space left on device|insufficient (disk|memory|resources)|cannot allocate memory|out of memory"),
        ErrorKind.INSUFFICIENT_RESOURCES,
    ),
    ClassificationRule(
        "memory_error",
        _exception(MemoryError),
        ErrorKind.INSUFFICIENT_RESOURCES,
    ),
    ClassificationRule(
        "runner_download",
        _text(r"actions-runner-linux|failed to download runner|runner (package|archive|tarball)|gzip: stdin: (not in gzip format|unexpected end of file)"),
        ErrorKind.RUNNER_DOWNLOAD_FAILED,
    ),
    ClassificationRule(
        "network_exception",
        _exception(
            httpx.TransportError,
            socket.timeout,
            socket.gaierror,
            ConnectionError,
            TimeoutError,
        ),
        ErrorKind.NETWORK_CONNECTIVITY,
    ),
    ClassificationRule(
        "network_text",
        _text(r"could not resolve|temporary failure (in name resolution|resolving)|name or service not known|connection (refused|timed out|reset)|network is unreachable|no route to host|failed to connect|ssl(_| )error"),
        ErrorKind.NETWORK_CONNECTIVITY,
    ),
    ClassificationRule(
        "dependency_missing",
        _text(r"unable to locate package|has no installation candidate|unmet dependencies|command not found|missing dependenc|libicu|no such file or directory.*\.so"),
        ErrorKind.DEPENDENCY_MISSING,
    ),
    ClassificationRule(
        "runner_config",
        _text(r"config\.sh|runner is already configured|(^|[\s/])\.runner\b|not configured"),
        ErrorKind.RUNNER_CONFIG_FAILED,
    ),
    ClassificationRule(
        "runner_service",
        _text(r"svc\.sh|actions\.runner\.|systemctl|failed to start|service (failed|not found)"),
        ErrorKind.RUNNER_SERVICE_FAILED,
    ),
    ClassificationRule(
        "package_install",
        _text(r"dpkg: error processing|sub-process /usr/bin/dpkg returned an error|e: package|apt-get .*(install|update)|failed to fetch|errors were encountered"),
        ErrorKind.PACKAGE_INSTALL_FAILED,
    ),
    ClassificationRule(
        "system_not_ready",
        _text(r"system not ready|boot (is )?not (yet )?complete|still booting"),
        ErrorKind.SYSTEM_NOT_READY,
    ),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def match_rule(symptom: SymptomInput) -> Optional[ClassificationRule]:
    """First rule matching ``symptom``, or None when nothing matches."""
    normalized = Symptom.from_input(symptom)
    for rule in RULES:
        if rule.predicate(normalized):
            return rule
    return None


def classify(symptom: SymptomInput) -> ErrorKind:
    """
    Map a failure symptom to exactly one ErrorKind.

    Total and deterministic: any input yields a kind, and the same input
    always yields the same kind.
    """
    if isinstance(symptom, InstallationError):
        return symptom.kind
    rule = match_rule(symptom)
    return rule.kind if rule else ErrorKind.UNKNOWN


RETRYABLE_KINDS = frozenset({
    ErrorKind.SYSTEM_NOT_READY,
    ErrorKind.CLOUD_INIT_TIMEOUT,
    ErrorKind.NETWORK_CONNECTIVITY,
    ErrorKind.PACKAGE_MANAGER_BUSY,
    ErrorKind.LOCK_TIMEOUT,
    ErrorKind.RUNNER_DOWNLOAD_FAILED,
})


def is_retryable(kind: ErrorKind) -> bool:
    """Transient, environment-induced kinds are retried; the rest escalate."""
    return kind in RETRYABLE_KINDS


_SCOPES = {
    ErrorKind.SYSTEM_NOT_READY: DiagnosticScope.SYSTEM,
    ErrorKind.CLOUD_INIT_TIMEOUT: DiagnosticScope.SYSTEM,
    ErrorKind.INSUFFICIENT_RESOURCES: DiagnosticScope.SYSTEM,
    ErrorKind.NETWORK_CONNECTIVITY: DiagnosticScope.NETWORK,
    ErrorKind.PACKAGE_MANAGER_BUSY: DiagnosticScope.PACKAGE_MANAGER,
    ErrorKind.PACKAGE_INSTALL_FAILED: DiagnosticScope.PACKAGE_MANAGER,
    ErrorKind.DEPENDENCY_MISSING: DiagnosticScope.PACKAGE_MANAGER,
    ErrorKind.LOCK_TIMEOUT: DiagnosticScope.PACKAGE_MANAGER,
    ErrorKind.RUNNER_DOWNLOAD_FAILED: DiagnosticScope.NETWORK,
    ErrorKind.RUNNER_CONFIG_FAILED: DiagnosticScope.GITHUB,
    ErrorKind.RUNNER_SERVICE_FAILED: DiagnosticScope.SYSTEM,
    ErrorKind.GITHUB_AUTH_FAILED: DiagnosticScope.GITHUB,
    ErrorKind.GITHUB_REGISTRATION_FAILED: DiagnosticScope.GITHUB,
    ErrorKind.UNKNOWN: DiagnosticScope.ALL,
}


def diagnostic_scope_for(kind: ErrorKind) -> DiagnosticScope:
    """Diagnostic scope collected when a failure of ``kind`` escalates."""
    return _SCOPES.get(kind, DiagnosticScope.ALL)
