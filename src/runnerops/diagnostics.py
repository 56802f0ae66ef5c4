"""
Point-in-time diagnostics for incident reports.

``DiagnosticsCollector.collect(scope)`` gathers read-only facts about the
host, the package manager, the network and GitHub reachability. It never
raises: a missing tool or a failed sub-check becomes a ``"not available"``
fact, and GitHub authentication is reported as not tested when no token
is configured. Every network sub-check is individually time-bounded.

Usage::

    collector = DiagnosticsCollector(LocalSystem(), config)
    bundle = collector.collect(DiagnosticScope.NETWORK)
    print(bundle.render())
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from runnerops.config import RunnerOpsConfig
from runnerops.contracts import paths
from runnerops.system import SystemQuery

logger = logging.getLogger(__name__)

__all__ = [
    "DiagnosticScope",
    "DiagnosticSection",
    "DiagnosticBundle",
    "DiagnosticsCollector",
    "NOT_AVAILABLE",
    "NOT_TESTED",
]

NOT_AVAILABLE = "not available"
NOT_TESTED = "not tested (no credentials supplied)"


class DiagnosticScope(str, Enum):
    SYSTEM = "system"
    PACKAGE_MANAGER = "package_manager"
    NETWORK = "network"
    GITHUB = "github"
    ALL = "all"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class DiagnosticSection(BaseModel):
    """One titled block of ``name -> value`` facts."""

    model_config = ConfigDict(extra="forbid")

    scope: DiagnosticScope
    title: str
    facts: dict[str, str] = Field(default_factory=dict)


class DiagnosticBundle(BaseModel):
    """Diagnostics collected for one scope (or all of them)."""

    model_config = ConfigDict(extra="forbid")

    scope: DiagnosticScope
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sections: list[DiagnosticSection] = Field(default_factory=list)

    def section(self, scope: DiagnosticScope) -> Optional[DiagnosticSection]:
        for section in self.sections:
            if section.scope == scope:
                return section
        return None

    def render(self) -> str:
        rule = "=" * 79
        lines = [
            rule,
            "DIAGNOSTIC REPORT",
            f"Generated: {self.generated_at.isoformat()}",
            rule,
        ]
        for section in self.sections:
            lines.extend(["", f"=== {section.title} ==="])
            width = max((len(k) for k in section.facts), default=0)
            for key, value in section.facts.items():
                if "\n" in value:
                    lines.append(f"{key}:")
                    lines.extend(f"  {line}" for line in value.splitlines())
                else:
                    lines.append(f"{key.ljust(width)} : {value}")
        lines.extend(["", rule, "END OF DIAGNOSTIC REPORT", rule])
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class DiagnosticsCollector:
    """Read-only fact gathering over a ``SystemQuery``."""

    def __init__(self, system: SystemQuery, config: RunnerOpsConfig):
        self.system = system
        self.config = config
        self._collectors: dict[DiagnosticScope, tuple[str, Callable[[], dict[str, str]]]] = {
            DiagnosticScope.SYSTEM: ("SYSTEM DIAGNOSTICS", self._collect_system),
            DiagnosticScope.PACKAGE_MANAGER: ("PACKAGE MANAGER DIAGNOSTICS", self._collect_package_manager),
            DiagnosticScope.NETWORK: ("NETWORK DIAGNOSTICS", self._collect_network),
            DiagnosticScope.GITHUB: ("GITHUB DIAGNOSTICS", self._collect_github),
        }

    def collect(self, scope: DiagnosticScope | str = DiagnosticScope.ALL) -> DiagnosticBundle:
        scope = DiagnosticScope(scope)
        if scope == DiagnosticScope.ALL:
            scopes = [
                DiagnosticScope.SYSTEM,
                DiagnosticScope.PACKAGE_MANAGER,
                DiagnosticScope.NETWORK,
                DiagnosticScope.GITHUB,
            ]
        else:
            scopes = [scope]

        bundle = DiagnosticBundle(scope=scope)
        for item in scopes:
            bundle.sections.append(self._collect_section(item))
        return bundle

    def _collect_section(self, scope: DiagnosticScope) -> DiagnosticSection:
        title, collector = self._collectors[scope]
        logger.info("Collecting %s diagnostic information", scope.value)
        try:
            facts = collector()
        except Exception as e:
            logger.warning("Diagnostics for %s failed: %s", scope.value, e)
            facts = {"collection": _unavailable(e)}
        return DiagnosticSection(scope=scope, title=title, facts=facts)

    def _fact(self, facts: dict[str, str], key: str, read: Callable[[], str]) -> None:
        """Store one fact, recording a failing read as not available."""
        try:
            facts[key] = read()
        except Exception as e:
            logger.warning("Diagnostic %s unavailable: %s", key, e)
            facts[key] = _unavailable(e)

    # -- system --------------------------------------------------------------

    def _collect_system(self) -> dict[str, str]:
        facts = {"timestamp": datetime.now(timezone.utc).isoformat()}
        try:
            host = self.system.host_facts()
        except Exception as e:
            logger.warning("Diagnostic host_facts unavailable: %s", e)
            facts["host_facts"] = _unavailable(e)
            host = {}
        for key in ("hostname", "user", "os", "kernel", "architecture", "uptime"):
            facts[key] = host.get(key, NOT_AVAILABLE)
        self._fact(facts, "working_directory", os.getcwd)
        facts["memory_total_mb"] = host.get("memory_total_mb", NOT_AVAILABLE)
        facts["memory_available_mb"] = host.get("memory_available_mb", NOT_AVAILABLE)
        for path in ("/", "/tmp"):
            self._fact(facts, f"disk_free_mb[{path}]", lambda path=path: self._disk_free(path))
        self._fact(facts, "network_interfaces", lambda: self._command_output(["ip", "-brief", "addr", "show"]))
        self._fact(facts, "dns_servers", self._dns_servers)
        facts["load_average"] = host.get("load_average", NOT_AVAILABLE)
        facts["process_count"] = host.get("process_count", NOT_AVAILABLE)
        return facts

    def _disk_free(self, path: str) -> str:
        free = self.system.disk_free_mb(path)
        return f"{free:.0f}" if free is not None else NOT_AVAILABLE

    def _dns_servers(self) -> str:
        resolv = self.system.read_text("/etc/resolv.conf")
        if resolv is None:
            return NOT_AVAILABLE
        servers = [
            line.split()[1]
            for line in resolv.splitlines()
            if line.startswith("nameserver") and len(line.split()) > 1
        ]
        return ", ".join(servers) or NOT_AVAILABLE

    # -- package manager -----------------------------------------------------

    def _collect_package_manager(self) -> dict[str, str]:
        facts: dict[str, str] = {}
        self._fact(facts, "apt_version", self._apt_version)

        names = list(paths.PACKAGE_MANAGER_PROCESSES) + ["packagekitd"]
        try:
            running = set(self.system.running_processes(names))
        except Exception as e:
            logger.warning("Diagnostic process list unavailable: %s", e)
            for name in names:
                facts[f"process[{name}]"] = _unavailable(e)
        else:
            for name in names:
                facts[f"process[{name}]"] = "running" if name in running else "not running"

        for lock in paths.PACKAGE_MANAGER_LOCK_FILES:
            self._fact(facts, f"lock[{lock}]", lambda lock=lock: self._lock_status(lock))

        for service in paths.PACKAGE_MANAGER_SERVICES:
            self._fact(facts, f"service[{service}]", lambda service=service: self._service_state(service))

        self._fact(facts, "apt_history", self._apt_history)
        return facts

    def _apt_version(self) -> str:
        version = self.system.run(["apt", "--version"], timeout=self.config.network_timeout_s)
        return version.stdout.splitlines()[0] if version.ok and version.stdout else NOT_AVAILABLE

    def _service_state(self, service: str) -> str:
        result = self.system.run(["systemctl", "is-active", service], timeout=self.config.network_timeout_s)
        state = result.stdout.strip()
        return state if result.found and state else NOT_AVAILABLE

    def _apt_history(self) -> str:
        history = self.system.read_text(paths.APT_HISTORY_LOG, max_bytes=16384)
        if history is None:
            return NOT_AVAILABLE
        entries = [
            line
            for line in history.splitlines()[-20:]
            if line.startswith(("Start-Date", "Commandline", "End-Date"))
        ]
        return "\n".join(entries[-10:]) or "empty"

    def _lock_status(self, lock: str) -> str:
        if not self.system.path_exists(lock):
            return "not found"
        holders = self.system.lock_holders(lock)
        if holders:
            return "held by " + "; ".join(holders)
        if self.system.lock_held(lock):
            return "held (holder unknown)"
        return "available"

    # -- network -------------------------------------------------------------

    def _collect_network(self) -> dict[str, str]:
        timeout = self.config.network_timeout_s
        facts: dict[str, str] = {}
        for host in paths.DIAGNOSTIC_PING_TARGETS:
            self._fact(
                facts, f"ping[{host}]",
                lambda host=host: "SUCCESS" if self.system.ping(host, timeout) else "FAILED",
            )
        for host in paths.DIAGNOSTIC_DNS_NAMES:
            self._fact(facts, f"dns[{host}]", lambda host=host: self.system.resolve(host, timeout) or "FAILED")
        for host, port in paths.DIAGNOSTIC_TCP_TARGETS:
            self._fact(
                facts, f"tcp[{host}:{port}]",
                lambda host=host, port=port: "SUCCESS" if self.system.tcp_connect(host, port, timeout) else "FAILED",
            )
        self._fact(facts, "default_route", lambda: self._command_output(["ip", "route", "show", "default"]))
        return facts

    # -- github --------------------------------------------------------------

    def _collect_github(self) -> dict[str, str]:
        timeout = self.config.http_timeout_s
        api = self.config.github_api_url
        facts: dict[str, str] = {}

        self._fact(
            facts, "api",
            lambda: "accessible" if self.system.http_get(f"{api}/zen", timeout=timeout).ok else "not accessible",
        )

        token = self.config.github_token
        if not token:
            facts["authentication"] = NOT_TESTED
            facts["repository_access"] = NOT_TESTED
        else:
            headers = {
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github+json",
            }
            self._fact(
                facts, "authentication",
                lambda: _describe_auth(self.system.http_get(f"{api}/user", timeout=timeout, headers=headers).status_code),
            )

            slug = self.config.repository_slug
            if slug:
                self._fact(
                    facts, "repository_access",
                    lambda: _describe_repo(
                        self.system.http_get(f"{api}/repos/{slug}", timeout=timeout, headers=headers).status_code
                    ),
                )
            else:
                facts["repository_access"] = "not tested (repository not configured)"

        self._fact(
            facts, "status_page",
            lambda: "accessible" if self.system.http_get(paths.GITHUB_STATUS_URL, timeout=timeout).ok else "not accessible",
        )
        return facts

    def _command_output(self, command: list[str]) -> str:
        result = self.system.run(command, timeout=self.config.network_timeout_s)
        if not result.ok or not result.stdout.strip():
            return NOT_AVAILABLE
        return result.stdout.strip()


def _unavailable(e: Exception) -> str:
    return f"{NOT_AVAILABLE} ({type(e).__name__}: {e})"


def _describe_auth(status_code: Optional[int]) -> str:
    if status_code is None:
        return "FAILED (network error)"
    if status_code == 200:
        return "SUCCESS"
    if status_code == 401:
        return "FAILED (invalid token)"
    if status_code == 403:
        return "FAILED (insufficient permissions)"
    return f"FAILED (HTTP {status_code})"


def _describe_repo(status_code: Optional[int]) -> str:
    if status_code is None:
        return "FAILED (network error)"
    if status_code == 200:
        return "SUCCESS"
    if status_code == 404:
        return "FAILED (repository not found)"
    if status_code == 403:
        return "FAILED (access denied)"
    return f"FAILED (HTTP {status_code})"
