"""
Pytest configuration and fixtures for runnerops tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Generator, Mapping, Optional, Sequence

import pytest

from runnerops.config import RunnerOpsConfig, reset_config
from runnerops.system import CommandResult, FileInfo, HttpResult


# ============================================================================
# Environment Fixtures
# ============================================================================

_ENV_VARS = (
    "GH_PAT",
    "GITHUB_TOKEN",
    "GITHUB_USERNAME",
    "GITHUB_REPOSITORY",
    "RUNNER_NAME",
    "RUNNER_LOG_DIR",
    "EC2_INSTANCE_ID",
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
    "OTEL_EXPORTER_OTLP_ENDPOINT",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path) -> Generator[None, None, None]:
    """Strip runner-related environment and keep .env lookups inside tmp_path."""
    for key in list(os.environ):
        if key.startswith("RUNNEROPS_"):
            monkeypatch.delenv(key, raising=False)
    for key in _ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path) -> RunnerOpsConfig:
    """Config with every path under tmp_path and short timeouts."""
    return RunnerOpsConfig(
        log_dir=str(tmp_path / "logs"),
        fallback_log_dir=str(tmp_path / "fallback-logs"),
        runner_dir=str(tmp_path / "actions-runner"),
        workflow_dir=str(tmp_path / "workflows"),
        health_report_path=str(tmp_path / "health-report.json"),
        runner_name="gha_aws_runner",
        boot_timeout_s=60,
        boot_poll_interval_s=10,
        check_timeout_s=5,
    )


@pytest.fixture
def repo_config(config) -> RunnerOpsConfig:
    """Config with a token and a fully named repository."""
    return config.model_copy(update={
        "github_token": "ghp_test",
        "github_owner": "octo",
        "github_repository": "robot",
    })


# ============================================================================
# Fake host
# ============================================================================


@dataclass
class FakeSystem:
    """
    In-memory ``SystemQuery``.

    ``commands`` maps a command prefix (tuple) to a result or a callable
    producing one; unmatched commands succeed with empty output, except
    ``systemctl is-active`` which reports every unit inactive. Every
    ``run`` call is appended to ``calls``.
    """

    commands: Dict[tuple, object] = field(default_factory=lambda: {
        ("systemctl", "is-active"): CommandResult(("systemctl",), 3, "inactive\n"),
    })
    available: set = field(default_factory=lambda: {"curl", "tar", "ps", "id", "systemctl"})
    paths: set = field(default_factory=set)
    files: Dict[str, str] = field(default_factory=dict)
    listings: Dict[tuple, list] = field(default_factory=dict)
    unwritable: set = field(default_factory=set)
    disk: Dict[str, Optional[float]] = field(default_factory=lambda: {"/": 20000.0, "/tmp": 5000.0})
    memory: Optional[float] = 4096.0
    running: set = field(default_factory=set)
    locked: set = field(default_factory=set)
    holders: Dict[str, list] = field(default_factory=dict)
    tcp_ok: bool = True
    tcp_down: set = field(default_factory=set)
    ping_ok: bool = True
    dns: Dict[str, Optional[str]] = field(default_factory=dict)
    http: Dict[str, HttpResult] = field(default_factory=dict)
    facts: Dict[str, str] = field(default_factory=lambda: {
        "hostname": "runner-1",
        "user": "ubuntu",
        "os": "Ubuntu 22.04.4 LTS",
        "kernel": "6.5.0-1014-aws",
        "architecture": "x86_64",
        "cpu_count": "2",
        "process_count": "120",
        "uptime": "0:05:00",
        "load_average": "0.10 0.05 0.01",
        "memory_total_mb": "3900",
        "memory_available_mb": "3100",
    })
    calls: list = field(default_factory=list)
    http_calls: list = field(default_factory=list)

    def run(
        self,
        command: Sequence[str],
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        cmd = tuple(command)
        self.calls.append(cmd)
        for prefix in sorted(self.commands, key=len, reverse=True):
            if cmd[:len(prefix)] == prefix:
                outcome = self.commands[prefix]
                if callable(outcome):
                    outcome = outcome(cmd)
                if isinstance(outcome, CommandResult):
                    return CommandResult(cmd, outcome.returncode, outcome.stdout, outcome.stderr,
                                         outcome.found, outcome.timed_out)
                return CommandResult(cmd, 0, str(outcome))
        return CommandResult(cmd, 0)

    def which(self, name: str) -> Optional[str]:
        return f"/usr/bin/{name}" if name in self.available else None

    def path_exists(self, path: str) -> bool:
        return path in self.paths or path in self.files

    def read_text(self, path: str, max_bytes: int = 65536) -> Optional[str]:
        text = self.files.get(path)
        return text[-max_bytes:] if text is not None else None

    def list_files(self, directory: str, pattern: str = "*") -> list[FileInfo]:
        return list(self.listings.get((directory, pattern), []))

    def is_writable(self, path: str) -> bool:
        return path not in self.unwritable

    def disk_free_mb(self, path: str) -> Optional[float]:
        return self.disk.get(path)

    def memory_available_mb(self) -> Optional[float]:
        return self.memory

    def running_processes(self, names: Sequence[str]) -> list[str]:
        return [n for n in names if n in self.running]

    def lock_held(self, path: str) -> bool:
        return path in self.locked

    def lock_holders(self, path: str) -> list[str]:
        return list(self.holders.get(path, []))

    def tcp_connect(self, host: str, port: int, timeout: float = 5.0) -> bool:
        return self.tcp_ok and (host, port) not in self.tcp_down and host not in self.tcp_down

    def ping(self, host: str, timeout: float = 5.0) -> bool:
        return self.ping_ok

    def resolve(self, host: str, timeout: float = 5.0) -> Optional[str]:
        return self.dns.get(host, "140.82.112.3")

    def http_get(self, url: str, timeout: float = 10.0, headers: Optional[Mapping[str, str]] = None) -> HttpResult:
        self.http_calls.append((url, dict(headers or {})))
        return self.http.get(url, HttpResult(url=url, status_code=200, text="ok"))

    def host_facts(self) -> dict[str, str]:
        return dict(self.facts)


@pytest.fixture
def system() -> FakeSystem:
    return FakeSystem()


# ============================================================================
# Time Fixtures
# ============================================================================


class FakeClock:
    """Monotonic clock whose sleeps only advance virtual time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []
        self.on_sleep: Optional[Callable[[float], None]] = None

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(seconds)

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
