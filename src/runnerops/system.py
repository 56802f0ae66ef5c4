"""
Host query abstraction.

Probes, diagnostics and health checks never touch the operating system
directly. They call a ``SystemQuery``; ``LocalSystem`` is the real
implementation and tests pass fakes.

Every query is bounded and none of them raise for ordinary failures
(missing tool, refused connection, unreadable file). Failures come back
as falsy values or ``None`` so callers can turn them into typed results.
"""

from __future__ import annotations

import errno
import fcntl
import getpass
import glob
import logging
import os
import platform
import shutil
import socket
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence, runtime_checkable

import httpx
import psutil

from runnerops.contracts.timeouts import (
    HTTP_PROBE_TIMEOUT_S,
    NETWORK_PROBE_TIMEOUT_S,
    SUBPROCESS_DEFAULT_TIMEOUT_S,
)

logger = logging.getLogger(__name__)

__all__ = [
    "CommandResult",
    "HttpResult",
    "FileInfo",
    "SystemQuery",
    "LocalSystem",
]

_MB = 1024 * 1024

# Linux TASK_COMM_LEN minus the trailing NUL
_COMM_LEN = 15


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a local command."""

    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    found: bool = True
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.found and not self.timed_out and self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, for pattern matching."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


@dataclass(frozen=True)
class HttpResult:
    """Outcome of an HTTP GET/POST. ``status_code`` is None on transport errors."""

    url: str
    status_code: Optional[int] = None
    text: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


@dataclass(frozen=True)
class FileInfo:
    path: str
    size: int
    mtime: float


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class SystemQuery(Protocol):
    """
    Read-mostly view of the host.

    ``run`` is the only member that may change host state, and only when
    the caller passes a mutating command (package installs).
    """

    def run(
        self,
        command: Sequence[str],
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        """Run a command; a missing executable yields ``found=False``."""
        ...

    def which(self, name: str) -> Optional[str]:
        ...

    def path_exists(self, path: str) -> bool:
        ...

    def read_text(self, path: str, max_bytes: int = 65536) -> Optional[str]:
        """Tail of a text file, or None when unreadable."""
        ...

    def list_files(self, directory: str, pattern: str = "*") -> list[FileInfo]:
        ...

    def is_writable(self, path: str) -> bool:
        ...

    def disk_free_mb(self, path: str) -> Optional[float]:
        ...

    def memory_available_mb(self) -> Optional[float]:
        ...

    def running_processes(self, names: Sequence[str]) -> list[str]:
        """Subset of ``names`` with at least one live process."""
        ...

    def lock_held(self, path: str) -> bool:
        ...

    def lock_holders(self, path: str) -> list[str]:
        ...

    def tcp_connect(self, host: str, port: int, timeout: float = NETWORK_PROBE_TIMEOUT_S) -> bool:
        ...

    def ping(self, host: str, timeout: float = NETWORK_PROBE_TIMEOUT_S) -> bool:
        ...

    def resolve(self, host: str, timeout: float = NETWORK_PROBE_TIMEOUT_S) -> Optional[str]:
        """First resolved address, or None."""
        ...

    def http_get(
        self,
        url: str,
        timeout: float = HTTP_PROBE_TIMEOUT_S,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResult:
        ...

    def host_facts(self) -> dict[str, str]:
        """Identity and load facts used by snapshots and diagnostics."""
        ...


# ---------------------------------------------------------------------------
# Local implementation
# ---------------------------------------------------------------------------


@dataclass
class LocalSystem:
    """``SystemQuery`` backed by subprocess, psutil, socket, fcntl and httpx."""

    default_timeout: float = SUBPROCESS_DEFAULT_TIMEOUT_S
    base_env: dict[str, str] = field(default_factory=lambda: dict(os.environ))

    def run(
        self,
        command: Sequence[str],
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        cmd = tuple(command)
        run_env = dict(self.base_env)
        if env:
            run_env.update(env)
        try:
            proc = subprocess.run(
                list(cmd),
                capture_output=True,
                text=True,
                timeout=timeout or self.default_timeout,
                env=run_env,
                cwd=cwd,
            )
        except FileNotFoundError:
            return CommandResult(cmd, 127, stderr=f"{cmd[0]}: command not found", found=False)
        except subprocess.TimeoutExpired as e:
            logger.debug("Command timed out after %ss: %s", e.timeout, " ".join(cmd))
            return CommandResult(
                cmd,
                124,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                timed_out=True,
            )
        except OSError as e:
            return CommandResult(cmd, 126, stderr=str(e))
        return CommandResult(cmd, proc.returncode, proc.stdout, proc.stderr)

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def path_exists(self, path: str) -> bool:
        return os.path.exists(os.path.expanduser(path))

    def read_text(self, path: str, max_bytes: int = 65536) -> Optional[str]:
        path = os.path.expanduser(path)
        try:
            size = os.path.getsize(path)
            with open(path, "rb") as f:
                if size > max_bytes:
                    f.seek(size - max_bytes)
                return f.read().decode("utf-8", errors="replace")
        except OSError:
            return None

    def list_files(self, directory: str, pattern: str = "*") -> list[FileInfo]:
        directory = os.path.expanduser(directory)
        files = []
        for path in sorted(glob.glob(os.path.join(directory, pattern))):
            try:
                st = os.stat(path)
            except OSError:
                continue
            if os.path.isfile(path):
                files.append(FileInfo(path=path, size=st.st_size, mtime=st.st_mtime))
        return files

    def is_writable(self, path: str) -> bool:
        path = os.path.expanduser(path)
        return os.path.isdir(path) and os.access(path, os.W_OK)

    def disk_free_mb(self, path: str) -> Optional[float]:
        try:
            return psutil.disk_usage(os.path.expanduser(path)).free / _MB
        except OSError:
            return None

    def memory_available_mb(self) -> Optional[float]:
        try:
            return psutil.virtual_memory().available / _MB
        except (OSError, RuntimeError):
            return None

    def running_processes(self, names: Sequence[str]) -> list[str]:
        # comm is truncated to 15 chars and scripts run under their interpreter,
        # so argv basenames are checked as well (like pgrep -f).
        seen = set()
        for proc in psutil.process_iter(["name", "cmdline"]):
            try:
                name = proc.info.get("name") or ""
                cmdline = proc.info.get("cmdline") or []
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            for wanted in names:
                if wanted not in seen and _process_matches(wanted, name, cmdline):
                    seen.add(wanted)
        return [n for n in names if n in seen]

    def lock_held(self, path: str) -> bool:
        """
        True when another process holds a POSIX lock on ``path``.

        dpkg and apt take fcntl record locks, so this probes with
        ``lockf`` rather than ``flock``. Without permission to open the
        file, ``fuser`` decides.
        """
        if not os.path.exists(path):
            return False
        try:
            fd = os.open(path, os.O_RDWR)
        except PermissionError:
            result = self.run(["fuser", path], timeout=NETWORK_PROBE_TIMEOUT_S)
            return result.found and result.returncode == 0
        except OSError:
            return False
        try:
            fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            if e.errno in (errno.EAGAIN, errno.EACCES):
                return True
            return False
        else:
            fcntl.lockf(fd, fcntl.LOCK_UN)
            return False
        finally:
            os.close(fd)

    def lock_holders(self, path: str) -> list[str]:
        result = self.run(["lsof", path], timeout=NETWORK_PROBE_TIMEOUT_S)
        if not result.ok:
            return []
        # First line is the lsof header
        return [line for line in result.stdout.splitlines()[1:] if line.strip()]

    def tcp_connect(self, host: str, port: int, timeout: float = NETWORK_PROBE_TIMEOUT_S) -> bool:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False

    def ping(self, host: str, timeout: float = NETWORK_PROBE_TIMEOUT_S) -> bool:
        wait = str(max(1, int(timeout)))
        result = self.run(["ping", "-c", "1", "-W", wait, host], timeout=timeout + 2)
        return result.ok

    def resolve(self, host: str, timeout: float = NETWORK_PROBE_TIMEOUT_S) -> Optional[str]:
        # getaddrinfo has no timeout of its own
        pool = ThreadPoolExecutor(max_workers=1)
        future = pool.submit(socket.getaddrinfo, host, None)
        try:
            infos = future.result(timeout=timeout)
        except (FutureTimeoutError, OSError):
            return None
        finally:
            pool.shutdown(wait=False)
        return infos[0][4][0] if infos else None

    def http_get(
        self,
        url: str,
        timeout: float = HTTP_PROBE_TIMEOUT_S,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResult:
        try:
            with httpx.Client(timeout=timeout, follow_redirects=True) as client:
                response = client.get(url, headers=dict(headers or {}))
        except httpx.HTTPError as e:
            return HttpResult(url=url, error=str(e) or type(e).__name__)
        return HttpResult(url=url, status_code=response.status_code, text=response.text)

    def host_facts(self) -> dict[str, str]:
        uname = platform.uname()
        facts = {
            "hostname": socket.gethostname(),
            "user": _current_user(),
            "os": _os_release() or f"{uname.system} {uname.release}",
            "kernel": uname.release,
            "architecture": uname.machine,
            "cpu_count": str(psutil.cpu_count() or 0),
            "process_count": str(len(psutil.pids())),
        }
        try:
            facts["uptime"] = _format_uptime(time.time() - psutil.boot_time())
        except (OSError, RuntimeError):
            facts["uptime"] = "not available"
        try:
            facts["load_average"] = " ".join(f"{x:.2f}" for x in os.getloadavg())
        except OSError:
            facts["load_average"] = "not available"
        try:
            mem = psutil.virtual_memory()
            facts["memory_total_mb"] = str(int(mem.total / _MB))
            facts["memory_available_mb"] = str(int(mem.available / _MB))
        except (OSError, RuntimeError):
            facts["memory_total_mb"] = "not available"
            facts["memory_available_mb"] = "not available"
        return facts


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _decode(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return str(os.getuid())


def _os_release() -> Optional[str]:
    try:
        info = platform.freedesktop_os_release()
    except OSError:
        return None
    return info.get("PRETTY_NAME")


def _process_matches(wanted: str, name: str, cmdline: Sequence[str]) -> bool:
    if name == wanted:
        return True
    if len(wanted) > _COMM_LEN and name == wanted[:_COMM_LEN]:
        return True
    return any(os.path.basename(arg) == wanted for arg in cmdline if arg)


def _format_uptime(seconds: float) -> str:
    minutes, _ = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    if days:
        return f"{days}d {hours}h {minutes}m"
    return f"{hours}h {minutes}m"
