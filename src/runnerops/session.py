"""
Installation session telemetry.

A ``SessionRecorder`` owns at most one open ``InstallationSession``. The
session collects every step attempt, keeps running counters and is sealed
exactly once by ``end_session``. Only one session may be open per host:
the recorder holds a non-blocking exclusive lock on a lock file next to
the artifact for the session's lifetime, and a second recorder fails fast.

The session artifact is JSON, rewritten atomically after every recorded
attempt (temporary file + rename, mode 600) so a crash leaves a readable
partial record.

Usage::

    recorder = SessionRecorder(config)
    recorder.start_session("install-runner")
    recorder.record_step(outcome)
    recorder.end_session("success")
    print(recorder.show_summary())
"""

from __future__ import annotations

import csv
import fcntl
import io
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from runnerops.config import RunnerOpsConfig
from runnerops.contracts import paths
from runnerops.errors import (
    SessionClosedError,
    SessionConflictError,
    SessionError,
    SessionNotSealedError,
)
from runnerops.executor import OutcomeStatus, StepOutcome
from runnerops.logger import resolve_log_dir
from runnerops.system import LocalSystem, SystemQuery

logger = logging.getLogger(__name__)

__all__ = [
    "Colors",
    "NoColors",
    "SessionCounters",
    "InstallationSession",
    "SessionRecorder",
    "load_session",
    "export_session",
    "atomic_write",
    "CSV_COLUMNS",
]

CSV_COLUMNS = ("step_name", "status", "duration", "retry_count", "timestamp", "error_kind", "error_code")


class Colors:
    """ANSI color codes for terminal output."""
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


class NoColors:
    GREEN = YELLOW = RED = BLUE = CYAN = RESET = BOLD = ""


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class SessionCounters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    step_count: int = 0
    retry_count: int = 0
    warning_count: int = 0
    error_count: int = 0


class InstallationSession(BaseModel):
    """One installation run on one host."""

    model_config = ConfigDict(extra="forbid")

    installation_id: str
    name: str
    start_time: datetime
    end_time: Optional[datetime] = None
    final_status: Optional[str] = None
    total_duration: Optional[float] = None
    hostname: str = ""
    user: str = ""
    os_version: str = ""
    kernel_version: str = ""
    details: Optional[str] = None
    steps: list[StepOutcome] = Field(default_factory=list)
    metrics: SessionCounters = Field(default_factory=SessionCounters)
    system_info: dict[str, Any] = Field(default_factory=dict)

    @property
    def sealed(self) -> bool:
        return self.final_status is not None

    def to_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for step in self.steps:
            writer.writerow([
                step.name,
                step.status.value,
                f"{step.duration:.3f}",
                step.attempt_index,
                step.started_at.isoformat(),
                step.error_kind.value if step.error_kind else "",
                step.error_kind.code if step.error_kind else "",
            ])
        return buf.getvalue()

    def summary(self, use_colors: bool = True) -> str:
        """Human-readable summary of the session."""
        c = Colors if use_colors else NoColors

        final = self.final_status or "in progress"
        final_color = c.GREEN if final == "success" else c.RED if final == "failed" else c.YELLOW
        lines = [
            f"{c.BOLD}Installation Session Summary{c.RESET}",
            f"{'=' * 40}",
            f"Session: {self.installation_id}",
            f"Host: {self.hostname} ({self.os_version})",
            f"Started: {self.start_time.isoformat()}",
        ]
        if self.end_time:
            lines.append(f"Ended: {self.end_time.isoformat()}")
        if self.total_duration is not None:
            lines.append(f"Duration: {self.total_duration:.1f}s")
        lines.extend([
            f"Final status: {final_color}{final}{c.RESET}",
            "",
            f"{c.BOLD}Steps:{c.RESET}",
        ])

        status_symbols = {
            OutcomeStatus.OK: f"{c.GREEN}[ OK ]{c.RESET}",
            OutcomeStatus.WARNING: f"{c.YELLOW}[WARN]{c.RESET}",
            OutcomeStatus.ERROR: f"{c.RED}[FAIL]{c.RESET}",
            OutcomeStatus.TIMEOUT: f"{c.RED}[TIME]{c.RESET}",
        }
        for step in self.steps:
            symbol = status_symbols.get(step.status, "?")
            attempt = f" (attempt {step.attempt_index + 1})" if step.attempt_index else ""
            kind = f" [{step.error_kind.label}]" if step.error_kind else ""
            detail = f" - {step.detail}" if step.detail and step.failed else ""
            lines.append(f"  {symbol} {step.name}{attempt}: {step.duration:.1f}s{kind}{detail}")
        if not self.steps:
            lines.append("  (no steps recorded)")

        m = self.metrics
        lines.extend([
            "",
            f"Steps: {m.step_count}  Retries: {m.retry_count}  "
            f"Warnings: {m.warning_count}  Errors: {m.error_count}",
        ])
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Recorder
# ---------------------------------------------------------------------------


class SessionRecorder:
    """
    Records installation attempts into a single open session.

    Args:
        config: Supplies the log directory
        artifact_path: Session JSON location (defaults under the log dir)
        system: Host query used for the start-of-session snapshot
    """

    def __init__(
        self,
        config: RunnerOpsConfig,
        artifact_path: Optional[Path] = None,
        system: Optional[SystemQuery] = None,
    ):
        self.config = config
        if artifact_path is None:
            artifact_path = resolve_log_dir(config) / paths.SESSION_ARTIFACT_NAME
        self.path = Path(artifact_path)
        self.lock_path = self.path.parent / paths.SESSION_LOCK_NAME
        self.system = system or LocalSystem()
        self._session: Optional[InstallationSession] = None
        self._lock_file: Optional[IO] = None

    @property
    def session(self) -> Optional[InstallationSession]:
        return self._session

    @property
    def is_open(self) -> bool:
        return self._session is not None and not self._session.sealed

    def start_session(self, name: str, details: Optional[str] = None) -> str:
        """
        Open a new session.

        Returns:
            The session id, ``<name>-<epoch>-<pid>``

        Raises:
            SessionConflictError: a session is already open here or on the host
        """
        if self.is_open:
            raise SessionConflictError(
                f"Session {self._session.installation_id} is still open"
            )
        self._acquire_host_lock()
        try:
            now = datetime.now(timezone.utc)
            session_id = f"{name}-{int(now.timestamp())}-{os.getpid()}"
            facts = self.system.host_facts()
            disk = self.system.disk_free_mb("/")
            self._session = InstallationSession(
                installation_id=session_id,
                name=name,
                start_time=now,
                hostname=facts.get("hostname", ""),
                user=facts.get("user", ""),
                os_version=facts.get("os", ""),
                kernel_version=facts.get("kernel", ""),
                details=details,
                system_info={
                    "memory_mb": _int_or_none(facts.get("memory_total_mb")),
                    "disk_available_mb": int(disk) if disk is not None else None,
                    "cpu_count": _int_or_none(facts.get("cpu_count")),
                },
            )
            self._save()
        except Exception:
            self._session = None
            self._release_host_lock()
            raise
        logger.info("Installation session started: %s", session_id, extra={"details": details or ""})
        return session_id

    def record_step(self, outcome: StepOutcome) -> None:
        session = self._require_open()
        session.steps.append(outcome)
        m = session.metrics
        m.step_count += 1
        if outcome.attempt_index > 0:
            m.retry_count += 1
        if outcome.status == OutcomeStatus.WARNING:
            m.warning_count += 1
        elif outcome.status in (OutcomeStatus.ERROR, OutcomeStatus.TIMEOUT):
            m.error_count += 1
        self._save()

    def end_session(self, final_status: str) -> InstallationSession:
        """
        Seal the session, write the artifact and release the host lock.

        Raises:
            SessionClosedError: the session was already sealed
            SessionError: no session was started
        """
        if self._session is None:
            raise SessionError("No session has been started")
        if self._session.sealed:
            raise SessionClosedError(
                f"Session {self._session.installation_id} already ended "
                f"with status {self._session.final_status!r}"
            )
        if not final_status:
            raise ValueError("final_status must not be empty")

        session = self._session
        session.end_time = datetime.now(timezone.utc)
        session.total_duration = (session.end_time - session.start_time).total_seconds()
        session.final_status = final_status
        try:
            self._save()
        finally:
            self._release_host_lock()

        m = session.metrics
        log = logger.info if final_status == "success" else logger.error
        log(
            "Installation session ended: %s (%s)", session.installation_id, final_status,
            extra={"details": (
                f"duration={session.total_duration:.1f}s steps={m.step_count} "
                f"retries={m.retry_count} warnings={m.warning_count} errors={m.error_count}"
            )},
        )
        return session

    def show_summary(self, use_colors: bool = True) -> str:
        return self._require_sealed().summary(use_colors)

    def export(self, format: Literal["json", "csv"] = "json", output: Optional[Path] = None) -> str:
        """
        Export the sealed session as JSON or CSV.

        Returns the exported text; also writes it to ``output`` when given.
        """
        return export_session(self._require_sealed(), format, output)

    # -- internals -----------------------------------------------------------

    def _require_open(self) -> InstallationSession:
        if self._session is None:
            raise SessionError("No session has been started")
        if self._session.sealed:
            raise SessionClosedError(f"Session {self._session.installation_id} already ended")
        return self._session

    def _require_sealed(self) -> InstallationSession:
        if self._session is None or not self._session.sealed:
            raise SessionNotSealedError("Session must be ended before it can be summarized or exported")
        return self._session

    def _save(self) -> None:
        atomic_write(self.path, self._session.model_dump_json(indent=2), prefix=".installation-metrics-")

    def _acquire_host_lock(self) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(self.lock_path, "a+")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            raise SessionConflictError(
                f"Another installation session is open on this host (lock: {self.lock_path})"
            ) from None
        self._lock_file = lock_file

    def _release_host_lock(self) -> None:
        if self._lock_file is None:
            return
        try:
            fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            self._lock_file.close()
            self._lock_file = None


def load_session(path: Path) -> InstallationSession:
    """Read a session artifact written by ``SessionRecorder``."""
    with open(path, "r") as f:
        return InstallationSession.model_validate(json.load(f))


def export_session(
    session: InstallationSession,
    format: Literal["json", "csv"] = "json",
    output: Optional[Path] = None,
) -> str:
    """
    Render a sealed session as JSON or CSV, optionally writing it to ``output``.

    Raises:
        SessionNotSealedError: the session has not ended
    """
    if not session.sealed:
        raise SessionNotSealedError(f"Session {session.installation_id} has not ended")
    if format == "json":
        text = session.model_dump_json(indent=2)
    elif format == "csv":
        text = session.to_csv()
    else:
        raise ValueError(f"Unsupported export format: {format!r}")
    if output is not None:
        atomic_write(Path(output), text, prefix=".export-")
    return text


def atomic_write(path: Path, text: str, prefix: str) -> None:
    """Temporary file + rename, mode 600."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=prefix, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.chmod(temp_path, 0o600)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def _int_or_none(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None
