"""
Installation pipeline.

Gates on system readiness, then runs steps in order through the
``StepExecutor`` inside one installation session. The first terminal step
failure stops the pipeline; the process exit code is the failure's
``ErrorKind`` code (0 on success).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from runnerops.config import RunnerOpsConfig
from runnerops.diagnostics import DiagnosticsCollector
from runnerops.errors import ErrorKind
from runnerops.executor import RetryPolicy, StepBody, StepExecutor, StepOutcome
from runnerops.logger import log_success
from runnerops.readiness import ReadinessProber, ReadinessResult
from runnerops.session import InstallationSession, SessionRecorder
from runnerops.system import SystemQuery

__all__ = ["InstallationStep", "InstallationResult", "RunnerInstaller"]

logger = logging.getLogger(__name__)


@dataclass
class InstallationStep:
    """A named step body plus its retry and timeout settings."""

    name: str
    body: StepBody
    max_attempts: Optional[int] = None
    timeout: Optional[float] = None
    requires_idle_package_manager: bool = False
    timeout_kind: ErrorKind = ErrorKind.SYSTEM_NOT_READY


@dataclass
class InstallationResult:
    session: InstallationSession
    readiness: Optional[ReadinessResult] = None
    outcomes: list[StepOutcome] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None

    @property
    def exit_code(self) -> int:
        return self.error_kind.code if self.error_kind else 0

    @property
    def failed_step(self) -> Optional[StepOutcome]:
        for outcome in self.outcomes:
            if outcome.failed:
                return outcome
        return None


class RunnerInstaller:
    """
    Readiness gate followed by sequential steps in one session.

    Args:
        config: Thresholds, retry policy and log locations
        system: Host access shared by the prober and diagnostics
        recorder: Session recorder; a default one is built from config
        prober: Readiness prober; built from ``system`` when None
        executor: Step executor; built from the other collaborators when None
    """

    def __init__(
        self,
        config: RunnerOpsConfig,
        system: SystemQuery,
        recorder: Optional[SessionRecorder] = None,
        prober: Optional[ReadinessProber] = None,
        executor: Optional[StepExecutor] = None,
        artifact_path: Optional[Path] = None,
    ):
        self.config = config
        self.system = system
        self.recorder = recorder or SessionRecorder(config, artifact_path=artifact_path, system=system)
        self.prober = prober or ReadinessProber(system, config)
        self.executor = executor or StepExecutor(
            recorder=self.recorder,
            prober=self.prober,
            collector=DiagnosticsCollector(system, config),
            policy=RetryPolicy.from_config(config),
            cancel=self.prober.cancel,
        )

    def run(
        self,
        steps: Sequence[InstallationStep],
        session_name: str = "runner-installation",
        check_readiness: bool = True,
        boot_timeout: Optional[float] = None,
    ) -> InstallationResult:
        """
        Run the pipeline and seal the session.

        Raises:
            SessionConflictError: another session is open on this host
        """
        self.recorder.start_session(session_name, details=", ".join(s.name for s in steps))
        readiness = None
        outcomes: list[StepOutcome] = []
        error_kind: Optional[ErrorKind] = None
        final_status = "failed"

        try:
            if check_readiness:
                readiness = self.prober.validate_system_readiness(boot_timeout=boot_timeout)
                if not readiness.passed:
                    error_kind = readiness.error_kind or ErrorKind.SYSTEM_NOT_READY
                    logger.error("Installation blocked by readiness: %s", error_kind.label)

            if error_kind is None:
                for step in steps:
                    outcome = self.executor.run_step(
                        step.name,
                        step.body,
                        max_attempts=step.max_attempts,
                        timeout=step.timeout,
                        requires_idle_package_manager=step.requires_idle_package_manager,
                        timeout_kind=step.timeout_kind,
                    )
                    outcomes.append(outcome)
                    if outcome.failed:
                        error_kind = outcome.error_kind or ErrorKind.UNKNOWN
                        break
                else:
                    final_status = "success"
        finally:
            session = self.recorder.end_session(final_status)

        if error_kind is None:
            log_success(logger, "Installation completed", details=f"steps={len(outcomes)}")
        return InstallationResult(
            session=session,
            readiness=readiness,
            outcomes=outcomes,
            error_kind=error_kind,
        )
