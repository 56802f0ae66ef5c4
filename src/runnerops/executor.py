"""
Retrying step executor.

Runs a named unit of installation work through a small state machine::

    Pending -> Running -> Succeeded
                       -> Failed(kind) / TimedOut
    Failed / TimedOut -> Pending      (retryable kind, attempts left, after backoff)
                      -> Aborted(kind)

Every attempt produces a sealed ``StepOutcome`` that is recorded before
the next attempt starts. A terminal failure carries a diagnostics bundle
for the kind's scope and the kind's remediation text; it is never retried.

Step bodies receive a ``StepContext`` and return an optional detail
string. They signal failure by raising; ``InstallationError`` names its
kind directly, anything else goes through the classifier. A body that
finishes but wants its outcome flagged calls ``ctx.warn()``.

Usage::

    executor = StepExecutor(recorder=recorder, prober=prober, collector=collector)
    outcome = executor.run_step("install_packages", body, max_attempts=4, timeout=900)
    if outcome.failed:
        print(outcome.remediation)
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from opentelemetry import metrics, trace
from opentelemetry.trace import SpanKind, Status, StatusCode
from pydantic import BaseModel, ConfigDict, Field

from runnerops.advice import advise
from runnerops.classifier import classify, diagnostic_scope_for, is_retryable
from runnerops.contracts.timeouts import (
    BACKOFF_BASE_DELAY_S,
    BACKOFF_MAX_DELAY_S,
    DEFAULT_MAX_ATTEMPTS,
)
from runnerops.diagnostics import DiagnosticBundle
from runnerops.errors import ErrorKind

if TYPE_CHECKING:
    from runnerops.config import RunnerOpsConfig
    from runnerops.diagnostics import DiagnosticsCollector
    from runnerops.readiness import ReadinessProber
    from runnerops.session import SessionRecorder

logger = logging.getLogger(__name__)

__all__ = [
    "OutcomeStatus",
    "StepState",
    "StepOutcome",
    "StepContext",
    "RetryPolicy",
    "StepBody",
    "StepExecutor",
    "backoff_delay",
]


def backoff_delay(
    attempt_index: int,
    base: float = BACKOFF_BASE_DELAY_S,
    max_delay: float = BACKOFF_MAX_DELAY_S,
) -> float:
    """Delay after attempt ``attempt_index`` fails: ``min(base * 2**i, max)``."""
    if attempt_index < 0:
        raise ValueError("attempt_index must be >= 0")
    return min(base * (2 ** attempt_index), max_delay)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class OutcomeStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"
    TIMEOUT = "timeout"


class StepState(str, Enum):
    """Lifecycle state of a step inside the executor."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class StepOutcome(BaseModel):
    """Sealed record of one attempt of one step."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    attempt_index: int = Field(..., ge=0)
    status: OutcomeStatus
    state: StepState
    duration: float = Field(..., ge=0, description="Seconds spent in the attempt")
    started_at: datetime
    ended_at: datetime
    error_kind: Optional[ErrorKind] = None
    detail: str = ""
    terminal: bool = False
    retryable: Optional[bool] = None
    remediation: Optional[str] = None
    diagnostics: Optional[DiagnosticBundle] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (OutcomeStatus.OK, OutcomeStatus.WARNING)

    @property
    def failed(self) -> bool:
        return not self.succeeded


class RetryPolicy(BaseModel):
    """Bounded exponential backoff."""

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1)
    base_delay: float = Field(BACKOFF_BASE_DELAY_S, ge=0)
    max_delay: float = Field(BACKOFF_MAX_DELAY_S, ge=0)

    @classmethod
    def from_config(cls, config: "RunnerOpsConfig") -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.retry_base_delay_s,
            max_delay=config.retry_max_delay_s,
        )

    def delay(self, attempt_index: int) -> float:
        return backoff_delay(attempt_index, self.base_delay, self.max_delay)


class StepContext:
    """What a step body sees of its attempt."""

    def __init__(
        self,
        name: str,
        attempt_index: int,
        cancel: threading.Event,
        deadline: Optional[float] = None,
    ):
        self.name = name
        self.attempt_index = attempt_index
        self.cancel = cancel
        self.deadline = deadline
        self.abandoned = threading.Event()
        self.warnings: list[str] = []

    @property
    def should_stop(self) -> bool:
        """True once the attempt timed out or the run was cancelled."""
        return self.abandoned.is_set() or self.cancel.is_set()

    def warn(self, message: str) -> None:
        self.warnings.append(message)


StepBody = Callable[[StepContext], Optional[str]]


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class StepExecutor:
    """
    Runs steps with per-attempt timeout, classification and backoff.

    Args:
        recorder: Session recorder receiving every attempt
        prober: Used for the package-manager idle gate
        collector: Collects diagnostics on terminal failure
        policy: Default retry policy
        clock: Monotonic clock, injectable for tests
        sleeper: Replaces the cancellable backoff wait
        cancel: Event that aborts pending backoff sleeps when set
    """

    def __init__(
        self,
        recorder: Optional["SessionRecorder"] = None,
        prober: Optional["ReadinessProber"] = None,
        collector: Optional["DiagnosticsCollector"] = None,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Optional[Callable[[float], None]] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.recorder = recorder
        self.prober = prober
        self.collector = collector
        self.policy = policy or RetryPolicy()
        self.clock = clock
        self.sleeper = sleeper
        self.cancel = cancel or threading.Event()
        self.states: dict[str, StepState] = {}
        self._tracer = trace.get_tracer("runnerops.executor")
        meter = metrics.get_meter("runnerops.executor")
        self._attempts = meter.create_counter(
            name="runnerops.step.attempts",
            description="Step attempts by outcome status",
            unit="{attempts}",
        )
        self._duration = meter.create_histogram(
            name="runnerops.step.duration",
            description="Duration of a single step attempt",
            unit="s",
        )

    def state_of(self, name: str) -> StepState:
        return self.states.get(name, StepState.PENDING)

    def run_step(
        self,
        name: str,
        body: StepBody,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        requires_idle_package_manager: bool = False,
        timeout_kind: ErrorKind = ErrorKind.SYSTEM_NOT_READY,
    ) -> StepOutcome:
        """
        Run ``body`` until it succeeds or the failure becomes terminal.

        Args:
            name: Step name used in records and logs
            body: Unit of work; raises on failure
            max_attempts: Attempts including the first (policy default when None)
            timeout: Per-attempt bound in seconds, unbounded when None
            requires_idle_package_manager: Probe the package manager before each attempt
            timeout_kind: Kind assigned to an attempt that exceeds ``timeout``

        Returns:
            The terminal outcome (success, or the escalated failure)
        """
        attempts = max_attempts or self.policy.max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        logger.info("Starting step: %s", name, extra={"details": f"max_attempts={attempts}"})
        outcome: Optional[StepOutcome] = None

        for attempt_index in range(attempts):
            if self.cancel.is_set():
                return self._abort(name, attempt_index, outcome, "cancelled before attempt")

            self.states[name] = StepState.RUNNING
            outcome = self._attempt(
                name, body, attempt_index, attempts, timeout,
                requires_idle_package_manager, timeout_kind,
            )
            self.states[name] = outcome.state
            if self.recorder is not None:
                self.recorder.record_step(outcome)

            if outcome.terminal:
                self._log_terminal(outcome)
                return outcome

            delay = self.policy.delay(attempt_index)
            logger.warning(
                "Step %s failed (attempt %d/%d, %s); retrying in %.0fs",
                name, attempt_index + 1, attempts,
                outcome.error_kind.label if outcome.error_kind else "unknown", delay,
                extra={"details": outcome.detail},
            )
            self.states[name] = StepState.PENDING
            if self._sleep(delay):
                return self._abort(name, attempt_index + 1, outcome, "cancelled during backoff")

        # The loop always returns; the last attempt is terminal by construction.
        raise AssertionError("unreachable")

    # -- internals -----------------------------------------------------------

    def _attempt(
        self,
        name: str,
        body: StepBody,
        attempt_index: int,
        attempts: int,
        timeout: Optional[float],
        requires_idle: bool,
        timeout_kind: ErrorKind,
    ) -> StepOutcome:
        started_at = datetime.now(timezone.utc)
        start = self.clock()
        status = OutcomeStatus.OK
        state = StepState.SUCCEEDED
        kind: Optional[ErrorKind] = None
        detail = ""

        with self._tracer.start_as_current_span(
            f"step:{name}",
            kind=SpanKind.INTERNAL,
        ) as span:
            span.set_attribute("step.name", name)
            span.set_attribute("step.attempt_index", attempt_index)

            busy = self._package_manager_busy() if requires_idle else None
            if busy is not None:
                status, state, kind, detail = OutcomeStatus.ERROR, StepState.FAILED, ErrorKind.PACKAGE_MANAGER_BUSY, busy
            else:
                deadline = start + timeout if timeout else None
                ctx = StepContext(name, attempt_index, self.cancel, deadline)
                try:
                    result = self._invoke(body, ctx, timeout)
                except FutureTimeoutError:
                    ctx.abandoned.set()
                    status, state, kind = OutcomeStatus.TIMEOUT, StepState.TIMED_OUT, timeout_kind
                    detail = f"Step timed out after {timeout:.0f}s"
                except Exception as e:
                    status, state, kind = OutcomeStatus.ERROR, StepState.FAILED, classify(e)
                    detail = str(e) or type(e).__name__
                else:
                    detail = result or ""
                    if ctx.warnings:
                        status = OutcomeStatus.WARNING
                        detail = "; ".join(filter(None, [detail] + ctx.warnings))

            duration = max(self.clock() - start, 0.0)
            succeeded = kind is None
            retryable = None if succeeded else is_retryable(kind)
            terminal = succeeded or not retryable or attempt_index + 1 >= attempts

            diagnostics = None
            remediation = None
            if not succeeded and terminal:
                state = StepState.ABORTED
                remediation = advise(kind)
                diagnostics = self._collect(kind)

            span.set_attribute("step.status", status.value)
            span.set_attribute("step.duration_s", duration)
            if kind is not None:
                span.set_attribute("error.kind", kind.value)
                span.set_attribute("error.code", kind.code)
                span.set_status(Status(StatusCode.ERROR, detail[:200]))
            else:
                span.set_status(Status(StatusCode.OK))

        attributes = {"step.name": name, "step.status": status.value}
        if kind is not None:
            attributes["error.kind"] = kind.value
        self._attempts.add(1, attributes)
        self._duration.record(duration, attributes)

        return StepOutcome(
            name=name,
            attempt_index=attempt_index,
            status=status,
            state=state,
            duration=duration,
            started_at=started_at,
            ended_at=datetime.now(timezone.utc),
            error_kind=kind,
            detail=detail,
            terminal=terminal,
            retryable=retryable,
            remediation=remediation,
            diagnostics=diagnostics,
        )

    @staticmethod
    def _invoke(body: StepBody, ctx: StepContext, timeout: Optional[float]) -> Optional[str]:
        if not timeout:
            return body(ctx)
        # The worker is abandoned on timeout; bodies should watch ctx.should_stop.
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"step-{ctx.name}")
        try:
            future = pool.submit(body, ctx)
            return future.result(timeout=timeout)
        finally:
            pool.shutdown(wait=False)

    def _package_manager_busy(self) -> Optional[str]:
        if self.prober is None:
            return None
        report = self.prober.probe_package_manager_idle()
        if not report.passed:
            return report.detail
        updates = self.prober.probe_system_updates()
        return updates.detail if updates.warning else None

    def _collect(self, kind: ErrorKind) -> Optional[DiagnosticBundle]:
        if self.collector is None:
            return None
        return self.collector.collect(diagnostic_scope_for(kind))

    def _sleep(self, seconds: float) -> bool:
        """Backoff wait. Returns True when cancelled."""
        if self.sleeper is not None:
            self.sleeper(seconds)
            return self.cancel.is_set()
        return self.cancel.wait(seconds)

    def _abort(
        self,
        name: str,
        attempt_index: int,
        last: Optional[StepOutcome],
        reason: str,
    ) -> StepOutcome:
        """Terminal outcome for a cancelled run; not recorded as a new attempt."""
        self.states[name] = StepState.ABORTED
        kind = last.error_kind if last and last.error_kind else ErrorKind.SYSTEM_NOT_READY
        logger.error("Step %s aborted: %s", name, reason)
        now = datetime.now(timezone.utc)
        if last is not None:
            return last.model_copy(update={
                "state": StepState.ABORTED,
                "terminal": True,
                "detail": f"{last.detail}; {reason}" if last.detail else reason,
                "remediation": advise(kind),
                "diagnostics": self._collect(kind),
            })
        return StepOutcome(
            name=name,
            attempt_index=attempt_index,
            status=OutcomeStatus.ERROR,
            state=StepState.ABORTED,
            duration=0.0,
            started_at=now,
            ended_at=now,
            error_kind=kind,
            detail=reason,
            terminal=True,
            retryable=False,
            remediation=advise(kind),
        )

    def _log_terminal(self, outcome: StepOutcome) -> None:
        if outcome.succeeded:
            logger.info(
                "Step %s completed in %.1fs (attempt %d)",
                outcome.name, outcome.duration, outcome.attempt_index + 1,
                extra={"details": outcome.detail},
            )
            return
        label = outcome.error_kind.label if outcome.error_kind else "UNKNOWN"
        logger.error(
            "Step %s failed permanently: %s (attempt %d)",
            outcome.name, label, outcome.attempt_index + 1,
            extra={"details": outcome.detail},
        )
