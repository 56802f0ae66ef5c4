"""
Tests for the retrying step executor.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from runnerops.diagnostics import DiagnosticsCollector, DiagnosticScope
from runnerops.errors import ErrorKind, InstallationError
from runnerops.executor import (
    OutcomeStatus,
    RetryPolicy,
    StepExecutor,
    StepState,
    backoff_delay,
)
from runnerops.readiness import ReadinessProber


class RecordingRecorder:
    """Stands in for SessionRecorder; keeps outcomes in order."""

    def __init__(self):
        self.outcomes = []

    def record_step(self, outcome):
        self.outcomes.append(outcome)


class FlakyBody:
    """Raises the given errors in order, then succeeds."""

    def __init__(self, *errors, result="done"):
        self.errors = list(errors)
        self.calls = 0
        self.result = result

    def __call__(self, ctx):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def recorder():
    return RecordingRecorder()


@pytest.fixture
def executor(recorder, clock, system, config):
    return StepExecutor(
        recorder=recorder,
        prober=ReadinessProber(system, config),
        collector=DiagnosticsCollector(system, config),
        policy=RetryPolicy(),
        clock=clock,
        sleeper=clock.sleep,
    )


class TestBackoff:
    """min(base * 2**i, max)."""

    def test_default_schedule(self):
        assert [backoff_delay(i) for i in range(6)] == [30, 60, 120, 240, 300, 300]

    def test_monotonic_and_capped(self):
        delays = [backoff_delay(i, base=1.5, max_delay=20) for i in range(10)]
        assert delays == sorted(delays)
        assert max(delays) == 20

    def test_negative_index_rejected(self):
        with pytest.raises(ValueError):
            backoff_delay(-1)

    def test_policy_from_config(self, config):
        policy = RetryPolicy.from_config(config.model_copy(update={
            "retry_base_delay_s": 5, "retry_max_delay_s": 15, "max_attempts": 2,
        }))
        assert policy.max_attempts == 2
        assert [policy.delay(i) for i in range(3)] == [5, 10, 15]


class TestRunStep:
    """Attempts, retries and escalation."""

    def test_success_first_attempt(self, executor, recorder, clock):
        outcome = executor.run_step("update", lambda ctx: "lists updated")

        assert outcome.succeeded
        assert outcome.status == OutcomeStatus.OK
        assert outcome.state == StepState.SUCCEEDED
        assert outcome.attempt_index == 0
        assert outcome.terminal
        assert outcome.detail == "lists updated"
        assert recorder.outcomes == [outcome]
        assert clock.sleeps == []
        assert executor.state_of("update") == StepState.SUCCEEDED

    def test_transient_failure_then_success(self, executor, recorder, clock):
        body = FlakyBody(
            ConnectionError("connection reset by peer"),
            ConnectionError("connection reset by peer"),
        )
        outcome = executor.run_step("download", body, max_attempts=4)

        assert outcome.succeeded
        assert outcome.attempt_index == 2
        assert body.calls == 3
        assert [o.attempt_index for o in recorder.outcomes] == [0, 1, 2]
        assert [o.error_kind for o in recorder.outcomes[:2]] == [ErrorKind.NETWORK_CONNECTIVITY] * 2
        assert not recorder.outcomes[0].terminal
        assert clock.sleeps == [30, 60]

    def test_auth_failure_is_not_retried(self, executor, recorder, clock):
        body = FlakyBody(InstallationError(ErrorKind.GITHUB_AUTH_FAILED, "Bad credentials"))
        outcome = executor.run_step("register", body, max_attempts=4)

        assert outcome.failed
        assert outcome.attempt_index == 0
        assert outcome.terminal
        assert outcome.retryable is False
        assert outcome.state == StepState.ABORTED
        assert outcome.error_kind == ErrorKind.GITHUB_AUTH_FAILED
        assert body.calls == 1
        assert clock.sleeps == []
        assert len(recorder.outcomes) == 1

    def test_attempt_metrics_carry_error_kind(self, executor):
        executor._attempts = MagicMock()
        executor._duration = MagicMock()
        body = FlakyBody(ConnectionError("connection reset by peer"))

        executor.run_step("download", body, max_attempts=2)

        attributes = [c.args[1] for c in executor._attempts.add.call_args_list]
        assert attributes == [
            {"step.name": "download", "step.status": "error", "error.kind": "network_connectivity"},
            {"step.name": "download", "step.status": "ok"},
        ]
        assert executor._duration.record.call_count == 2

    def test_terminal_failure_carries_diagnostics_and_remediation(self, executor):
        body = FlakyBody(InstallationError(ErrorKind.GITHUB_AUTH_FAILED, "Bad credentials"))
        outcome = executor.run_step("register", body)

        assert outcome.remediation
        assert "GitHub authentication" in outcome.remediation
        assert outcome.diagnostics is not None
        assert outcome.diagnostics.scope == DiagnosticScope.GITHUB
        assert outcome.diagnostics.section(DiagnosticScope.GITHUB) is not None

    def test_retries_exhausted(self, executor, recorder, clock):
        body = FlakyBody(*[TimeoutError("timed out")] * 5)
        outcome = executor.run_step("download", body, max_attempts=3)

        assert outcome.failed
        assert outcome.terminal
        assert outcome.retryable is True
        assert outcome.attempt_index == 2
        assert outcome.state == StepState.ABORTED
        assert outcome.diagnostics.scope == DiagnosticScope.NETWORK
        assert len(recorder.outcomes) == 3
        assert clock.sleeps == [30, 60]
        assert executor.state_of("download") == StepState.ABORTED

    def test_non_terminal_outcomes_have_no_diagnostics(self, executor, recorder):
        body = FlakyBody(ConnectionError("refused"))
        executor.run_step("download", body, max_attempts=2)

        first = recorder.outcomes[0]
        assert first.state == StepState.FAILED
        assert first.diagnostics is None
        assert first.remediation is None

    def test_unknown_failure_escalates(self, executor):
        outcome = executor.run_step("weird", FlakyBody(ValueError("odd")))
        assert outcome.error_kind == ErrorKind.UNKNOWN
        assert outcome.attempt_index == 0
        assert outcome.diagnostics.scope == DiagnosticScope.ALL

    def test_warning_counts_as_success(self, executor):
        def body(ctx):
            ctx.warn("apt cache nearly full")
            return "installed"

        outcome = executor.run_step("install", body)
        assert outcome.succeeded
        assert outcome.status == OutcomeStatus.WARNING
        assert "apt cache nearly full" in outcome.detail

    def test_max_attempts_must_be_positive(self, executor):
        with pytest.raises(ValueError):
            executor.run_step("noop", lambda ctx: None, max_attempts=0)

    def test_duration_uses_clock(self, executor, clock):
        def body(ctx):
            clock.advance(12.5)
            return None

        outcome = executor.run_step("slow", body)
        assert outcome.duration == pytest.approx(12.5)


class TestPackageManagerGate:
    """Idle package manager requirement."""

    def test_busy_package_manager_skips_body(self, executor, system, recorder, clock):
        system.running.add("unattended-upgrade")
        body = FlakyBody()

        outcome = executor.run_step("install", body, max_attempts=2, requires_idle_package_manager=True)

        assert body.calls == 0
        assert outcome.error_kind == ErrorKind.PACKAGE_MANAGER_BUSY
        assert "unattended-upgrade" in outcome.detail
        assert outcome.diagnostics.scope == DiagnosticScope.PACKAGE_MANAGER
        assert len(recorder.outcomes) == 2
        assert clock.sleeps == [30]

    def test_gate_clears_between_attempts(self, executor, system, clock):
        system.locked.add("/var/lib/dpkg/lock-frontend")
        clock.on_sleep = lambda seconds: system.locked.clear()
        body = FlakyBody()

        outcome = executor.run_step("install", body, requires_idle_package_manager=True)

        assert outcome.succeeded
        assert outcome.attempt_index == 1
        assert body.calls == 1

    def test_system_update_run_counts_as_busy(self, executor, system, clock):
        system.commands[("systemctl", "is-active", "--quiet", "apt-daily-upgrade.service")] = "active"
        clock.on_sleep = lambda seconds: system.commands.pop(
            ("systemctl", "is-active", "--quiet", "apt-daily-upgrade.service"), None
        )
        body = FlakyBody()

        outcome = executor.run_step("install", body, requires_idle_package_manager=True)

        assert outcome.succeeded
        assert outcome.attempt_index == 1
        assert body.calls == 1
        assert clock.sleeps == [30]


class TestTimeout:
    """Per-attempt timeout."""

    def test_timed_out_attempt(self, executor):
        seen = {}

        def body(ctx):
            seen["ctx"] = ctx
            ctx.abandoned.wait(5)
            return None

        outcome = executor.run_step(
            "hang", body, max_attempts=1, timeout=0.1, timeout_kind=ErrorKind.LOCK_TIMEOUT,
        )

        assert outcome.status == OutcomeStatus.TIMEOUT
        assert outcome.error_kind == ErrorKind.LOCK_TIMEOUT
        assert outcome.terminal
        assert seen["ctx"].should_stop

    def test_default_timeout_kind_is_retryable(self, executor, recorder):
        calls = []

        def body(ctx):
            calls.append(ctx.attempt_index)
            if ctx.attempt_index == 0:
                ctx.abandoned.wait(5)
            return "ok"

        outcome = executor.run_step("hang-once", body, max_attempts=2, timeout=0.1)

        assert recorder.outcomes[0].status == OutcomeStatus.TIMEOUT
        assert recorder.outcomes[0].error_kind == ErrorKind.SYSTEM_NOT_READY
        assert outcome.succeeded


class TestCancellation:
    """Cancel signal during backoff."""

    def test_cancel_during_backoff_aborts(self, recorder, clock, system, config):
        cancel = threading.Event()
        clock.on_sleep = lambda seconds: cancel.set()
        executor = StepExecutor(
            recorder=recorder,
            collector=DiagnosticsCollector(system, config),
            clock=clock,
            sleeper=clock.sleep,
            cancel=cancel,
        )
        body = FlakyBody(*[ConnectionError("refused")] * 3)

        outcome = executor.run_step("download", body, max_attempts=4)

        assert body.calls == 1
        assert outcome.terminal
        assert outcome.state == StepState.ABORTED
        assert "cancelled" in outcome.detail
        assert outcome.diagnostics is not None
        assert len(recorder.outcomes) == 1

    def test_cancelled_before_first_attempt(self, recorder, clock):
        cancel = threading.Event()
        cancel.set()
        executor = StepExecutor(recorder=recorder, clock=clock, sleeper=clock.sleep, cancel=cancel)
        body = FlakyBody()

        outcome = executor.run_step("install", body)

        assert body.calls == 0
        assert outcome.failed
        assert outcome.error_kind == ErrorKind.SYSTEM_NOT_READY
        assert recorder.outcomes == []
