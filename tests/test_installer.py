"""
Tests for the installation pipeline.
"""

from __future__ import annotations

import pytest

from runnerops.diagnostics import DiagnosticsCollector
from runnerops.errors import ErrorKind, InstallationError
from runnerops.executor import RetryPolicy, StepExecutor
from runnerops.installer import InstallationStep, RunnerInstaller
from runnerops.readiness import ReadinessProber
from runnerops.session import SessionRecorder, load_session


@pytest.fixture
def artifact(tmp_path):
    return tmp_path / "logs" / "installation-metrics.json"


@pytest.fixture
def installer(config, system, clock, artifact):
    recorder = SessionRecorder(config, artifact_path=artifact, system=system)
    prober = ReadinessProber(system, config, clock=clock, sleeper=clock.sleep)
    executor = StepExecutor(
        recorder=recorder,
        prober=prober,
        collector=DiagnosticsCollector(system, config),
        policy=RetryPolicy.from_config(config),
        clock=clock,
        sleeper=clock.sleep,
    )
    return RunnerInstaller(config, system, recorder=recorder, prober=prober, executor=executor)


def busy_then_ok(failures):
    """Body raising PACKAGE_MANAGER_BUSY ``failures`` times before succeeding."""
    state = {"calls": 0}

    def body(ctx):
        state["calls"] += 1
        if state["calls"] <= failures:
            raise InstallationError(ErrorKind.PACKAGE_MANAGER_BUSY, "dpkg lock held by apt-get")
        return "installed"

    return body


class TestRunnerInstaller:
    """Readiness gate plus sequential steps."""

    def test_three_steps_with_busy_middle_step(self, installer, artifact, clock):
        steps = [
            InstallationStep("update_package_lists", lambda ctx: "updated"),
            InstallationStep("install_packages", busy_then_ok(2)),
            InstallationStep("install_runner_dependencies", lambda ctx: "done"),
        ]

        result = installer.run(steps)

        assert result.succeeded
        assert result.exit_code == 0
        session = result.session
        assert session.final_status == "success"
        names = [s.name for s in session.steps]
        assert names.count("update_package_lists") == 1
        assert names.count("install_packages") == 3
        assert names.count("install_runner_dependencies") == 1
        assert session.metrics.retry_count == 2
        assert session.metrics.error_count == 2
        assert clock.sleeps[-2:] == [30, 60]
        assert load_session(artifact).final_status == "success"

    def test_terminal_failure_stops_pipeline(self, installer, system):
        ran = []

        def register(ctx):
            raise InstallationError(ErrorKind.GITHUB_AUTH_FAILED, "Bad credentials")

        steps = [
            InstallationStep("register", register),
            InstallationStep("start_service", lambda ctx: ran.append("start")),
        ]

        result = installer.run(steps)

        assert not result.succeeded
        assert result.exit_code == 303
        assert result.error_kind == ErrorKind.GITHUB_AUTH_FAILED
        assert result.failed_step.name == "register"
        assert result.failed_step.remediation
        assert ran == []
        assert result.session.final_status == "failed"

    def test_readiness_failure_blocks_steps(self, installer, system):
        system.disk["/"] = 500.0
        ran = []

        result = installer.run([InstallationStep("update", lambda ctx: ran.append("update"))])

        assert result.error_kind == ErrorKind.INSUFFICIENT_RESOURCES
        assert result.exit_code == 102
        assert result.readiness is not None
        assert not result.readiness.passed
        assert ran == []
        assert result.session.steps == []
        assert result.session.final_status == "failed"

    def test_skip_readiness(self, installer, system):
        system.disk["/"] = 500.0
        result = installer.run([InstallationStep("update", lambda ctx: "ok")], check_readiness=False)
        assert result.succeeded
        assert result.readiness is None

    def test_session_sealed_when_step_raises_unexpectedly(self, installer, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("executor crashed")

        monkeypatch.setattr(installer.executor, "run_step", explode)
        with pytest.raises(RuntimeError):
            installer.run([InstallationStep("update", lambda ctx: "ok")], check_readiness=False)
        assert installer.recorder.session.final_status == "failed"
        assert not installer.recorder.is_open

    def test_default_collaborators_share_cancel(self, config, system, artifact):
        installer = RunnerInstaller(config, system, artifact_path=artifact)
        assert installer.executor.cancel is installer.prober.cancel
        assert installer.recorder.path == artifact
        assert installer.executor.policy.max_attempts == config.max_attempts
