"""
Tests for the runnerops CLI.
"""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from runnerops import __version__
from runnerops.aws import Ec2Instance
from runnerops.cli import main
from runnerops.cli.context import CliContext
from runnerops.executor import OutcomeStatus, StepOutcome, StepState
from runnerops.session import SessionRecorder
from runnerops.system import CommandResult


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_env(monkeypatch, tmp_path, system):
    """Point every path at tmp_path and hand the CLI the fake host."""
    monkeypatch.setenv("RUNNEROPS_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("RUNNEROPS_FALLBACK_LOG_DIR", str(tmp_path / "fallback-logs"))
    monkeypatch.setenv("RUNNEROPS_HEALTH_REPORT_PATH", str(tmp_path / "health-report.json"))
    monkeypatch.setenv("RUNNEROPS_RUNNER_DIR", str(tmp_path / "actions-runner"))
    monkeypatch.setenv("RUNNEROPS_WORKFLOW_DIR", str(tmp_path / "workflows"))
    monkeypatch.setattr(
        "runnerops.cli.CliContext",
        lambda **kwargs: CliContext(system=system, **kwargs),
    )
    yield tmp_path
    root = logging.getLogger("runnerops")
    for handler in list(root.handlers):
        if getattr(handler, "_runnerops_handler", False):
            root.removeHandler(handler)
            handler.close()


def sealed_session(config, system, path, final_status="success"):
    recorder = SessionRecorder(config, artifact_path=path, system=system)
    recorder.start_session("package-install")
    now = recorder.session.start_time
    recorder.record_step(StepOutcome(
        name="install_packages", attempt_index=0, status=OutcomeStatus.OK,
        state=StepState.SUCCEEDED, duration=2.0, started_at=now, ended_at=now,
    ))
    if final_status:
        recorder.end_session(final_status)
    else:
        recorder._release_host_lock()
    return path


class TestMain:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])
        for command in ("readiness", "health", "diagnostics", "errors", "session", "packages", "logs", "instance"):
            assert command in result.output


class TestErrorsCommands:
    def test_list(self, runner, cli_env):
        result = runner.invoke(main, ["errors", "list"])
        assert result.exit_code == 0
        line = next(l for l in result.output.splitlines() if "PACKAGE_MANAGER_BUSY" in l)
        assert line.startswith("200")
        assert "yes" in line

    def test_explain_by_code(self, runner, cli_env):
        result = runner.invoke(main, ["errors", "explain", "303", "-m", "Bad credentials"])
        assert result.exit_code == 0
        assert "Error Code: 303 (GITHUB_AUTH_FAILED)" in result.output
        assert "Error Message: Bad credentials" in result.output

    def test_explain_with_diagnostics(self, runner, cli_env):
        result = runner.invoke(main, ["errors", "explain", "network_connectivity", "--collect"])
        assert result.exit_code == 0
        assert "NETWORK DIAGNOSTICS" in result.output

    def test_explain_unknown_kind(self, runner, cli_env):
        result = runner.invoke(main, ["errors", "explain", "disk_on_fire"])
        assert result.exit_code == 2
        assert "Unknown error kind" in result.output

    def test_explain_unknown_code(self, runner, cli_env):
        result = runner.invoke(main, ["errors", "explain", "555"])
        assert result.exit_code == 2
        assert "Unknown error code: 555" in result.output


class TestReadinessCommand:
    def test_ready(self, runner, cli_env):
        result = runner.invoke(main, ["--no-color", "readiness"])
        assert result.exit_code == 0
        assert "[PASS] network" in result.output
        assert "System ready for installation" in result.output

    def test_warning_rows_have_no_suffix(self, runner, cli_env, system):
        system.memory = 100.0
        result = runner.invoke(main, ["--no-color", "readiness"])
        assert result.exit_code == 0
        line = next(l for l in result.output.splitlines() if "[WARN] memory" in l)
        assert "(True)" not in line

    def test_not_ready_exit_code(self, runner, cli_env, system):
        system.disk["/"] = 500.0
        result = runner.invoke(main, ["--no-color", "readiness"])
        assert result.exit_code == 102
        assert "System not ready: INSUFFICIENT_RESOURCES (102)" in result.output

    def test_json(self, runner, cli_env, system):
        system.ping_ok = False
        result = runner.invoke(main, ["readiness", "--format", "json"])
        assert result.exit_code == 103
        data = json.loads(result.output)
        assert data["passed"] is False
        assert data["error_kind"] == "network_connectivity"

    def test_post_install(self, runner, cli_env):
        result = runner.invoke(main, ["--no-color", "readiness", "--post-install"])
        assert result.exit_code == 302
        assert "[FAIL] runner_service" in result.output


class TestHealthCommand:
    def test_selected_check(self, runner, cli_env):
        result = runner.invoke(main, ["--no-color", "health", "-c", "github_connectivity"])
        assert result.exit_code == 2
        assert "GitHub PAT not configured" in result.output
        report = json.loads((cli_env / "health-report.json").read_text())
        assert list(report["checks"]) == ["github_connectivity"]
        assert report["summary"]["overall_health"] == "UNHEALTHY"

    def test_json_output(self, runner, cli_env, tmp_path):
        out = tmp_path / "custom.json"
        result = runner.invoke(main, ["health", "-c", "workflow_files", "--format", "json", "--output", str(out)])
        assert result.exit_code == 1
        assert json.loads(result.output)["summary"]["overall_health"] == "DEGRADED"
        assert out.exists()

    def test_unknown_check(self, runner, cli_env):
        result = runner.invoke(main, ["health", "-c", "vibes"])
        assert result.exit_code == 2
        assert "Unknown checks: vibes" in result.output


class TestDiagnosticsCommand:
    def test_scope(self, runner, cli_env):
        result = runner.invoke(main, ["diagnostics", "--scope", "package_manager"])
        assert result.exit_code == 0
        assert "PACKAGE MANAGER DIAGNOSTICS" in result.output
        assert "SYSTEM DIAGNOSTICS" not in result.output

    def test_json(self, runner, cli_env):
        result = runner.invoke(main, ["diagnostics", "--scope", "github", "--format", "json"])
        data = json.loads(result.output)
        assert data["sections"][0]["facts"]["authentication"].startswith("not tested")


class TestSessionCommands:
    def test_show_default_artifact(self, runner, cli_env, config, system):
        sealed_session(config, system, cli_env / "logs" / "installation-metrics.json")
        result = runner.invoke(main, ["--no-color", "session", "show"])
        assert result.exit_code == 0
        assert "Final status: success" in result.output

    def test_export_csv(self, runner, cli_env, config, system):
        path = sealed_session(config, system, cli_env / "session.json")
        result = runner.invoke(main, ["session", "export", str(path), "--format", "csv"])
        assert result.exit_code == 0
        assert result.output.splitlines()[0].startswith("step_name,status,duration")

    def test_export_unsealed(self, runner, cli_env, config, system):
        path = sealed_session(config, system, cli_env / "session.json", final_status=None)
        result = runner.invoke(main, ["session", "export", str(path)])
        assert result.exit_code == 1
        assert "has not ended" in result.output

    def test_missing_artifact(self, runner, cli_env):
        result = runner.invoke(main, ["session", "show", str(cli_env / "nope.json")])
        assert result.exit_code == 1
        assert "No session artifact" in result.output


class TestPackagesCommand:
    def test_install_success(self, runner, cli_env, system):
        artifact = cli_env / "session.json"
        result = runner.invoke(main, [
            "--no-color", "packages", "install", "jq", "curl", "--skip-readiness", "--artifact", str(artifact),
        ])
        assert result.exit_code == 0, result.output
        assert "Final status: success" in result.output
        assert any(call[-2:] == ("jq", "curl") for call in system.calls)
        assert json.loads(artifact.read_text())["final_status"] == "success"

    def test_install_failure_reports_kind(self, runner, cli_env, system):
        failure = CommandResult(("apt-get",), 100, stderr="E: Unable to locate package jq")
        system.commands[("sudo",)] = failure
        system.commands[("env",)] = failure
        result = runner.invoke(main, [
            "--no-color", "packages", "install", "jq", "--skip-readiness",
            "--artifact", str(cli_env / "session.json"),
        ])
        assert result.exit_code == 202
        assert "ERROR DETAILS" in result.output
        assert "Final status: failed" in result.output

    def test_requires_names(self, runner, cli_env):
        result = runner.invoke(main, ["packages", "install"])
        assert result.exit_code == 2

    def test_invalid_name(self, runner, cli_env):
        result = runner.invoke(main, ["packages", "install", "BAD NAME"])
        assert result.exit_code == 2
        assert "Invalid package names" in result.output


class TestLogsCommands:
    @pytest.fixture
    def log_file(self, cli_env):
        path = cli_env / "logs" / "runner-installation.log"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("[t] [INFO] [1] [a] Starting step: update\n[t] [ERROR] [1] [a] Step failed\n")
        return path

    def test_recent(self, runner, log_file):
        result = runner.invoke(main, ["logs", "recent", "-n", "1"])
        assert result.exit_code == 0
        assert "Step failed" in result.output

    def test_search(self, runner, log_file):
        result = runner.invoke(main, ["logs", "search", "error"])
        assert result.exit_code == 0
        assert "2:[t] [ERROR] [1] [a] Step failed" in result.output

    def test_search_bad_pattern(self, runner, log_file):
        result = runner.invoke(main, ["logs", "search", "["])
        assert result.exit_code == 2
        assert "Invalid pattern" in result.output

    def test_cleanup(self, runner, log_file):
        result = runner.invoke(main, ["logs", "cleanup", "--days", "30"])
        assert result.exit_code == 0
        assert "Removed 0 files" in result.output


class TestInstanceCommands:
    @pytest.fixture
    def aws(self, monkeypatch):
        client = MagicMock()
        client.describe_instance.return_value = Ec2Instance(
            instance_id="i-0abc", state="running", instance_type="t3.medium", private_ip="10.0.0.5",
        )
        client.stop_instance.return_value = "stopping"
        monkeypatch.setattr("runnerops.aws.AwsClient.from_config", lambda config: client)
        return client

    def test_status(self, runner, cli_env, aws):
        result = runner.invoke(main, ["instance", "status", "-i", "i-0abc"])
        assert result.exit_code == 0
        assert "State:      running" in result.output
        assert "Private IP: 10.0.0.5" in result.output

    def test_instance_id_from_env(self, runner, cli_env, aws, monkeypatch):
        monkeypatch.setenv("EC2_INSTANCE_ID", "i-0env")
        runner.invoke(main, ["instance", "status"])
        aws.describe_instance.assert_called_once_with("i-0env")

    def test_missing_instance_id(self, runner, cli_env, aws):
        result = runner.invoke(main, ["instance", "status"])
        assert result.exit_code == 2
        assert "No instance id" in result.output

    def test_stop_requires_confirmation(self, runner, cli_env, aws):
        result = runner.invoke(main, ["instance", "stop", "-i", "i-0abc"], input="n\n")
        assert result.exit_code == 1
        aws.stop_instance.assert_not_called()

    def test_stop(self, runner, cli_env, aws):
        result = runner.invoke(main, ["instance", "stop", "-i", "i-0abc", "--yes"])
        assert result.exit_code == 0
        assert "i-0abc: stopping" in result.output
