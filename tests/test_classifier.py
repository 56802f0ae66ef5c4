"""
Tests for the error taxonomy and the failure classifier.
"""

from __future__ import annotations

import socket

import httpx
import pytest

from runnerops.classifier import (
    RETRYABLE_KINDS,
    Symptom,
    classify,
    diagnostic_scope_for,
    is_retryable,
    match_rule,
)
from runnerops.diagnostics import DiagnosticScope
from runnerops.errors import CommandFailedError, ErrorKind, InstallationError
from runnerops.system import CommandResult, HttpResult


class TestErrorKind:
    """Codes, labels and parsing."""

    def test_codes_follow_families(self):
        assert ErrorKind.SYSTEM_NOT_READY.code == 100
        assert ErrorKind.CLOUD_INIT_TIMEOUT.code == 101
        assert ErrorKind.INSUFFICIENT_RESOURCES.code == 102
        assert ErrorKind.NETWORK_CONNECTIVITY.code == 103
        assert ErrorKind.PACKAGE_MANAGER_BUSY.code == 200
        assert ErrorKind.LOCK_TIMEOUT.code == 203
        assert ErrorKind.RUNNER_DOWNLOAD_FAILED.code == 300
        assert ErrorKind.GITHUB_AUTH_FAILED.code == 303
        assert ErrorKind.GITHUB_REGISTRATION_FAILED.code == 304
        assert ErrorKind.UNKNOWN.code == 999

    def test_codes_are_unique(self):
        codes = [kind.code for kind in ErrorKind]
        assert len(codes) == len(set(codes))

    def test_label_is_upper_name(self):
        assert ErrorKind.PACKAGE_MANAGER_BUSY.label == "PACKAGE_MANAGER_BUSY"

    @pytest.mark.parametrize("text,expected", [
        ("PACKAGE_MANAGER_BUSY", ErrorKind.PACKAGE_MANAGER_BUSY),
        ("package-manager-busy", ErrorKind.PACKAGE_MANAGER_BUSY),
        ("303", ErrorKind.GITHUB_AUTH_FAILED),
        (101, ErrorKind.CLOUD_INIT_TIMEOUT),
    ])
    def test_parse(self, text, expected):
        assert ErrorKind.parse(text) == expected

    def test_parse_rejects_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown error kind"):
            ErrorKind.parse("disk_on_fire")

    @pytest.mark.parametrize("code", [555, "555", 12345])
    def test_parse_rejects_unknown_code(self, code):
        with pytest.raises(ValueError, match="Unknown error code"):
            ErrorKind.parse(code)

    def test_unknown_kind_code_round_trips(self):
        assert ErrorKind.from_code(999) == ErrorKind.UNKNOWN

    def test_installation_error_message(self):
        err = InstallationError(ErrorKind.LOCK_TIMEOUT, "dpkg lock held for 300s")
        assert str(err) == "[LOCK_TIMEOUT] dpkg lock held for 300s"
        assert err.details == {}


class TestClassify:
    """Symptom to kind mapping."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_status_codes(self, status):
        assert classify(status) == ErrorKind.GITHUB_AUTH_FAILED

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_transient_status_codes(self, status):
        assert classify(status) == ErrorKind.NETWORK_CONNECTIVITY

    def test_apt_lock_text(self):
        text = "E: Could not get lock /var/lib/dpkg/lock-frontend. It is held by process 1234 (apt-get)"
        assert classify(text) == ErrorKind.PACKAGE_MANAGER_BUSY

    def test_dpkg_frontend_lock(self):
        text = "E: Unable to acquire the dpkg frontend lock (/var/lib/dpkg/lock-frontend), is another process using it?"
        assert classify(text) == ErrorKind.PACKAGE_MANAGER_BUSY

    def test_lock_timeout_text(self):
        assert classify("Timed out waiting for dpkg lock") == ErrorKind.LOCK_TIMEOUT

    def test_disk_full(self):
        assert classify("write error: No space left on device") == ErrorKind.INSUFFICIENT_RESOURCES

    def test_memory_error(self):
        assert classify(MemoryError()) == ErrorKind.INSUFFICIENT_RESOURCES

    def test_dns_failure_text(self):
        text = "curl: (6) Could not resolve host: github.com"
        assert classify(text) == ErrorKind.NETWORK_CONNECTIVITY

    @pytest.mark.parametrize("exc", [
        ConnectionRefusedError("refused"),
        socket.gaierror(-2, "Name or service not known"),
        TimeoutError("read timed out"),
        httpx.ConnectError("boom"),
    ])
    def test_network_exceptions(self, exc):
        assert classify(exc) == ErrorKind.NETWORK_CONNECTIVITY

    def test_missing_package(self):
        assert classify("E: Unable to locate package libicu70x") == ErrorKind.DEPENDENCY_MISSING

    def test_bad_credentials(self):
        assert classify('{"message": "Bad credentials"}') == ErrorKind.GITHUB_AUTH_FAILED

    def test_registration_failure(self):
        text = "Failed to register runner: registration token expired"
        assert classify(text) == ErrorKind.GITHUB_REGISTRATION_FAILED

    def test_runner_download(self):
        text = "gzip: stdin: not in gzip format\ntar: Child returned status 1"
        assert classify(text) == ErrorKind.RUNNER_DOWNLOAD_FAILED

    def test_runner_service(self):
        assert classify("Failed to start actions.runner.octo-robot.gha_aws_runner.service") == ErrorKind.RUNNER_SERVICE_FAILED

    def test_dpkg_processing_error(self):
        text = "dpkg: error processing package docker-ce (--configure)"
        assert classify(text) == ErrorKind.PACKAGE_INSTALL_FAILED

    def test_cloud_init_timeout(self):
        assert classify("cloud-init did not finish: timed out after 600s") == ErrorKind.CLOUD_INIT_TIMEOUT

    def test_installation_error_kind_wins(self):
        err = InstallationError(ErrorKind.RUNNER_CONFIG_FAILED, "Could not resolve host")
        assert classify(err) == ErrorKind.RUNNER_CONFIG_FAILED

    def test_command_failed_error_uses_stderr(self):
        result = CommandResult(
            ("apt-get", "install", "-y", "jq"),
            100,
            stderr="E: Could not get lock /var/lib/dpkg/lock",
        )
        assert classify(CommandFailedError(result)) == ErrorKind.PACKAGE_MANAGER_BUSY

    def test_http_result_status(self):
        assert classify(HttpResult(url="https://api.github.com/user", status_code=401)) == ErrorKind.GITHUB_AUTH_FAILED

    def test_http_status_error(self):
        request = httpx.Request("GET", "https://api.github.com/user")
        response = httpx.Response(503, request=request)
        err = httpx.HTTPStatusError("server error", request=request, response=response)
        assert classify(err) == ErrorKind.NETWORK_CONNECTIVITY

    @pytest.mark.parametrize("raw", [None, "", "something odd happened", 200, True, ValueError("x")])
    def test_unmatched_is_unknown(self, raw):
        assert classify(raw) == ErrorKind.UNKNOWN

    def test_deterministic(self):
        text = "E: Could not get lock /var/lib/dpkg/lock"
        assert {classify(text) for _ in range(10)} == {ErrorKind.PACKAGE_MANAGER_BUSY}

    def test_match_rule_names_rule(self):
        rule = match_rule("No space left on device")
        assert rule is not None
        assert rule.name == "resources_exhausted"
        assert match_rule("all good") is None

    def test_symptom_normalizes_case(self):
        assert Symptom.from_input("ERROR").text == "error"


class TestRetryability:
    """Transient vs escalated kinds."""

    @pytest.mark.parametrize("kind", [
        ErrorKind.NETWORK_CONNECTIVITY,
        ErrorKind.PACKAGE_MANAGER_BUSY,
        ErrorKind.CLOUD_INIT_TIMEOUT,
        ErrorKind.SYSTEM_NOT_READY,
        ErrorKind.LOCK_TIMEOUT,
        ErrorKind.RUNNER_DOWNLOAD_FAILED,
    ])
    def test_transient_kinds_retry(self, kind):
        assert is_retryable(kind)

    @pytest.mark.parametrize("kind", [
        ErrorKind.GITHUB_AUTH_FAILED,
        ErrorKind.GITHUB_REGISTRATION_FAILED,
        ErrorKind.RUNNER_CONFIG_FAILED,
        ErrorKind.INSUFFICIENT_RESOURCES,
        ErrorKind.DEPENDENCY_MISSING,
        ErrorKind.UNKNOWN,
    ])
    def test_configuration_kinds_escalate(self, kind):
        assert not is_retryable(kind)

    def test_retryable_set_is_closed(self):
        assert RETRYABLE_KINDS <= set(ErrorKind)


class TestDiagnosticScope:
    """Scope collected on escalation."""

    def test_every_kind_has_scope(self):
        for kind in ErrorKind:
            assert isinstance(diagnostic_scope_for(kind), DiagnosticScope)

    @pytest.mark.parametrize("kind,scope", [
        (ErrorKind.PACKAGE_MANAGER_BUSY, DiagnosticScope.PACKAGE_MANAGER),
        (ErrorKind.NETWORK_CONNECTIVITY, DiagnosticScope.NETWORK),
        (ErrorKind.GITHUB_AUTH_FAILED, DiagnosticScope.GITHUB),
        (ErrorKind.INSUFFICIENT_RESOURCES, DiagnosticScope.SYSTEM),
        (ErrorKind.UNKNOWN, DiagnosticScope.ALL),
    ])
    def test_scope_mapping(self, kind, scope):
        assert diagnostic_scope_for(kind) == scope
