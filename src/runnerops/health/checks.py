"""
The canonical runner health checks.

Each check is a zero-argument callable returning a ``HealthCheckResult``.
Checks talk to GitHub through ``GitHubClient``, to AWS through
``AwsClient`` and to the host through ``SystemQuery``; none of them raise
for expected failures, they report them as ERROR or WARNING instead.

``canonical_checks()`` returns them in report order:

    github_connectivity, repository_access, actions_enabled,
    runner_registration, token_generation, runner_installation,
    runner_service, runner_logs, aws_connectivity, ec2_instance,
    workflow_files, workflow_runs
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Callable, Optional

import yaml

from runnerops.aws import AwsClient
from runnerops.config import RunnerOpsConfig
from runnerops.contracts import paths
from runnerops.errors import AwsError
from runnerops.github import GitHubClient
from runnerops.health.models import HealthCheckResult, HealthStatus
from runnerops.system import SystemQuery

__all__ = ["HealthCheck", "RunnerHealthChecks", "count_self_hosted_workflows"]

logger = logging.getLogger(__name__)

HealthCheck = Callable[[], HealthCheckResult]

_LOG_ERROR_PATTERN = re.compile(r"error|exception|failed", re.IGNORECASE)
_RECENT_LOG_WINDOW_S = 24 * 3600


def _result(name: str, status: HealthStatus, message: str, detail: str = "") -> HealthCheckResult:
    return HealthCheckResult(check_name=name, status=status, message=message, detail=detail)


def _runs_on_self_hosted(runs_on) -> bool:
    if isinstance(runs_on, str):
        return runs_on == "self-hosted"
    if isinstance(runs_on, list):
        return "self-hosted" in runs_on
    if isinstance(runs_on, dict):
        labels = runs_on.get("labels", [])
        return _runs_on_self_hosted(labels)
    return False


def count_self_hosted_workflows(documents: dict[str, str]) -> tuple[list[str], list[str]]:
    """
    Workflows with at least one job on ``runs-on: self-hosted``.

    Args:
        documents: File name to YAML text

    Returns:
        (self-hosted workflow names, names that failed to parse)
    """
    matched, unparseable = [], []
    for name, text in documents.items():
        try:
            workflow = yaml.safe_load(text)
        except yaml.YAMLError:
            unparseable.append(name)
            continue
        if not isinstance(workflow, dict):
            continue
        jobs = workflow.get("jobs") or {}
        if not isinstance(jobs, dict):
            continue
        if any(isinstance(job, dict) and _runs_on_self_hosted(job.get("runs-on")) for job in jobs.values()):
            matched.append(name)
    return matched, unparseable


class RunnerHealthChecks:
    """
    Health checks for one repository-scoped runner.

    Args:
        config: Repository, runner and AWS settings
        system: Host access
        github: GitHub client (shared across checks, must be thread-safe for reads)
        aws: AWS client; ``None`` skips AWS checks with a warning
        clock: Wall clock used to decide which runner logs are recent
    """

    def __init__(
        self,
        config: RunnerOpsConfig,
        system: SystemQuery,
        github: GitHubClient,
        aws: Optional[AwsClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.system = system
        self.github = github
        self.aws = aws
        self._clock = clock

    def canonical_checks(self) -> list[tuple[str, HealthCheck]]:
        return [
            ("github_connectivity", self.check_github_connectivity),
            ("repository_access", self.check_repository_access),
            ("actions_enabled", self.check_actions_enabled),
            ("runner_registration", self.check_runner_registration),
            ("token_generation", self.check_token_generation),
            ("runner_installation", self.check_runner_installation),
            ("runner_service", self.check_runner_service),
            ("runner_logs", self.check_runner_logs),
            ("aws_connectivity", self.check_aws_connectivity),
            ("ec2_instance", self.check_ec2_instance),
            ("workflow_files", self.check_workflow_files),
            ("workflow_runs", self.check_workflow_runs),
        ]

    # -- GitHub --------------------------------------------------------------

    def check_github_connectivity(self) -> HealthCheckResult:
        name = "github_connectivity"
        if not self.config.github_token:
            return _result(name, HealthStatus.ERROR, "GitHub PAT not configured", "Set GH_PAT environment variable")

        resp = self.github.get_user()
        if resp.status_code == 200:
            login = (resp.data or {}).get("login", "unknown")
            return _result(name, HealthStatus.OK, f"GitHub API accessible (user: {login})")
        if resp.status_code == 401:
            return _result(name, HealthStatus.ERROR, "GitHub authentication failed", "PAT is invalid or expired")
        if resp.status_code == 403:
            return _result(name, HealthStatus.ERROR, "GitHub API access forbidden", "Check PAT scopes")
        return _result(name, HealthStatus.ERROR, "GitHub API connectivity failed", _http_detail(resp))

    def check_repository_access(self) -> HealthCheckResult:
        name = "repository_access"
        slug = self.config.repository_slug
        if not (self.config.github_token and slug):
            return _result(name, HealthStatus.ERROR, "Repository configuration incomplete", "Set GH_PAT, GITHUB_USERNAME and GITHUB_REPOSITORY")

        resp = self.github.get_repository(slug)
        if resp.status_code == 200:
            data = resp.data or {}
            private = str(data.get("private", "unknown")).lower()
            admin = str((data.get("permissions") or {}).get("admin", False)).lower()
            detail = f"Private: {private}, Admin access: {admin}"
            if admin != "true":
                return _result(name, HealthStatus.WARNING, "Repository accessible but no admin permissions", detail)
            return _result(name, HealthStatus.OK, f"Repository accessible: {data.get('full_name', slug)}", detail)
        if resp.status_code == 404:
            return _result(name, HealthStatus.ERROR, "Repository not found or not accessible", slug)
        if resp.status_code == 403:
            return _result(name, HealthStatus.ERROR, "Repository access forbidden", slug)
        return _result(name, HealthStatus.ERROR, "Repository access check failed", _http_detail(resp))

    def check_actions_enabled(self) -> HealthCheckResult:
        name = "actions_enabled"
        slug = self.config.repository_slug
        if not (self.config.github_token and slug):
            return _result(name, HealthStatus.ERROR, "Configuration incomplete for Actions check")

        resp = self.github.list_runners(slug)
        if resp.status_code == 200:
            total = (resp.data or {}).get("total_count", 0)
            return _result(name, HealthStatus.OK, "GitHub Actions enabled", f"Registered runners: {total}")
        if resp.status_code == 404:
            return _result(name, HealthStatus.ERROR, "GitHub Actions not enabled", "Enable Actions in repository settings")
        if resp.status_code == 403:
            return _result(name, HealthStatus.ERROR, "Actions API access forbidden", "PAT needs the repo scope")
        return _result(name, HealthStatus.ERROR, "Actions status check failed", _http_detail(resp))

    def check_runner_registration(self) -> HealthCheckResult:
        name = "runner_registration"
        slug = self.config.repository_slug
        if not (self.config.github_token and slug):
            return _result(name, HealthStatus.ERROR, "Configuration incomplete for runner check")

        resp = self.github.list_runners(slug)
        if resp.status_code != 200:
            return _result(name, HealthStatus.ERROR, "Failed to check runner registration", _http_detail(resp))

        data = resp.data or {}
        runners = data.get("runners") or []
        if not data.get("total_count", len(runners)):
            return _result(name, HealthStatus.WARNING, "No runners registered", "Configure the runner with config.sh")

        expected = self.config.runner_name
        for runner in runners:
            if runner.get("name") != expected:
                continue
            labels = ",".join(label.get("name", "") for label in runner.get("labels") or [])
            status = runner.get("status", "unknown")
            detail = f"Status: {status}, Busy: {str(runner.get('busy', False)).lower()}, Labels: {labels}"
            if status != "online":
                return _result(name, HealthStatus.WARNING, f"Runner '{expected}' not online", detail)
            return _result(name, HealthStatus.OK, f"Runner '{expected}' registered", detail)

        return _result(
            name,
            HealthStatus.WARNING,
            f"Expected runner '{expected}' not found",
            f"Found {len(runners)} other runners",
        )

    def check_token_generation(self) -> HealthCheckResult:
        name = "token_generation"
        slug = self.config.repository_slug
        if not (self.config.github_token and slug):
            return _result(name, HealthStatus.ERROR, "Configuration incomplete for token check")

        resp = self.github.create_registration_token(slug)
        if resp.status_code == 201:
            data = resp.data or {}
            if not data.get("token"):
                return _result(name, HealthStatus.ERROR, "Invalid registration token received")
            return _result(
                name,
                HealthStatus.OK,
                "Registration token generated successfully",
                f"Token expires: {data.get('expires_at', 'unknown')}",
            )
        if resp.status_code == 403:
            return _result(name, HealthStatus.ERROR, "Insufficient permissions for token generation", "PAT needs admin access to the repository")
        if resp.status_code == 404:
            return _result(name, HealthStatus.ERROR, "Token generation endpoint not found", slug)
        return _result(name, HealthStatus.ERROR, "Token generation failed", _http_detail(resp))

    # -- Local runner --------------------------------------------------------

    def check_runner_installation(self) -> HealthCheckResult:
        name = "runner_installation"
        runner_dir = str(self.config.get_runner_path())
        if not self.system.path_exists(runner_dir):
            return _result(name, HealthStatus.WARNING, "Runner directory not found", runner_dir)

        missing = [
            f for f in paths.RUNNER_REQUIRED_FILES
            if not self.system.path_exists(str(self.config.get_runner_path(f)))
        ]
        if missing:
            return _result(name, HealthStatus.ERROR, "Runner installation incomplete", f"Missing files: {', '.join(missing)}")

        text = self.system.read_text(str(self.config.get_runner_path(".runner")))
        if text is None:
            return _result(name, HealthStatus.WARNING, "Runner installed but not configured", "Run config.sh to register the runner")

        try:
            settings = json.loads(text.lstrip("\ufeff"))
        except ValueError:
            return _result(name, HealthStatus.WARNING, "Runner installed but not configured", ".runner file is not valid JSON")

        configured_url = settings.get("gitHubUrl", "")
        agent = settings.get("agentName", "")
        detail = f"URL: {configured_url}, Name: {agent}"
        expected_url = self.config.repository_url
        if expected_url and configured_url.rstrip("/") != expected_url:
            return _result(name, HealthStatus.WARNING, "Runner configured for different repository", f"{detail}, Expected: {expected_url}")
        return _result(name, HealthStatus.OK, "Runner installation complete", detail)

    def check_runner_service(self) -> HealthCheckResult:
        name = "runner_service"
        runner_dir = str(self.config.get_runner_path())
        if not self.system.path_exists(runner_dir):
            return _result(name, HealthStatus.WARNING, "Runner not installed")
        if not self.system.path_exists(str(self.config.get_runner_path("svc.sh"))):
            return _result(name, HealthStatus.ERROR, "Runner service script not found", "svc.sh missing from runner directory")

        result = self.system.run(
            ["sudo", "./svc.sh", "status"],
            timeout=self.config.command_timeout_s,
            cwd=runner_dir,
        )
        if not result.ok:
            return _result(name, HealthStatus.WARNING, "Runner service not installed", "Run: sudo ./svc.sh install")

        output = result.output
        if "active (running)" in output:
            return _result(name, HealthStatus.OK, "Runner service running")
        if "inactive" in output:
            return _result(name, HealthStatus.WARNING, "Runner service not running", "Run: sudo ./svc.sh start")
        return _result(name, HealthStatus.WARNING, "Runner service status unclear", output.strip()[:200])

    def check_runner_logs(self) -> HealthCheckResult:
        name = "runner_logs"
        if not self.system.path_exists(str(self.config.get_runner_path())):
            return _result(name, HealthStatus.WARNING, "Runner not installed")
        diag_dir = str(self.config.get_runner_path("_diag"))
        if not self.system.path_exists(diag_dir):
            return _result(name, HealthStatus.WARNING, "Runner log directory not found", diag_dir)

        cutoff = self._clock() - _RECENT_LOG_WINDOW_S
        recent = [f for f in self.system.list_files(diag_dir, "*.log") if f.mtime >= cutoff]
        if not recent:
            return _result(name, HealthStatus.WARNING, "No recent runner logs", "No log files modified in the last 24 hours")

        with_errors = []
        for info in recent:
            text = self.system.read_text(info.path) or ""
            if _LOG_ERROR_PATTERN.search(text):
                with_errors.append(os.path.basename(info.path))
        if with_errors:
            return _result(
                name,
                HealthStatus.WARNING,
                "Errors found in runner logs",
                f"{len(with_errors)} files with errors: {', '.join(with_errors[:5])}",
            )
        return _result(name, HealthStatus.OK, "Runner logs available", f"Found {len(recent)} recent log files")

    # -- AWS -----------------------------------------------------------------

    def check_aws_connectivity(self) -> HealthCheckResult:
        name = "aws_connectivity"
        if self.aws is None or not self.aws.has_credentials():
            return _result(name, HealthStatus.WARNING, "AWS credentials not configured", "EC2 checks skipped")
        try:
            identity = self.aws.get_caller_identity()
        except AwsError as e:
            return _result(name, HealthStatus.ERROR, "AWS authentication failed", str(e))
        return _result(name, HealthStatus.OK, "AWS connectivity healthy", f"Identity: {identity['arn']}")

    def check_ec2_instance(self) -> HealthCheckResult:
        name = "ec2_instance"
        instance_id = self.config.ec2_instance_id
        if not instance_id:
            return _result(name, HealthStatus.WARNING, "EC2 instance not configured", "Set EC2_INSTANCE_ID")
        if self.aws is None or not self.aws.has_credentials():
            return _result(name, HealthStatus.WARNING, "Cannot check EC2 instance", "AWS credentials not configured")

        try:
            instance = self.aws.describe_instance(instance_id)
        except AwsError as e:
            return _result(name, HealthStatus.ERROR, "EC2 instance check failed", str(e))

        detail = (
            f"State: {instance.state}, Type: {instance.instance_type or 'unknown'}, "
            f"IP: {instance.public_ip or instance.private_ip or 'none'}"
        )
        if instance.state == "running":
            return _result(name, HealthStatus.OK, "EC2 instance accessible", detail)
        if instance.state == "stopped":
            return _result(name, HealthStatus.WARNING, "EC2 instance stopped", detail)
        if instance.state in ("stopping", "pending", "shutting-down"):
            return _result(name, HealthStatus.WARNING, "EC2 instance in transition", detail)
        if instance.state == "terminated":
            return _result(name, HealthStatus.ERROR, "EC2 instance terminated", detail)
        return _result(name, HealthStatus.WARNING, "EC2 instance in unknown state", detail)

    # -- Workflows -----------------------------------------------------------

    def check_workflow_files(self) -> HealthCheckResult:
        name = "workflow_files"
        workflow_dir = self.config.workflow_dir
        if not self.system.path_exists(workflow_dir):
            return _result(name, HealthStatus.WARNING, "Workflow directory not found", workflow_dir)

        files = self.system.list_files(workflow_dir, "*.yml") + self.system.list_files(workflow_dir, "*.yaml")
        if not files:
            return _result(name, HealthStatus.WARNING, "No workflow files found", workflow_dir)

        documents = {
            os.path.basename(f.path): self.system.read_text(f.path) or ""
            for f in files
        }
        self_hosted, unparseable = count_self_hosted_workflows(documents)
        runner_workflows = set(self_hosted) | {n for n in documents if "runner" in n}
        detail = f"Found {len(files)} workflow files, Runner workflows: {len(runner_workflows)}"
        if unparseable:
            detail += f", unparseable: {', '.join(sorted(unparseable))}"
        if not runner_workflows:
            return _result(name, HealthStatus.WARNING, "No runner-specific workflows found", detail)
        return _result(name, HealthStatus.OK, "Workflow files found", detail)

    def check_workflow_runs(self) -> HealthCheckResult:
        name = "workflow_runs"
        slug = self.config.repository_slug
        if not (self.config.github_token and slug):
            return _result(name, HealthStatus.WARNING, "Cannot check workflow runs", "Repository configuration incomplete")

        resp = self.github.list_workflow_runs(slug, per_page=10)
        if resp.status_code != 200:
            return _result(name, HealthStatus.WARNING, "Cannot access workflow runs", _http_detail(resp))

        data = resp.data or {}
        runs = data.get("workflow_runs") or []
        failed = sum(1 for r in runs if r.get("conclusion") == "failure")
        success = sum(1 for r in runs if r.get("conclusion") == "success")
        detail = (
            f"Total runs: {data.get('total_count', len(runs))}, Recent: {len(runs)}, "
            f"Failed: {failed}, Success: {success}"
        )
        if failed > 0 and failed > success:
            return _result(name, HealthStatus.WARNING, "High failure rate in recent runs", detail)
        return _result(name, HealthStatus.OK, "Workflow runs accessible", detail)


def _http_detail(resp) -> str:
    if resp.status_code is None:
        return f"Request failed: {resp.error}"
    return f"HTTP {resp.status_code}"
