"""
runnerops - Installation readiness, retry and health aggregation for
self-hosted GitHub Actions runners.

The engine behind runner provisioning on a fresh cloud instance:

- Readiness probes gate installation until boot, disk, memory, network
  and the package manager are ready
- Failures are classified into a closed set of error kinds, each with
  remediation text and a scoped diagnostic bundle
- Installation steps run under a bounded exponential-backoff retry policy
- Every step attempt is recorded in a persisted installation session
- A concurrent health check suite folds into HEALTHY/DEGRADED/UNHEALTHY

Example usage:
    from runnerops import LocalSystem, get_config
    from runnerops.installer import InstallationStep, RunnerInstaller
    from runnerops.steps import update_package_lists

    config = get_config()
    system = LocalSystem()
    installer = RunnerInstaller(config, system)
    result = installer.run([InstallationStep("update", update_package_lists(system))])
    sys.exit(result.exit_code)
"""

__version__ = "0.1.0"
__all__ = [
    "ErrorKind",
    "LocalSystem",
    "ReadinessProber",
    "StepExecutor",
    "SessionRecorder",
    "HealthAggregator",
    "RunnerHealthChecks",
    "classify",
    "get_config",
    "__version__",
]


# Lazy imports to avoid loading boto3 and opentelemetry at import time
def __getattr__(name: str):
    if name == "ErrorKind":
        from runnerops.errors import ErrorKind
        return ErrorKind
    if name == "LocalSystem":
        from runnerops.system import LocalSystem
        return LocalSystem
    if name == "ReadinessProber":
        from runnerops.readiness import ReadinessProber
        return ReadinessProber
    if name == "StepExecutor":
        from runnerops.executor import StepExecutor
        return StepExecutor
    if name == "SessionRecorder":
        from runnerops.session import SessionRecorder
        return SessionRecorder
    if name == "HealthAggregator":
        from runnerops.health import HealthAggregator
        return HealthAggregator
    if name == "RunnerHealthChecks":
        from runnerops.health import RunnerHealthChecks
        return RunnerHealthChecks
    if name == "classify":
        from runnerops.classifier import classify
        return classify
    if name == "get_config":
        from runnerops.config import get_config
        return get_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
