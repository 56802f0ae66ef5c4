"""
Runner health: the canonical checks and their concurrent aggregation.
"""

from runnerops.health.aggregator import HealthAggregator, render_summary, write_report
from runnerops.health.checks import HealthCheck, RunnerHealthChecks, count_self_hosted_workflows
from runnerops.health.models import (
    HealthCheckResult,
    HealthReport,
    HealthStatus,
    OverallHealth,
    compute_overall,
)

__all__ = [
    "HealthAggregator",
    "HealthCheck",
    "HealthCheckResult",
    "HealthReport",
    "HealthStatus",
    "OverallHealth",
    "RunnerHealthChecks",
    "compute_overall",
    "count_self_hosted_workflows",
    "render_summary",
    "write_report",
]
