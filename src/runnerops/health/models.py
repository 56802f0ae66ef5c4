"""
Health status model.

Individual checks report ``OK``/``WARNING``/``ERROR``/``CRITICAL``; the
aggregate verdict is derived from those statuses alone:

- ``UNHEALTHY`` if any check is ERROR or CRITICAL
- ``DEGRADED`` if none is, but at least one is WARNING
- ``HEALTHY`` otherwise

The verdict does not depend on check order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from runnerops import __version__

__all__ = [
    "HealthStatus",
    "OverallHealth",
    "HealthCheckResult",
    "HealthReport",
    "compute_overall",
]


class HealthStatus(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def is_issue(self) -> bool:
        return self in (HealthStatus.ERROR, HealthStatus.CRITICAL)


class OverallHealth(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    UNHEALTHY = "UNHEALTHY"

    @property
    def exit_code(self) -> int:
        return {
            OverallHealth.HEALTHY: 0,
            OverallHealth.DEGRADED: 1,
            OverallHealth.UNHEALTHY: 2,
        }[self]


def compute_overall(statuses: Iterable[HealthStatus]) -> OverallHealth:
    statuses = set(statuses)
    if any(s.is_issue for s in statuses):
        return OverallHealth.UNHEALTHY
    if HealthStatus.WARNING in statuses:
        return OverallHealth.DEGRADED
    return OverallHealth.HEALTHY


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class HealthCheckResult(BaseModel):
    """Outcome of one named health check."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    check_name: str
    status: HealthStatus
    message: str
    detail: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration: Optional[float] = Field(None, description="Seconds the check took")

    @property
    def summary_line(self) -> str:
        return f"{self.check_name}: {self.message}"


class HealthReport(BaseModel):
    """Aggregated, immutable health verdict."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    overall: OverallHealth
    checks: dict[str, HealthCheckResult] = Field(default_factory=dict)
    issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    repository: Optional[str] = None
    runner_name: Optional[str] = None

    @classmethod
    def from_results(
        cls,
        results: Iterable[HealthCheckResult],
        repository: Optional[str] = None,
        runner_name: Optional[str] = None,
    ) -> "HealthReport":
        results = list(results)
        return cls(
            overall=compute_overall(r.status for r in results),
            checks={r.check_name: r for r in results},
            issues=[r.summary_line for r in results if r.status.is_issue],
            warnings=[r.summary_line for r in results if r.status == HealthStatus.WARNING],
            repository=repository,
            runner_name=runner_name,
        )

    @property
    def exit_code(self) -> int:
        return self.overall.exit_code

    def to_report_dict(self) -> dict[str, Any]:
        """JSON layout of the on-disk health report."""
        ts = self.timestamp.isoformat()
        return {
            "health_check": {
                "timestamp": ts,
                "version": __version__,
                "repository": self.repository,
                "runner_name": self.runner_name,
            },
            "checks": {
                name: {
                    "status": result.status.value,
                    "message": result.message,
                    "details": result.detail,
                    "timestamp": result.timestamp.isoformat(),
                    "duration": result.duration,
                }
                for name, result in self.checks.items()
            },
            "summary": {
                "overall_health": self.overall.value,
                "timestamp": ts,
                "issues_count": len(self.issues),
                "warnings_count": len(self.warnings),
                "issues": list(self.issues),
                "warnings": list(self.warnings),
            },
        }
