"""
Concurrent health check runner.

Every check runs on its own worker thread and is timed from the moment it
starts. A check that raises or runs past its timeout is reported as ERROR
under its own name; the remaining checks are unaffected. The aggregate
verdict comes from ``compute_overall`` and is therefore independent of
completion order.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Optional, Sequence

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from runnerops.config import RunnerOpsConfig
from runnerops.health.checks import HealthCheck
from runnerops.health.models import HealthCheckResult, HealthReport, HealthStatus, OverallHealth
from runnerops.session import Colors, NoColors, atomic_write

__all__ = ["HealthAggregator", "write_report", "render_summary"]

logger = logging.getLogger(__name__)

# Shortest wait between deadline checks
_POLL_FLOOR_S = 0.01

_STATUS_ICONS = {
    HealthStatus.OK: "✓",
    HealthStatus.WARNING: "⚠",
    HealthStatus.ERROR: "✗",
    HealthStatus.CRITICAL: "✗",
}


class HealthAggregator:
    """
    Run named checks and fold them into a ``HealthReport``.

    Args:
        config: Supplies the check timeout, repository and runner name
        timeout: Seconds allowed for each check; defaults to
            ``config.check_timeout_s``
    """

    def __init__(self, config: RunnerOpsConfig, timeout: Optional[float] = None):
        self.config = config
        self.timeout = timeout if timeout is not None else config.check_timeout_s
        self._tracer = trace.get_tracer("runnerops.health")

    def run_health_checks(self, checks: Sequence[tuple[str, HealthCheck]]) -> HealthReport:
        """
        Run every check and aggregate.

        Results keep the order of ``checks``.

        Raises:
            ValueError: two checks share a name
        """
        names = [name for name, _ in checks]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate health check names: {names}")

        results: dict[str, HealthCheckResult] = {}
        with self._tracer.start_as_current_span("health.aggregate", kind=SpanKind.INTERNAL) as span:
            span.set_attribute("health.check_count", len(checks))
            parent = otel_context.get_current()
            started: dict[str, float] = {}
            pool = ThreadPoolExecutor(max_workers=max(1, len(checks)), thread_name_prefix="health")
            try:
                futures = {
                    pool.submit(self._run_one, name, check, parent, started): name
                    for name, check in checks
                }
                pending = set(futures)
                while pending:
                    now = time.monotonic()
                    expired = {
                        future for future in pending
                        if not future.done() and now - started.get(futures[future], now) >= self.timeout
                    }
                    for future in expired:
                        name = futures[future]
                        logger.warning("Health check %s timed out after %ss", name, self.timeout)
                        results[name] = HealthCheckResult(
                            check_name=name,
                            status=HealthStatus.ERROR,
                            message="Check timed out",
                            detail=f"No result within {self.timeout}s",
                            duration=self.timeout,
                        )
                    pending -= expired
                    if not pending:
                        break
                    next_deadline = min(started.get(futures[f], now) + self.timeout for f in pending)
                    done, pending = wait(
                        pending,
                        timeout=max(next_deadline - now, _POLL_FLOOR_S),
                        return_when=FIRST_COMPLETED,
                    )
                    for future in done:
                        results[futures[future]] = future.result()
            finally:
                pool.shutdown(wait=False, cancel_futures=True)

            report = HealthReport.from_results(
                (results[name] for name in names),
                repository=self.config.repository_slug,
                runner_name=self.config.runner_name,
            )
            span.set_attribute("health.overall", report.overall.value)
            span.set_attribute("health.issues", len(report.issues))
            span.set_attribute("health.warnings", len(report.warnings))
            span.set_status(Status(StatusCode.OK))

        logger.info(
            "Health verdict: %s",
            report.overall.value,
            extra={"details": f"issues={len(report.issues)} warnings={len(report.warnings)}"},
        )
        return report

    def _run_one(
        self,
        name: str,
        check: HealthCheck,
        parent=None,
        started: Optional[dict[str, float]] = None,
    ) -> HealthCheckResult:
        start = time.monotonic()
        if started is not None:
            started[name] = start
        with self._tracer.start_as_current_span(
            f"health:{name}",
            context=parent,
            kind=SpanKind.INTERNAL,
        ) as span:
            try:
                result = check()
            except Exception as e:
                logger.warning("Health check %s raised: %s", name, e, exc_info=True)
                span.record_exception(e)
                result = HealthCheckResult(
                    check_name=name,
                    status=HealthStatus.ERROR,
                    message="Check raised an exception",
                    detail=f"{type(e).__name__}: {e}",
                )
            result = result.model_copy(update={
                "check_name": name,
                "duration": round(time.monotonic() - start, 3),
            })
            span.set_attribute("health.check", name)
            span.set_attribute("health.status", result.status.value)
            if result.status.is_issue:
                span.set_status(Status(StatusCode.ERROR, result.message))
            else:
                span.set_status(Status(StatusCode.OK))
        logger.debug("Health check %s: %s %s", name, result.status.value, result.message)
        return result


def write_report(report: HealthReport, path: Path) -> Path:
    """Persist the report as JSON (atomic, mode 600)."""
    path = Path(path)
    atomic_write(path, json.dumps(report.to_report_dict(), indent=2), prefix=".health-report-")
    logger.info("Health report written to %s", path)
    return path


def render_summary(report: HealthReport, use_colors: bool = True) -> str:
    """Terminal rendering of a report."""
    c = Colors if use_colors else NoColors
    status_colors = {
        HealthStatus.OK: c.GREEN,
        HealthStatus.WARNING: c.YELLOW,
        HealthStatus.ERROR: c.RED,
        HealthStatus.CRITICAL: c.RED,
    }
    overall_color = {
        OverallHealth.HEALTHY: c.GREEN,
        OverallHealth.DEGRADED: c.YELLOW,
        OverallHealth.UNHEALTHY: c.RED,
    }[report.overall]

    lines = [f"{c.BOLD}Runner Health Check{c.RESET}"]
    if report.repository:
        lines.append(f"  Repository: {report.repository}")
    if report.runner_name:
        lines.append(f"  Runner:     {report.runner_name}")
    lines.append("")

    for name, result in report.checks.items():
        color = status_colors[result.status]
        line = f"  {color}{_STATUS_ICONS[result.status]}{c.RESET} {name}: {result.message}"
        if result.detail:
            line += f" ({result.detail})"
        lines.append(line)

    lines.append("")
    lines.append(f"Overall: {overall_color}{c.BOLD}{report.overall.value}{c.RESET}")
    lines.append(f"  Issues: {len(report.issues)}  Warnings: {len(report.warnings)}")
    for issue in report.issues:
        lines.append(f"  {c.RED}✗{c.RESET} {issue}")
    for warning in report.warnings:
        lines.append(f"  {c.YELLOW}⚠{c.RESET} {warning}")
    return "\n".join(lines)
