"""Queue health and stuck-task monitoring on top of the OCR engine's queue.

Any failure to reach the engine is reported as `ServiceUnavailable`: the
monitored system is down, the monitor is not.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping

from ocrflow.errors import PermanentFailure, ServiceUnavailable, TransientUpstreamFailure, ValidationFailure
from ocrflow.utils.logging_utils import structured_log

from .interfaces import MetricsClient
from .metrics import NullMetrics
from .ocr_client import OcrDispatchClient

LOG = logging.getLogger("queue_monitoring")

STATISTIC_KEYS = ("queued", "processing", "failed", "completed_today", "stuck", "dead_letter_queue")

_UPSTREAM_ERRORS = (TransientUpstreamFailure, PermanentFailure)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True)
class HealthThresholds:
    """Strictly-greater-than limits; equal to the limit is still healthy."""

    stuck_warning: int = 3
    dead_letter_critical: int = 20


@dataclass(slots=True)
class CleanupReport:
    timeout_seconds: int
    dry_run: bool
    found: List[str] = field(default_factory=list)
    reset: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["count"] = len(self.found)
        return payload


def _as_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def normalise_statistics(raw: Mapping[str, Any]) -> Dict[str, Any]:
    stats: Dict[str, Any] = dict(raw)
    for key in STATISTIC_KEYS:
        stats[key] = _as_count(raw.get(key))
    return stats


def classify_health(statistics: Mapping[str, Any], thresholds: HealthThresholds) -> Dict[str, Any]:
    stuck = _as_count(statistics.get("stuck"))
    dead_letters = _as_count(statistics.get("dead_letter_queue"))
    status = HealthStatus.HEALTHY
    issues: List[str] = []
    if stuck > thresholds.stuck_warning:
        status = HealthStatus.WARNING
        issues.append(f"High number of stuck tasks: {stuck}")
    if dead_letters > thresholds.dead_letter_critical:
        status = HealthStatus.CRITICAL
        issues.append(f"High dead letter queue count: {dead_letters}")
    return {"status": status.value, "issues": issues}


class QueueMonitoringService:
    def __init__(
        self,
        client: OcrDispatchClient,
        *,
        thresholds: HealthThresholds | None = None,
        default_stuck_timeout: int = 30,
        metrics: MetricsClient | None = None,
    ) -> None:
        self.client = client
        self.thresholds = thresholds or HealthThresholds()
        self.default_stuck_timeout = default_stuck_timeout
        self.metrics = metrics or NullMetrics()

    @classmethod
    def from_config(cls, cfg, client: OcrDispatchClient, *, metrics: MetricsClient | None = None):
        return cls(
            client,
            thresholds=HealthThresholds(
                stuck_warning=cfg.queue_stuck_warning_threshold,
                dead_letter_critical=cfg.queue_dlq_critical_threshold,
            ),
            default_stuck_timeout=cfg.stuck_task_timeout_seconds,
            metrics=metrics,
        )

    def get_statistics(self) -> Dict[str, Any]:
        try:
            raw = self.client.get_queue_statistics()
        except _UPSTREAM_ERRORS as exc:
            structured_log(LOG, logging.ERROR, "queue_statistics_unavailable", error=str(exc))
            raise ServiceUnavailable(f"Error retrieving queue statistics: {exc}") from exc
        return normalise_statistics(raw)

    def get_health(self) -> Dict[str, Any]:
        statistics = self.get_statistics()
        report = classify_health(statistics, self.thresholds)
        report["timestamp"] = datetime.now(tz=timezone.utc).isoformat()
        level = logging.INFO if report["status"] == HealthStatus.HEALTHY.value else logging.WARNING
        structured_log(LOG, level, "queue_health", health=report["status"], issues=report["issues"] or None)
        self.metrics.increment("queue_health", component="monitoring", outcome=report["status"])
        return report

    def resolve_timeout(self, timeout_seconds: int | None) -> int:
        timeout = self.default_stuck_timeout if timeout_seconds is None else int(timeout_seconds)
        if timeout <= 0:
            raise ValidationFailure("timeout_seconds must be a positive integer")
        return timeout

    def find_stuck_tasks(self, timeout_seconds: int | None = None) -> List[str]:
        timeout = self.resolve_timeout(timeout_seconds)
        try:
            tasks = self.client.find_stuck_tasks(timeout)
        except _UPSTREAM_ERRORS as exc:
            structured_log(LOG, logging.ERROR, "stuck_tasks_unavailable", timeout_seconds=timeout, error=str(exc))
            raise ServiceUnavailable(f"Error finding stuck tasks: {exc}") from exc
        structured_log(LOG, logging.INFO, "stuck_tasks_listed", timeout_seconds=timeout, count=len(tasks))
        return tasks

    def cleanup_stuck_tasks(self, timeout_seconds: int | None = None, *, dry_run: bool = False) -> CleanupReport:
        """Ask the engine to re-queue every task stuck longer than the timeout."""

        timeout = self.resolve_timeout(timeout_seconds)
        report = CleanupReport(timeout_seconds=timeout, dry_run=dry_run)
        report.found = self.find_stuck_tasks(timeout)
        if dry_run:
            structured_log(LOG, logging.INFO, "stuck_tasks_cleanup_dry_run", count=len(report.found), dry_run=True)
            return report
        for task_id in report.found:
            if self.client.reset_stuck_task(task_id):
                report.reset.append(task_id)
            else:
                report.failed.append(task_id)
        structured_log(
            LOG,
            logging.INFO if report.succeeded else logging.WARNING,
            "stuck_tasks_cleanup",
            count=len(report.reset),
            failure_count=len(report.failed),
            timeout_seconds=timeout,
        )
        self.metrics.increment("stuck_task_reset", len(report.reset), component="monitoring", outcome="reset")
        return report


__all__ = [
    "HealthStatus",
    "HealthThresholds",
    "CleanupReport",
    "QueueMonitoringService",
    "classify_health",
    "normalise_statistics",
    "STATISTIC_KEYS",
]
