"""Validation monitor.

Periodically aggregates persisted outcomes into metrics, raises threshold
alerts and produces the daily and weekly reports. Every tick is a public
method so it can be driven directly, without the scheduler threads.
"""

from __future__ import annotations

import dataclasses
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from qualitygate import events
from qualitygate.alerts import AlertEvaluator, AlertStore
from qualitygate.events import EventBus
from qualitygate.logging_config import get_logger
from qualitygate.metrics import (
    compute_metrics,
    daily_trend,
    entity_type_breakdown,
    hourly_performance,
    mean,
    top_failing_rules,
)
from qualitygate.scheduling import ScheduledJob, daily_at, every_seconds, weekly_at
from qualitygate.schemas import ValidationAlert, ValidationMetrics
from qualitygate.store import SqlStore


logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _midnight(ts: datetime) -> datetime:
    return ts.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class MonitorConfig:
    error_rate_threshold: float = 10.0
    error_rate_critical_threshold: float = 25.0
    data_quality_threshold: float = 80.0
    data_quality_critical_threshold: float = 60.0
    performance_threshold: float = 5000.0
    metrics_interval_seconds: float = 60.0
    alert_interval_seconds: float = 300.0
    metrics_window_hours: int = 24
    alert_retention_days: int = 7
    top_failing_limit: int = 10
    report_hour_utc: int = 9

    def thresholds(self) -> dict[str, dict[str, Any]]:
        return {
            "error_rate": {
                "direction": "above",
                "critical": self.error_rate_critical_threshold,
                "high": self.error_rate_threshold,
            },
            "data_quality": {
                "direction": "below",
                "critical": self.data_quality_critical_threshold,
                "high": self.data_quality_threshold,
            },
            "performance": {
                "direction": "above",
                "medium": self.performance_threshold,
            },
        }


class ValidationMonitor:
    STOPPED = "stopped"
    RUNNING = "running"

    def __init__(
        self,
        store: SqlStore,
        event_bus: EventBus | None = None,
        config: MonitorConfig | None = None,
        alert_store: AlertStore | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.store = store
        self.events = event_bus or EventBus()
        self.config = config or MonitorConfig()
        self.alerts = alert_store or AlertStore()
        self.clock = clock
        self.evaluator = AlertEvaluator(self.config.thresholds())
        self.state = self.STOPPED
        self.latest_metrics: ValidationMetrics | None = None
        self._jobs: list[ScheduledJob] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self.state == self.RUNNING:
                logger.warning("monitor_already_running")
                return
            self._jobs = self._build_jobs()
            for job in self._jobs:
                job.start()
            self.state = self.RUNNING
        logger.info("monitor_started", jobs=[job.name for job in self._jobs])
        self.events.emit(events.MONITOR_STARTED, self.status())

    def stop(self) -> None:
        with self._lock:
            if self.state == self.STOPPED:
                logger.warning("monitor_not_running")
                return
            for job in self._jobs:
                job.stop()
            self._jobs = []
            self.state = self.STOPPED
        logger.info("monitor_stopped")
        self.events.emit(events.MONITOR_STOPPED, self.status())

    def _build_jobs(self) -> list[ScheduledJob]:
        cfg = self.config
        return [
            ScheduledJob("metrics", every_seconds(cfg.metrics_interval_seconds), self.run_metrics_tick),
            ScheduledJob("alerts", every_seconds(cfg.alert_interval_seconds), self.run_alert_tick),
            ScheduledJob("daily-report", daily_at(cfg.report_hour_utc), self.generate_daily_report),
            ScheduledJob("weekly-report", weekly_at("monday", cfg.report_hour_utc), self.generate_weekly_report),
        ]

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def _window_metrics(self, now: datetime) -> ValidationMetrics:
        window_start = now - timedelta(hours=self.config.metrics_window_hours)
        rows = self.store.list_results(start=window_start, end=now + timedelta(microseconds=1))
        return compute_metrics(
            rows,
            window_start=window_start,
            computed_at=now,
            top_limit=self.config.top_failing_limit,
        )

    def run_metrics_tick(self) -> ValidationMetrics:
        metrics = self._window_metrics(self.clock())
        self.latest_metrics = metrics
        logger.debug(
            "metrics_updated",
            total=metrics.total_validations,
            error_rate=metrics.error_rate,
            data_quality_score=metrics.data_quality_score,
        )
        self.events.emit(events.METRICS_UPDATED, metrics)
        return metrics

    def run_alert_tick(self) -> list[ValidationAlert]:
        now = self.clock()
        metrics = self._window_metrics(now)
        raised = self.evaluator.evaluate(metrics, now)
        self.alerts.add(raised)
        pruned = self.alerts.prune(now, timedelta(days=self.config.alert_retention_days))
        for alert in raised:
            log = logger.error if alert.severity == "critical" else logger.warning
            log(
                "alert_raised",
                alert_id=alert.id,
                type=alert.type,
                severity=alert.severity,
                actual_value=alert.actual_value,
                threshold=alert.threshold,
            )
        if raised:
            self.events.emit(events.ALERTS_RAISED, raised)
        if pruned:
            logger.info("alerts_pruned", count=pruned)
        return raised

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def generate_daily_report(self) -> dict[str, Any]:
        """Summary of the previous UTC day."""
        now = self.clock()
        end = _midnight(now)
        start = end - timedelta(days=1)
        rows = self.store.list_results(start=start, end=end)
        report = {
            "date": start.date().isoformat(),
            "period": {"start": start, "end": end},
            "entity_types": entity_type_breakdown(rows),
            "metrics": compute_metrics(
                rows,
                window_start=start,
                computed_at=now,
                top_limit=self.config.top_failing_limit,
            ),
            "alerts": self.alerts.list_alerts(since=start, until=end),
            "generated_at": now,
        }
        logger.info("daily_report_generated", date=report["date"], total=len(rows))
        self.events.emit(events.DAILY_REPORT, report)
        return report

    def generate_weekly_report(self) -> dict[str, Any]:
        """Trend for the seven UTC days before today."""
        now = self.clock()
        end = _midnight(now)
        start = end - timedelta(days=7)
        rows = self.store.list_results(start=start, end=end)
        alerts = self.alerts.list_alerts(since=start, until=end)
        report = {
            "period": {"start": start, "end": end},
            "trend": daily_trend(rows, start, 7),
            "top_failing_rules": top_failing_rules(rows, 5),
            "alert_summary": {
                "total": len(alerts),
                "unacknowledged": sum(1 for alert in alerts if not alert.acknowledged),
                "by_severity": dict(Counter(alert.severity for alert in alerts)),
                "by_type": dict(Counter(alert.type for alert in alerts)),
            },
            "generated_at": now,
        }
        logger.info("weekly_report_generated", start=start.date().isoformat(), total=len(rows))
        self.events.emit(events.WEEKLY_REPORT, report)
        return report

    def data_quality_report(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        entity_type: str | None = None,
    ) -> dict[str, Any]:
        rows = self.store.list_results(start=start, end=end, entity_type=entity_type)
        return {
            "period": {"start": start, "end": end},
            "entity_types": entity_type_breakdown(rows),
            "overall": compute_metrics(
                rows,
                window_start=start,
                computed_at=self.clock(),
                top_limit=self.config.top_failing_limit,
            ),
        }

    def failures_report(
        self,
        *,
        entity_type: str | None = None,
        severity: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        return self.store.list_results(
            entity_type=entity_type,
            severity=severity,
            only_failed=True,
            limit=limit,
            newest_first=True,
        )

    def performance_report(self, hours: int = 24) -> dict[str, Any]:
        """Hourly throughput and mean validation time, ending with the current hour."""
        now = self.clock()
        current_hour = now.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)
        start = current_hour - timedelta(hours=hours - 1)
        rows = self.store.list_results(start=start, end=now + timedelta(microseconds=1))
        durations = [row["duration_ms"] for row in rows if row.get("duration_ms") is not None]
        return {
            "period": {"start": start, "end": now},
            "hourly": hourly_performance(rows, start, hours),
            "total_validations": len(rows),
            "average_response_time_ms": mean(durations) or 0.0,
            "generated_at": now,
        }

    # ------------------------------------------------------------------
    # Queries and control
    # ------------------------------------------------------------------

    def get_metrics(self) -> ValidationMetrics:
        """Fresh metrics for the trailing window."""
        metrics = self._window_metrics(self.clock())
        self.latest_metrics = metrics
        return metrics

    def get_alerts(self, unacknowledged_only: bool = False) -> list[ValidationAlert]:
        return self.alerts.list_alerts(unacknowledged_only=unacknowledged_only)

    def acknowledge_alert(self, alert_id: str) -> ValidationAlert:
        alert = self.alerts.acknowledge(alert_id)
        self.events.emit(events.ALERT_ACKNOWLEDGED, alert)
        return alert

    def update_config(self, **changes: Any) -> MonitorConfig:
        known = {field.name for field in dataclasses.fields(MonitorConfig)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown monitor settings: {', '.join(unknown)}")

        with self._lock:
            self.config = dataclasses.replace(self.config, **changes)
            self.evaluator = AlertEvaluator(self.config.thresholds())
            if self.state == self.RUNNING:
                for job in self._jobs:
                    job.stop()
                self._jobs = self._build_jobs()
                for job in self._jobs:
                    job.start()
        logger.info("monitor_config_updated", changes=sorted(changes))
        self.events.emit(events.CONFIG_UPDATED, self.config)
        return self.config

    def status(self) -> dict[str, Any]:
        with self._lock:
            jobs = [
                {
                    "name": job.name,
                    "running": job.running,
                    "next_run_at": job.next_run_at,
                }
                for job in self._jobs
            ]
        return {
            "state": self.state,
            "config": dataclasses.asdict(self.config),
            "jobs": jobs,
            "alert_count": len(self.alerts),
            "last_metrics_at": self.latest_metrics.computed_at if self.latest_metrics else None,
        }
