from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta
from typing import Any

from qualitygate.errors import AlertNotFoundError
from qualitygate.schemas import ValidationAlert, ValidationMetrics


# ---------------------------------------------------------------------------
# Threshold definitions
# ---------------------------------------------------------------------------
# "above" metrics trigger when the value exceeds a level, "below" metrics when
# the value drops under it. Levels are checked most severe first; a level set
# to None is not evaluated. The least severe level is the reported threshold;
# the others only escalate severity.

DEFAULT_THRESHOLDS: dict[str, dict[str, Any]] = {
    "error_rate": {
        "direction": "above",
        "critical": 25.0,
        "high": 10.0,
    },
    "data_quality": {
        "direction": "below",
        "critical": 60.0,
        "high": 80.0,
    },
    "performance": {
        "direction": "above",
        "medium": 5000.0,
    },
}

SEVERITY_ORDER = ("critical", "high", "medium", "low")

_MESSAGES = {
    "error_rate": "Validation error rate {value:.1f}% exceeds threshold {threshold:.1f}%",
    "data_quality": "Data quality score {value:.1f}% below threshold {threshold:.1f}%",
    "performance": "Average validation time {value:.0f}ms exceeds threshold {threshold:.0f}ms",
}


def evaluate_threshold(
    metric_key: str,
    value: float,
    thresholds: dict[str, dict[str, Any]] | None = None,
) -> dict[str, Any] | None:
    """Check *value* against the thresholds for *metric_key*.

    Returns a dict with ``triggered``, ``severity``, ``threshold`` (the
    least severe configured level) and ``level`` (the level crossed), or
    ``None`` when the metric has no configured thresholds.
    """
    config = (thresholds or DEFAULT_THRESHOLDS).get(metric_key)
    if config is None:
        return None

    direction = config["direction"]
    levels = [(severity, config[severity]) for severity in SEVERITY_ORDER if config.get(severity) is not None]
    primary = levels[-1][1] if levels else None
    for severity, level in levels:
        if (direction == "below" and value < level) or (direction == "above" and value > level):
            return {"triggered": True, "severity": severity, "threshold": primary, "level": level}

    return {"triggered": False, "severity": None, "threshold": primary, "level": None}


def metric_values(metrics: ValidationMetrics) -> dict[str, float]:
    return {
        "error_rate": metrics.error_rate,
        "data_quality": metrics.data_quality_score,
        "performance": metrics.average_response_time_ms,
    }


class AlertEvaluator:
    """Turn a metrics snapshot into alerts, one per violating metric."""

    def __init__(self, thresholds: dict[str, dict[str, Any]] | None = None) -> None:
        self.thresholds = thresholds or DEFAULT_THRESHOLDS

    def evaluate(self, metrics: ValidationMetrics, now: datetime) -> list[ValidationAlert]:
        alerts: list[ValidationAlert] = []
        for metric_key, value in metric_values(metrics).items():
            result = evaluate_threshold(metric_key, value, self.thresholds)
            if result is None or not result["triggered"]:
                continue
            alerts.append(
                ValidationAlert(
                    id=str(uuid.uuid4()),
                    type=metric_key,
                    severity=result["severity"],
                    message=_MESSAGES[metric_key].format(value=value, threshold=result["threshold"]),
                    threshold=result["threshold"],
                    actual_value=value,
                    timestamp=now,
                )
            )
        return alerts


class AlertStore:
    """In-memory alert collection shared by the monitor ticks and the API."""

    def __init__(self) -> None:
        self._alerts: list[ValidationAlert] = []
        self._lock = threading.Lock()

    def add(self, alerts: list[ValidationAlert]) -> None:
        with self._lock:
            self._alerts.extend(alerts)

    def list_alerts(
        self,
        *,
        unacknowledged_only: bool = False,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[ValidationAlert]:
        with self._lock:
            items = list(self._alerts)
        if unacknowledged_only:
            items = [alert for alert in items if not alert.acknowledged]
        if since is not None:
            items = [alert for alert in items if alert.timestamp >= since]
        if until is not None:
            items = [alert for alert in items if alert.timestamp < until]
        return items

    def acknowledge(self, alert_id: str) -> ValidationAlert:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    alert.acknowledged = True
                    return alert
        raise AlertNotFoundError(f"Alert not found: {alert_id}", alert_id=alert_id)

    def prune(self, now: datetime, retention: timedelta) -> int:
        """Drop acknowledged alerts older than *retention*. Unacknowledged
        alerts are kept regardless of age."""
        cutoff = now - retention
        with self._lock:
            kept = [a for a in self._alerts if not (a.acknowledged and a.timestamp < cutoff)]
            removed = len(self._alerts) - len(kept)
            self._alerts = kept
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
