"""Aggregations over persisted validation results.

All functions take the row dicts returned by ``SqlStore.list_results`` and
are pure, so the monitor and the report endpoints share them.
"""

from __future__ import annotations

import statistics
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from qualitygate.schemas import RuleFailureCount, ValidationMetrics


def ratio_percent(numerator: float, denominator: float) -> Optional[float]:
    if denominator == 0:
        return None
    return numerator / denominator * 100.0


def mean(values: Iterable[float]) -> Optional[float]:
    values_list = list(values)
    if not values_list:
        return None
    return statistics.fmean(values_list)


def top_failing_rules(rows: Iterable[dict[str, Any]], limit: int = 10) -> list[RuleFailureCount]:
    counts: Counter[str] = Counter()
    for row in rows:
        counts.update(row.get("failed_rules") or [])
    # Counter.most_common keeps first-seen order for ties; sort by name instead.
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [RuleFailureCount(rule_name=name, failure_count=count) for name, count in ranked[:limit]]


def compute_metrics(
    rows: Iterable[dict[str, Any]],
    *,
    window_start: datetime | None = None,
    computed_at: datetime | None = None,
    top_limit: int = 10,
) -> ValidationMetrics:
    rows_list = list(rows)
    total = len(rows_list)
    successful = sum(1 for row in rows_list if row["is_valid"])
    failed = total - successful
    durations = [row["duration_ms"] for row in rows_list if row.get("duration_ms") is not None]

    return ValidationMetrics(
        total_validations=total,
        successful_validations=successful,
        failed_validations=failed,
        error_rate=ratio_percent(failed, total) or 0.0,
        data_quality_score=ratio_percent(successful, total) if total else 100.0,
        average_response_time_ms=mean(durations) or 0.0,
        top_failing_rules=top_failing_rules(rows_list, top_limit),
        window_start=window_start,
        computed_at=computed_at,
    )


def entity_type_breakdown(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Per entity type totals, sorted by entity type."""
    buckets: dict[str, dict[str, int]] = defaultdict(
        lambda: {"total": 0, "passed": 0, "failed": 0, "warnings": 0}
    )
    for row in rows:
        bucket = buckets[row["entity_type"]]
        bucket["total"] += 1
        if row["is_valid"]:
            bucket["passed"] += 1
        else:
            bucket["failed"] += 1
        bucket["warnings"] += len(row.get("warnings") or [])

    breakdown = []
    for entity_type in sorted(buckets):
        bucket = buckets[entity_type]
        breakdown.append(
            {
                "entity_type": entity_type,
                **bucket,
                "success_rate": ratio_percent(bucket["passed"], bucket["total"]) or 0.0,
            }
        )
    return breakdown


def daily_trend(
    rows: Iterable[dict[str, Any]],
    start: datetime,
    days: int,
) -> list[dict[str, Any]]:
    """One entry per UTC day from ``start``; days without results are
    reported with zero totals."""
    per_day: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for row in rows:
        per_day[row["validated_at"].date().isoformat()].append(row)

    trend = []
    for offset in range(days):
        day = (start + timedelta(days=offset)).date().isoformat()
        day_rows = per_day.get(day, [])
        passed = sum(1 for row in day_rows if row["is_valid"])
        trend.append(
            {
                "date": day,
                "total": len(day_rows),
                "passed": passed,
                "failed": len(day_rows) - passed,
                "error_rate": ratio_percent(len(day_rows) - passed, len(day_rows)) or 0.0,
            }
        )
    return trend


def hourly_performance(
    rows: Iterable[dict[str, Any]],
    start: datetime,
    hours: int,
) -> list[dict[str, Any]]:
    """Validation count and mean ``duration_ms`` per UTC hour from ``start``."""
    per_hour: dict[datetime, list[dict[str, Any]]] = defaultdict(list)
    for row in rows:
        per_hour[row["validated_at"].replace(minute=0, second=0, microsecond=0)].append(row)

    buckets = []
    for offset in range(hours):
        hour = start + timedelta(hours=offset)
        hour_rows = per_hour.get(hour, [])
        durations = [row["duration_ms"] for row in hour_rows if row.get("duration_ms") is not None]
        buckets.append(
            {
                "hour": hour,
                "validations_count": len(hour_rows),
                "average_response_time_ms": mean(durations) or 0.0,
            }
        )
    return buckets
