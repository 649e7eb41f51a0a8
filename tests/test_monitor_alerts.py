"""Monitor metrics and threshold alerting."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from qualitygate import events
from qualitygate.alerts import AlertEvaluator, AlertStore, evaluate_threshold
from qualitygate.errors import AlertNotFoundError
from qualitygate.schemas import ValidationIssue, ValidationMetrics, ValidationOutcome


def record(store, at, *, valid=True, failed_rules=(), duration_ms=25.0, entity_type="contact", entity_id="e"):
    issues = [] if valid else [ValidationIssue(field="name", message="required", code="required")]
    outcome = ValidationOutcome.build(
        entity_type=entity_type,
        entity_id=entity_id,
        errors=issues,
        failed_rules=list(failed_rules) if not valid else [],
        validated_at=at,
    )
    store.save_result(outcome, duration_ms=duration_ms)


def record_many(store, at, *, passed, failed, **kwargs):
    for i in range(passed):
        record(store, at, valid=True, entity_id=f"ok-{i}", **kwargs)
    for i in range(failed):
        record(store, at, valid=False, entity_id=f"bad-{i}", failed_rules=["contact_required_name"], **kwargs)


@pytest.fixture
def monitor(services):
    return services.monitor


# ---------------------------------------------------------------------------
# Threshold table
# ---------------------------------------------------------------------------


class TestEvaluateThreshold:
    def test_error_rate_levels(self):
        assert evaluate_threshold("error_rate", 30.0)["severity"] == "critical"
        assert evaluate_threshold("error_rate", 15.0)["severity"] == "high"
        assert evaluate_threshold("error_rate", 10.0)["triggered"] is False

    def test_data_quality_levels(self):
        assert evaluate_threshold("data_quality", 50.0)["severity"] == "critical"
        assert evaluate_threshold("data_quality", 70.0)["severity"] == "high"
        assert evaluate_threshold("data_quality", 80.0)["triggered"] is False

    def test_performance_level(self):
        result = evaluate_threshold("performance", 5001.0)
        assert result == {"triggered": True, "severity": "medium", "threshold": 5000.0, "level": 5000.0}

    def test_escalation_reports_the_primary_threshold(self):
        critical = evaluate_threshold("error_rate", 30.0)
        assert (critical["threshold"], critical["level"]) == (10.0, 25.0)
        low_quality = evaluate_threshold("data_quality", 50.0)
        assert (low_quality["threshold"], low_quality["level"]) == (80.0, 60.0)

    def test_unknown_metric_returns_none(self):
        assert evaluate_threshold("throughput", 1.0) is None

    def test_evaluator_builds_one_alert_per_metric(self):
        now = datetime(2026, 3, 11, tzinfo=timezone.utc)
        metrics = ValidationMetrics(
            total_validations=10,
            failed_validations=5,
            successful_validations=5,
            error_rate=50.0,
            data_quality_score=50.0,
            average_response_time_ms=10.0,
        )
        alerts = AlertEvaluator().evaluate(metrics, now)
        assert sorted((a.type, a.severity) for a in alerts) == [
            ("data_quality", "critical"),
            ("error_rate", "critical"),
        ]
        assert all(a.timestamp == now and not a.acknowledged for a in alerts)
        assert len({a.id for a in alerts}) == 2


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class TestMetrics:
    def test_empty_window(self, monitor):
        metrics = monitor.get_metrics()
        assert metrics.total_validations == 0
        assert metrics.error_rate == 0.0
        assert metrics.data_quality_score == 100.0
        assert metrics.top_failing_rules == []

    def test_percentages_and_average(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=1), passed=3, failed=1, duration_ms=100.0)

        metrics = monitor.run_metrics_tick()

        assert metrics.total_validations == 4
        assert metrics.failed_validations == 1
        assert metrics.error_rate == pytest.approx(25.0)
        assert metrics.data_quality_score == pytest.approx(75.0)
        assert metrics.average_response_time_ms == pytest.approx(100.0)
        assert metrics.window_start == clock() - timedelta(hours=24)

    def test_results_outside_window_are_ignored(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=25), passed=0, failed=5)
        record_many(store, clock() - timedelta(hours=2), passed=2, failed=0)
        assert monitor.get_metrics().total_validations == 2

    def test_top_failing_rules(self, monitor, store, clock):
        at = clock() - timedelta(minutes=5)
        for _ in range(3):
            record(store, at, valid=False, failed_rules=["rule_a", "rule_b"])
        record(store, at, valid=False, failed_rules=["rule_b"])
        record(store, at, valid=False, failed_rules=["rule_c"])

        top = monitor.get_metrics().top_failing_rules

        assert [(t.rule_name, t.failure_count) for t in top] == [
            ("rule_b", 4),
            ("rule_a", 3),
            ("rule_c", 1),
        ]

    def test_top_failing_rules_capped(self, monitor, store, clock):
        monitor.update_config(top_failing_limit=2)
        at = clock() - timedelta(minutes=5)
        record(store, at, valid=False, failed_rules=["r1", "r2", "r3"])
        assert len(monitor.get_metrics().top_failing_rules) == 2

    def test_metrics_tick_emits_event(self, services, monitor):
        seen = []
        services.events.subscribe(events.METRICS_UPDATED, seen.append)
        metrics = monitor.run_metrics_tick()
        assert seen == [metrics]
        assert monitor.latest_metrics is metrics


# ---------------------------------------------------------------------------
# Alert ticks
# ---------------------------------------------------------------------------


class TestAlertTick:
    def test_fifteen_percent_error_rate_is_high(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=1), passed=17, failed=3)

        raised = monitor.run_alert_tick()

        assert [(a.type, a.severity) for a in raised] == [("error_rate", "high")]
        assert raised[0].threshold == 10.0
        assert raised[0].actual_value == pytest.approx(15.0)

    def test_thirty_percent_error_rate_is_critical(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=1), passed=7, failed=3)

        raised = {a.type: a for a in monitor.run_alert_tick()}

        assert raised["error_rate"].severity == "critical"
        assert raised["error_rate"].threshold == 10.0
        assert raised["error_rate"].message == "Validation error rate 30.0% exceeds threshold 10.0%"
        assert raised["data_quality"].severity == "high"
        assert raised["data_quality"].actual_value == pytest.approx(70.0)

    def test_slow_validations_raise_performance_alert(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=1), passed=2, failed=0, duration_ms=6000.0)
        raised = monitor.run_alert_tick()
        assert [(a.type, a.severity) for a in raised] == [("performance", "medium")]

    def test_healthy_window_raises_nothing(self, services, monitor, store, clock):
        seen = []
        services.events.subscribe(events.ALERTS_RAISED, seen.append)
        record_many(store, clock() - timedelta(hours=1), passed=10, failed=0)
        assert monitor.run_alert_tick() == []
        assert seen == []

    def test_each_tick_reevaluates(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=1), passed=17, failed=3)
        monitor.run_alert_tick()
        monitor.run_alert_tick()
        assert len(monitor.get_alerts()) == 2

    def test_threshold_change_applies_to_next_tick(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=1), passed=17, failed=3)
        monitor.update_config(error_rate_threshold=20.0)
        assert monitor.run_alert_tick() == []


class TestAcknowledgeAndRetention:
    def test_acknowledge_is_idempotent(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=1), passed=17, failed=3)
        alert = monitor.run_alert_tick()[0]

        assert monitor.acknowledge_alert(alert.id).acknowledged is True
        assert monitor.acknowledge_alert(alert.id).acknowledged is True
        assert monitor.get_alerts(unacknowledged_only=True) == []

    def test_unknown_alert(self, monitor):
        with pytest.raises(AlertNotFoundError):
            monitor.acknowledge_alert("missing")

    def test_acknowledged_alerts_pruned_after_retention(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=1), passed=17, failed=3)
        acknowledged, kept = monitor.run_alert_tick() + monitor.run_alert_tick()
        monitor.acknowledge_alert(acknowledged.id)

        clock.advance(days=8)
        assert monitor.run_alert_tick() == []

        remaining = monitor.get_alerts()
        assert [a.id for a in remaining] == [kept.id]

    def test_recent_acknowledged_alerts_are_kept(self, monitor, store, clock):
        record_many(store, clock() - timedelta(hours=1), passed=17, failed=3)
        alert = monitor.run_alert_tick()[0]
        monitor.acknowledge_alert(alert.id)
        clock.advance(days=6)
        monitor.run_alert_tick()
        assert [a.id for a in monitor.get_alerts()] == [alert.id]


def test_alert_store_prune_directly():
    store = AlertStore()
    now = datetime(2026, 3, 11, tzinfo=timezone.utc)
    metrics = ValidationMetrics(error_rate=50.0, data_quality_score=100.0)
    old = AlertEvaluator().evaluate(metrics, now - timedelta(days=10))
    store.add(old)
    store.acknowledge(old[0].id)

    assert store.prune(now, timedelta(days=7)) == 1
    assert len(store) == 0
