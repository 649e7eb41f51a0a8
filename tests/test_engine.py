"""Validation orchestrator: sync caching, async persistence, bulk isolation."""
from __future__ import annotations

import pytest

from qualitygate import errors, events
from qualitygate.errors import InvalidPayloadError, UnknownDomainError
from qualitygate.schemas import BulkEntity


REQUIRED_NAME = {"kind": "schema", "json_schema": {"type": "object", "required": ["name"]}}
PHONE_FORMAT = {
    "kind": "schema",
    "json_schema": {
        "type": "object",
        "properties": {"phone": {"type": "string", "pattern": "^[+]?[0-9]{7,15}$"}},
    },
}


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
def counting_executor(services, monkeypatch):
    calls = []
    original = services.executor.execute

    def counted(rule, payload, entity_type):
        calls.append(rule.name)
        return original(rule, payload, entity_type)

    monkeypatch.setattr(services.executor, "execute", counted)
    return calls


class TestValidateSync:
    def test_no_rules_is_valid_info(self, engine):
        outcome = engine.validate_sync("contact", {"id": "c1"})
        assert outcome.is_valid
        assert outcome.severity == "info"
        assert outcome.entity_id == "c1"
        assert outcome.rule_id is None

    def test_failed_rules_are_named(self, engine, add_rule):
        add_rule("contact_required_name", REQUIRED_NAME)
        add_rule("contact_phone_format", PHONE_FORMAT)

        outcome = engine.validate_sync("contact", {"phone": "abc"})

        assert not outcome.is_valid
        assert outcome.severity == "error"
        assert outcome.entity_id == "unknown"
        assert outcome.failed_rules == ["contact_phone_format", "contact_required_name"]
        assert {issue.field for issue in outcome.errors} == {"phone", "name"}

    def test_rule_id_set_only_for_single_rule(self, engine, add_rule):
        rule = add_rule("contact_required_name", REQUIRED_NAME)
        assert engine.validate_sync("contact", {"name": "Ann"}).rule_id == rule["id"]

        add_rule("contact_phone_format", PHONE_FORMAT)
        assert engine.validate_sync("contact", {"name": "Bob"}).rule_id is None

    def test_named_selection(self, engine, add_rule):
        add_rule("contact_required_name", REQUIRED_NAME)
        add_rule("contact_phone_format", PHONE_FORMAT)
        outcome = engine.validate_sync("contact", {"phone": "abc"}, ["contact_required_name"])
        assert outcome.failed_rules == ["contact_required_name"]

    def test_async_rules_are_not_run_synchronously(self, engine, add_rule):
        add_rule("contact_required_name", REQUIRED_NAME, execution_kind="async")
        assert engine.validate_sync("contact", {}).is_valid

    def test_second_call_is_served_from_cache(self, engine, add_rule, counting_executor):
        add_rule("contact_required_name", REQUIRED_NAME)

        first = engine.validate_sync("contact", {"id": "c1", "name": "Ann"})
        second = engine.validate_sync("contact", {"name": "Ann", "id": "c1"})

        assert counting_executor == ["contact_required_name"]
        assert second == first

    def test_expired_entry_is_recomputed(self, engine, add_rule, counting_executor, cache_clock):
        add_rule("contact_required_name", REQUIRED_NAME)
        engine.validate_sync("contact", {"name": "Ann"})
        cache_clock.advance(301)
        engine.validate_sync("contact", {"name": "Ann"})
        assert len(counting_executor) == 2

    def test_sync_does_not_persist(self, engine, store, add_rule):
        add_rule("contact_required_name", REQUIRED_NAME)
        engine.validate_sync("contact", {})
        engine.drain(timeout=5)
        assert store.list_results() == []

    def test_unknown_domain(self, engine):
        with pytest.raises(UnknownDomainError):
            engine.validate_sync("invoice", {})

    def test_non_object_payload(self, engine):
        with pytest.raises(InvalidPayloadError):
            engine.validate_sync("contact", ["not", "an", "object"])

    def test_faulty_rule_does_not_block_siblings(self, engine, add_rule):
        add_rule("contact_required_name", REQUIRED_NAME)
        add_rule("broken_lookup", {"kind": "data_source", "query": "SELECT * FROM missing_table"})

        outcome = engine.validate_sync("contact", {})

        codes = {issue.code for issue in outcome.errors}
        assert codes == {"required", errors.RULE_EXECUTION_ERROR}
        assert outcome.failed_rules == ["broken_lookup", "contact_required_name"]

    def test_warnings_only_keeps_outcome_valid(self, engine, store, add_rule):
        store.upsert_record("contact", "team", {"skills": ["editing"]})
        add_rule(
            "contact_skill_consistency",
            {"kind": "custom", "predicate": "hierarchy_consistency", "parent_field": "parentId"},
        )
        outcome = engine.validate_sync("contact", {"id": "ann", "parentId": "team", "skills": ["layout"]})

        assert outcome.is_valid
        assert outcome.severity == "warning"
        assert len(outcome.warnings) == 1
        assert outcome.failed_rules == []


class TestValidateAsync:
    def test_outcome_is_persisted_in_background(self, engine, store, add_rule):
        add_rule("contact_required_name", REQUIRED_NAME, execution_kind="async")

        outcome = engine.validate_async("contact", {"id": "c9"})
        assert engine.drain(timeout=5)

        rows = store.list_results()
        assert len(rows) == 1
        assert rows[0]["entity_id"] == "c9"
        assert rows[0]["is_valid"] is False
        assert rows[0]["failed_rules"] == ["contact_required_name"]
        assert rows[0]["duration_ms"] is not None
        assert outcome.failed_rules == ["contact_required_name"]

    def test_persistence_failure_is_swallowed(self, engine, store, monkeypatch):
        def refuse(*_args, **_kwargs):
            raise RuntimeError("database is read-only")

        monkeypatch.setattr(store, "save_result", refuse)

        outcome = engine.validate_async("contact", {"id": "c1"})
        assert engine.drain(timeout=5)
        assert outcome.is_valid

    def test_emits_completion_event(self, services, engine):
        seen = []
        services.events.subscribe(events.ASYNC_COMPLETED, seen.append)
        outcome = engine.validate_async("contact", {"id": "c1"})
        assert seen == [outcome]


class TestValidateBulk:
    def test_failures_are_isolated_per_entity(self, engine, store, add_rule):
        add_rule("contact_required_name", REQUIRED_NAME)
        entities = [
            BulkEntity(type="contact", data={"id": "c1", "name": "Ann"}),
            BulkEntity(type="contact", data={"id": "c2"}),
            BulkEntity(type="invoice", data={"id": "i1"}),
            BulkEntity(type="contact", id="c4"),
            BulkEntity(type="contact", data={"id": "c5", "name": "Eve"}),
        ]

        result = engine.validate_bulk(entities)

        assert [o.entity_id for o in result.results] == ["c1", "c2", "i1", "c4", "c5"]
        assert [o.is_valid for o in result.results] == [True, False, False, False, True]
        assert result.summary.total_validated == 5
        assert result.summary.passed == 2
        assert result.summary.failed == 3
        assert result.summary.errors == 3

        synthetic = result.results[2].errors[0]
        assert synthetic.code == errors.VALIDATION_ERROR
        assert synthetic.field == "system"
        assert synthetic.message.startswith("Validation failed:")
        assert synthetic.value == {"id": "i1"}

        assert engine.drain(timeout=5)
        assert len(store.list_results()) == 5

    def test_accepts_plain_dicts(self, engine):
        result = engine.validate_bulk(
            [{"type": "contact", "data": {"id": "c1"}}, {"data": {"id": "c2"}}]
        )
        assert result.summary.passed == 1
        assert result.summary.failed == 1
        assert result.results[1].entity_id == "c2"
        assert result.results[1].errors[0].code == errors.VALIDATION_ERROR

    def test_item_id_names_the_outcome_when_payload_has_none(self, engine):
        result = engine.validate_bulk(
            [
                BulkEntity(type="contact", id="c9", data={"name": "Ann"}),
                {"type": "contact", "id": "ignored", "data": {"id": "c1"}},
                {"type": "contact", "data": {"name": "Eve"}},
            ]
        )
        assert [o.entity_id for o in result.results] == ["c9", "c1", "unknown"]
        assert result.summary.passed == 3

    def test_empty_batch(self, services, engine):
        seen = []
        services.events.subscribe(events.BULK_COMPLETED, seen.append)
        result = engine.validate_bulk([])
        assert result.results == []
        assert result.summary.total_validated == 0
        assert seen == [result]


def test_severity_matches_issue_lists(engine, store, add_rule):
    store.upsert_record("contact", "team", {"skills": ["editing"]})
    add_rule("contact_required_name", REQUIRED_NAME)
    add_rule(
        "contact_skill_consistency",
        {"kind": "custom", "predicate": "hierarchy_consistency", "parent_field": "parentId"},
    )
    payloads = [
        {"name": "Ann"},
        {"id": "x", "parentId": "team", "skills": ["layout"], "name": "Ann"},
        {"id": "y", "parentId": "team", "skills": ["layout"]},
    ]
    for payload in payloads:
        outcome = engine.validate_sync("contact", payload)
        assert (outcome.severity == "error") == bool(outcome.errors)
        assert outcome.is_valid == (not outcome.errors)
        if not outcome.errors:
            assert outcome.severity == ("warning" if outcome.warnings else "info")
