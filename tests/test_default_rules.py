import pytest

from qualitygate import errors
from qualitygate.default_rules import DEFAULT_RULES, seed_default_rules
from qualitygate.store import validate_definition


@pytest.mark.parametrize("rule", DEFAULT_RULES, ids=lambda rule: rule["name"])
def test_every_default_rule_is_well_formed(rule):
    validate_definition(rule["definition"])


def test_seeding_is_repeatable(store):
    created = seed_default_rules(store)
    assert len(created) == len(DEFAULT_RULES)
    assert seed_default_rules(store) == []
    assert len(store.list_rules(active=True)) == len(DEFAULT_RULES)


@pytest.fixture
def seeded(services):
    seed_default_rules(services.store)
    return services


class TestContactRules:
    def test_company_without_email_is_valid(self, seeded):
        outcome = seeded.engine.validate_sync("contact", {"id": "c1", "name": "Acme", "type": "company"})
        assert outcome.is_valid

    def test_person_requires_email(self, seeded):
        outcome = seeded.engine.validate_sync("contact", {"id": "c2", "name": "Ann", "type": "person"})
        assert not outcome.is_valid
        assert outcome.failed_rules == ["contact_required_fields"]
        assert outcome.errors[0].field == "email"

    def test_bad_phone(self, seeded):
        outcome = seeded.engine.validate_sync(
            "contact", {"id": "c3", "name": "Acme", "type": "company", "phone": "call me"}
        )
        assert outcome.failed_rules == ["contact_phone_format"]

    def test_hierarchy_cycle(self, seeded):
        seeded.store.upsert_record("contact", "parent", {}, parent_id="child")
        seeded.store.upsert_record("contact", "child", {}, parent_id=None)
        outcome = seeded.engine.validate_sync(
            "contact", {"id": "child", "name": "Team", "type": "division", "parentId": "parent"}
        )
        assert [issue.code for issue in outcome.errors] == [errors.CIRCULAR_DEPENDENCY]

    def test_async_email_uniqueness(self, seeded):
        seeded.store.upsert_record("contact", "c1", {"email": "ann@example.com"})
        outcome = seeded.engine.validate_async("contact", {"id": "c2", "email": "ann@example.com"})
        assert [issue.code for issue in outcome.errors] == [errors.NOT_UNIQUE]
        assert seeded.engine.drain(timeout=5)


class TestWorkflowRules:
    def test_step_shape(self, seeded):
        outcome = seeded.engine.validate_sync(
            "workflow", {"id": "w1", "steps": [{"id": "s1", "name": "Draft"}, {"id": "s2"}]}
        )
        assert not outcome.is_valid
        assert outcome.errors[0].field == "steps.1.name"

    def test_assigned_contact_must_exist(self, seeded):
        outcome = seeded.engine.validate_async("workflow", {"id": "w1", "contactId": "ghost"})
        assert [issue.code for issue in outcome.errors] == ["CONTACT_NOT_FOUND"]

        seeded.store.upsert_record("contact", "ann", {"name": "Ann"})
        assert seeded.engine.validate_async("workflow", {"id": "w1", "contactId": "ann"}).is_valid
        assert seeded.engine.drain(timeout=5)
