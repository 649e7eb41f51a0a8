"""Starter rule pack for the contact, workflow and cross-system domains."""

from __future__ import annotations

from typing import Any

from qualitygate.errors import RuleConflictError
from qualitygate.logging_config import get_logger
from qualitygate.store import SqlStore


logger = get_logger(__name__)

PHONE_PATTERN = "^[+]?[1-9]?[0-9]{7,15}$"

DEFAULT_RULES: list[dict[str, Any]] = [
    # contact, sync
    {
        "name": "contact_required_fields",
        "domain": "contact",
        "execution_kind": "sync",
        "definition": {
            "kind": "schema",
            "json_schema": {
                "type": "object",
                "required": ["name", "type"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "type": {"enum": ["company", "division", "person"]},
                    "email": {"type": "string", "format": "email"},
                },
                "if": {"properties": {"type": {"const": "person"}}, "required": ["type"]},
                "then": {"required": ["email"]},
            },
        },
    },
    {
        "name": "contact_phone_format",
        "domain": "contact",
        "execution_kind": "sync",
        "definition": {
            "kind": "schema",
            "json_schema": {
                "type": "object",
                "properties": {
                    "phone": {"type": "string", "pattern": PHONE_PATTERN},
                    "secondaryPhone": {"type": "string", "pattern": PHONE_PATTERN},
                },
            },
        },
    },
    {
        "name": "contact_hierarchy_integrity",
        "domain": "contact",
        "execution_kind": "sync",
        "definition": {"kind": "custom", "predicate": "acyclicity", "parent_field": "parentId"},
    },
    # contact, async
    {
        "name": "contact_email_uniqueness",
        "domain": "contact",
        "execution_kind": "async",
        "definition": {"kind": "custom", "predicate": "uniqueness", "field": "email"},
    },
    {
        "name": "contact_skill_consistency",
        "domain": "contact",
        "execution_kind": "async",
        "definition": {
            "kind": "custom",
            "predicate": "hierarchy_consistency",
            "attribute_field": "skills",
            "parent_field": "parentId",
        },
    },
    # workflow, sync
    {
        "name": "workflow_step_dependencies",
        "domain": "workflow",
        "execution_kind": "sync",
        "definition": {
            "kind": "schema",
            "json_schema": {
                "type": "object",
                "properties": {
                    "steps": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["id", "name"],
                            "properties": {
                                "id": {"type": "string"},
                                "name": {"type": "string"},
                                "dependencies": {"type": "array", "items": {"type": "string"}},
                            },
                        },
                    }
                },
            },
        },
    },
    # workflow, async
    {
        "name": "workflow_contact_exists",
        "domain": "workflow",
        "execution_kind": "async",
        "definition": {
            "kind": "data_source",
            "query": "SELECT id FROM entity_record WHERE entity_type = 'contact' AND id = :contact_id",
            "params": {"contact_id": "contactId"},
            "expect": {"type": "not_empty"},
            "field": "contactId",
            "error_code": "CONTACT_NOT_FOUND",
            "error_message": "Assigned contact does not exist",
        },
    },
    # cross-system, async
    {
        "name": "cross_system_workflow_reference",
        "domain": "cross-system",
        "execution_kind": "async",
        "definition": {
            "kind": "data_source",
            "query": "SELECT id FROM entity_record WHERE entity_type = 'workflow' AND id = :workflow_id",
            "params": {"workflow_id": "workflowId"},
            "expect": {"type": "not_empty"},
            "field": "workflowId",
            "error_code": "WORKFLOW_NOT_FOUND",
            "error_message": "Referenced workflow does not exist",
        },
    },
]


def seed_default_rules(store: SqlStore) -> list[dict[str, Any]]:
    """Create every default rule that has no active version yet.

    Returns the rules that were created; existing active rules are left
    untouched, so seeding twice is harmless.
    """
    created = []
    for rule in DEFAULT_RULES:
        try:
            created.append(
                store.create_rule(
                    name=rule["name"],
                    domain=rule["domain"],
                    execution_kind=rule["execution_kind"],
                    definition=rule["definition"],
                )
            )
        except RuleConflictError:
            logger.debug("default_rule_exists", name=rule["name"], domain=rule["domain"])
    logger.info("default_rules_seeded", created=len(created), total=len(DEFAULT_RULES))
    return created
