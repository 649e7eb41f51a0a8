"""Built-in predicates for the ``custom`` rule kind.

Each predicate reads the entity read model through the store and decides on
its own whether a finding is an error or a warning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from qualitygate import errors
from qualitygate.logging_config import get_logger
from qualitygate.schemas import ValidationIssue

if TYPE_CHECKING:
    from qualitygate.rules import CustomRuleSpec
    from qualitygate.store import SqlStore


logger = get_logger(__name__)

DEFAULT_MAX_DEPTH = 10


@dataclass
class PredicateResult:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)


def _present(value: Any) -> bool:
    return value is not None and value != ""


def check_uniqueness(
    spec: CustomRuleSpec,
    payload: dict[str, Any],
    record_type: str,
    store: SqlStore,
    max_depth: int,
) -> PredicateResult:
    target = spec.field or "email"
    value = payload.get(target)
    if not _present(value):
        return PredicateResult()

    self_id = payload.get(spec.id_field)
    conflicts = store.find_records_by_attribute(
        record_type,
        target,
        value,
        exclude_id=str(self_id) if _present(self_id) else None,
        limit=1,
    )
    if not conflicts:
        return PredicateResult()
    return PredicateResult(
        errors=[
            ValidationIssue(
                field=target,
                message=f"{target} already exists on another active {record_type}",
                code=errors.NOT_UNIQUE,
                value=value,
            )
        ]
    )


def check_acyclicity(
    spec: CustomRuleSpec,
    payload: dict[str, Any],
    record_type: str,
    store: SqlStore,
    max_depth: int,
) -> PredicateResult:
    proposed_parent = payload.get(spec.parent_field)
    self_id = payload.get(spec.id_field)
    if not _present(proposed_parent) or not _present(self_id):
        return PredicateResult()

    self_id = str(self_id)
    node: str | None = str(proposed_parent)
    visited: set[str] = set()
    # Walk up from the proposed parent; reaching ourselves means the new edge
    # would close a loop. Bounded so malformed data cannot stall validation.
    for _ in range(max_depth):
        if node is None or node in visited:
            break
        if node == self_id:
            return PredicateResult(
                errors=[
                    ValidationIssue(
                        field=spec.parent_field,
                        message="Setting this parent would create a circular dependency",
                        code=errors.CIRCULAR_DEPENDENCY,
                        value=proposed_parent,
                    )
                ]
            )
        visited.add(node)
        node = store.parent_of(record_type, node)
    return PredicateResult()


def check_hierarchy_consistency(
    spec: CustomRuleSpec,
    payload: dict[str, Any],
    record_type: str,
    store: SqlStore,
    max_depth: int,
) -> PredicateResult:
    attribute = spec.attribute_field or "skills"
    child_values = payload.get(attribute)
    parent_id = payload.get(spec.parent_field)
    if not child_values or not _present(parent_id):
        return PredicateResult()
    if not isinstance(child_values, (list, tuple, set)):
        child_values = [child_values]

    try:
        parent = store.get_record(record_type, str(parent_id))
    except SQLAlchemyError:
        # Soft check: a lookup failure drops the warning, never fails the entity.
        logger.warning(
            "hierarchy_consistency_lookup_failed",
            record_type=record_type,
            parent_id=parent_id,
            exc_info=True,
        )
        return PredicateResult()
    if parent is None:
        return PredicateResult()

    parent_values = parent["attributes"].get(attribute) or []
    divergent = [value for value in child_values if value not in parent_values]
    if not divergent:
        return PredicateResult()
    return PredicateResult(
        warnings=[
            ValidationIssue(
                field=attribute,
                message=f"Values not present on parent {parent_id}: {', '.join(map(str, divergent))}",
                code=errors.HIERARCHY_INCONSISTENCY,
                value=divergent,
            )
        ]
    )


Predicate = Callable[["CustomRuleSpec", dict, str, "SqlStore", int], PredicateResult]

PREDICATES: dict[str, Predicate] = {
    "uniqueness": check_uniqueness,
    "acyclicity": check_acyclicity,
    "hierarchy_consistency": check_hierarchy_consistency,
}
