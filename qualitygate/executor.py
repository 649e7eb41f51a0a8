from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft7Validator, FormatChecker
from jsonschema.exceptions import SchemaError

from qualitygate import errors
from qualitygate.logging_config import get_logger
from qualitygate.predicates import DEFAULT_MAX_DEPTH, PREDICATES
from qualitygate.rules import (
    CustomRuleSpec,
    DataSourceRuleSpec,
    Expectation,
    RuleSpecError,
    SchemaRuleSpec,
    parse_rule_spec,
)
from qualitygate.schemas import RuleDefinition, ValidationIssue
from qualitygate.store import SqlStore


logger = get_logger(__name__)

_REQUIRED_PROPERTY = re.compile(r"^'(?P<name>.+)' is a required property$")


@dataclass
class RuleResult:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _failure(field_name: str, message: str, code: str, value: Any = None) -> RuleResult:
    return RuleResult(errors=[ValidationIssue(field=field_name, message=message, code=code, value=value)])


def expectation_met(rows: list[dict[str, Any]], expect: Expectation) -> bool:
    if expect.type == "count":
        return len(rows) == (expect.value or 0)
    if expect.type == "empty":
        return len(rows) == 0
    if expect.type == "not_empty":
        return len(rows) > 0
    # "exists": the first row carries a non-null value for the declared field.
    return len(rows) > 0 and rows[0].get(expect.field or "") is not None


class RuleExecutor:
    """Runs one rule against one payload.

    Never raises: malformed definitions and execution faults come back as a
    single error so sibling rules still run.
    """

    def __init__(
        self,
        store: SqlStore,
        *,
        query_timeout_ms: int = 5000,
        max_hierarchy_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.store = store
        self.query_timeout_ms = query_timeout_ms
        self.max_hierarchy_depth = max_hierarchy_depth

    def execute(self, rule: RuleDefinition, payload: dict[str, Any], entity_type: str) -> RuleResult:
        try:
            spec = parse_rule_spec(rule.definition)
        except RuleSpecError as exc:
            return _failure("rule", exc.message, exc.code, rule.definition.get("kind"))

        try:
            if isinstance(spec, SchemaRuleSpec):
                return self._run_schema(spec, payload)
            if isinstance(spec, CustomRuleSpec):
                return self._run_custom(spec, payload, entity_type)
            if isinstance(spec, DataSourceRuleSpec):
                return self._run_data_source(spec, payload)
            raise TypeError(f"Unhandled rule kind: {type(spec).__name__}")
        except Exception as exc:
            logger.warning(
                "rule_execution_failed",
                rule_id=rule.id,
                rule_name=rule.name,
                entity_type=entity_type,
                exc_info=True,
            )
            return _failure(
                "system",
                f"Rule execution failed: {exc}",
                errors.RULE_EXECUTION_ERROR,
                rule.name,
            )

    def _run_schema(self, spec: SchemaRuleSpec, payload: dict[str, Any]) -> RuleResult:
        try:
            Draft7Validator.check_schema(spec.json_schema)
        except SchemaError as exc:
            return _failure("schema", f"Schema compilation failed: {exc.message}", errors.SCHEMA_ERROR)

        validator = Draft7Validator(spec.json_schema, format_checker=FormatChecker())
        violations = sorted(
            validator.iter_errors(payload),
            key=lambda err: ([str(part) for part in err.absolute_path], str(err.validator)),
        )
        issues: list[ValidationIssue] = []
        for violation in violations:
            path = [str(part) for part in violation.absolute_path]
            value = violation.instance
            if violation.validator == "required":
                match = _REQUIRED_PROPERTY.match(violation.message)
                if match:
                    path.append(match.group("name"))
                value = None
            issues.append(
                ValidationIssue(
                    field=".".join(path) or "$",
                    message=violation.message,
                    code=str(violation.validator),
                    value=value,
                )
            )
        return RuleResult(errors=issues)

    def _run_custom(self, spec: CustomRuleSpec, payload: dict[str, Any], entity_type: str) -> RuleResult:
        predicate = PREDICATES.get(spec.predicate)
        if predicate is None:
            return _failure(
                "predicate",
                f"Unknown custom predicate: {spec.predicate}",
                errors.UNKNOWN_CUSTOM_PREDICATE,
                spec.predicate,
            )
        outcome = predicate(
            spec,
            payload,
            spec.record_type or entity_type,
            self.store,
            spec.max_depth or self.max_hierarchy_depth,
        )
        return RuleResult(errors=list(outcome.errors), warnings=list(outcome.warnings))

    def _run_data_source(self, spec: DataSourceRuleSpec, payload: dict[str, Any]) -> RuleResult:
        params = {bind: payload.get(source) for bind, source in spec.params.items()}
        # Query faults, including statement timeouts, surface as
        # RULE_EXECUTION_ERROR through execute().
        rows = self.store.run_query(spec.query, params, self.query_timeout_ms)
        if spec.expect is None or expectation_met(rows, spec.expect):
            return RuleResult()
        return _failure(
            spec.field,
            spec.error_message or "Database validation failed",
            spec.error_code or errors.DATABASE_VALIDATION_FAILED,
            params,
        )
