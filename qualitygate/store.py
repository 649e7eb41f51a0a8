from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from sqlalchemy import func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from qualitygate.db import reset_db
from qualitygate.errors import InvalidRuleDefinitionError, RuleConflictError, RuleNotFoundError
from qualitygate.models import (
    EntityRecordModel,
    ExecutionKind,
    ValidationResultModel,
    ValidationRuleModel,
)
from qualitygate.predicates import PREDICATES
from qualitygate.rules import CustomRuleSpec, RuleSpecError, SchemaRuleSpec, parse_rule_spec
from qualitygate.schemas import ValidationOutcome


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def _aware(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _iso(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    return _aware(ts).isoformat()


def _json_scalar(element: Any, value: Any) -> Any:
    """Typed accessor for a JSON attribute, or None for composite values."""
    if isinstance(value, bool):
        return element.as_boolean()
    if isinstance(value, int):
        return element.as_integer()
    if isinstance(value, float):
        return element.as_float()
    if isinstance(value, str):
        return element.as_string()
    return None


def _rule_to_dict(model: ValidationRuleModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "name": model.name,
        "domain": model.domain,
        "execution_kind": model.execution_kind,
        "version": model.version,
        "is_active": model.is_active,
        "definition": model.definition,
        "created_at": _iso(model.created_at),
        "updated_at": _iso(model.updated_at),
    }


def _result_to_dict(model: ValidationResultModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "entity_type": model.entity_type,
        "entity_id": model.entity_id,
        "rule_id": model.rule_id,
        "is_valid": model.is_valid,
        "severity": model.severity,
        "errors": model.errors or [],
        "warnings": model.warnings or [],
        "failed_rules": model.failed_rules or [],
        "duration_ms": model.duration_ms,
        "validated_at": _aware(model.validated_at),
    }


def _record_to_dict(model: EntityRecordModel) -> dict[str, Any]:
    return {
        "entity_type": model.entity_type,
        "id": model.id,
        "parent_id": model.parent_id,
        "is_active": model.is_active,
        "attributes": model.attributes or {},
    }


def validate_definition(definition: dict[str, Any]) -> None:
    """Reject definitions that could never execute. Raises
    ``InvalidRuleDefinitionError``."""
    try:
        spec = parse_rule_spec(definition)
    except RuleSpecError as exc:
        raise InvalidRuleDefinitionError(exc.message, reason=exc.code) from exc
    if isinstance(spec, SchemaRuleSpec):
        try:
            Draft7Validator.check_schema(spec.json_schema)
        except SchemaError as exc:
            raise InvalidRuleDefinitionError(f"Invalid JSON schema: {exc.message}") from exc
    elif isinstance(spec, CustomRuleSpec) and spec.predicate not in PREDICATES:
        raise InvalidRuleDefinitionError(
            f"Unknown custom predicate: {spec.predicate}", known=sorted(PREDICATES)
        )


class SqlStore:
    """Rule definitions, persisted outcomes and the entity read model."""

    def __init__(self, engine: Engine, session_factory: sessionmaker[Session]) -> None:
        self.engine = engine
        self.session_factory = session_factory

    def reset(self) -> None:
        reset_db(self.engine)

    def ping(self) -> None:
        with self.session_factory() as session:
            session.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Rule definitions
    # ------------------------------------------------------------------

    def _active_rule(self, session: Session, domain: str, name: str) -> ValidationRuleModel | None:
        return session.execute(
            select(ValidationRuleModel).where(
                ValidationRuleModel.domain == domain,
                ValidationRuleModel.name == name,
                ValidationRuleModel.is_active.is_(True),
            )
        ).scalar_one_or_none()

    def _next_version(self, session: Session, domain: str, name: str) -> int:
        current = session.execute(
            select(func.max(ValidationRuleModel.version)).where(
                ValidationRuleModel.domain == domain,
                ValidationRuleModel.name == name,
            )
        ).scalar_one()
        return (current or 0) + 1

    def create_rule(
        self,
        *,
        name: str,
        domain: str,
        execution_kind: str,
        definition: dict[str, Any],
        is_active: bool = True,
    ) -> dict[str, Any]:
        validate_definition(definition)
        kind = ExecutionKind(execution_kind)
        with self.session_factory.begin() as session:
            if is_active and self._active_rule(session, domain, name) is not None:
                raise RuleConflictError(
                    f"An active rule named {name!r} already exists in domain {domain!r}",
                    name=name,
                    domain=domain,
                )
            rule = ValidationRuleModel(
                name=name,
                domain=domain,
                execution_kind=kind.value,
                version=self._next_version(session, domain, name),
                is_active=is_active,
                definition=definition,
            )
            session.add(rule)
            session.flush()
            return _rule_to_dict(rule)

    def supersede_rule(
        self,
        rule_id: str,
        *,
        definition: dict[str, Any] | None = None,
        execution_kind: str | None = None,
    ) -> dict[str, Any]:
        """Write a new active version of a rule and retire the current one.

        The previous row is deactivated, never modified in place, so persisted
        outcomes keep pointing at the definition they were computed with.
        """
        if definition is not None:
            validate_definition(definition)
        with self.session_factory.begin() as session:
            current = session.get(ValidationRuleModel, rule_id)
            if current is None:
                raise RuleNotFoundError("Validation rule not found", rule_id=rule_id)
            if not current.is_active:
                active = self._active_rule(session, current.domain, current.name)
                raise RuleConflictError(
                    "Only the active version of a rule can be superseded",
                    rule_id=rule_id,
                    active_rule_id=active.id if active is not None else None,
                )
            now = _now()
            current.is_active = False
            current.updated_at = now
            session.flush()
            successor = ValidationRuleModel(
                name=current.name,
                domain=current.domain,
                execution_kind=ExecutionKind(execution_kind).value if execution_kind else current.execution_kind,
                version=self._next_version(session, current.domain, current.name),
                is_active=True,
                definition=definition if definition is not None else current.definition,
                created_at=now,
                updated_at=now,
            )
            session.add(successor)
            session.flush()
            return _rule_to_dict(successor)

    def deactivate_rule(self, rule_id: str) -> dict[str, Any]:
        with self.session_factory.begin() as session:
            rule = session.get(ValidationRuleModel, rule_id)
            if rule is None:
                raise RuleNotFoundError("Validation rule not found", rule_id=rule_id)
            if rule.is_active:
                rule.is_active = False
                rule.updated_at = _now()
                session.flush()
            return _rule_to_dict(rule)

    def get_rule(self, rule_id: str) -> dict[str, Any] | None:
        with self.session_factory() as session:
            rule = session.get(ValidationRuleModel, rule_id)
            if rule is None:
                return None
            return _rule_to_dict(rule)

    def list_rules(
        self,
        *,
        domain: str | None = None,
        execution_kind: str | None = None,
        active: bool | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(ValidationRuleModel)
        if domain is not None:
            stmt = stmt.where(ValidationRuleModel.domain == domain)
        if execution_kind is not None:
            stmt = stmt.where(ValidationRuleModel.execution_kind == execution_kind)
        if active is not None:
            stmt = stmt.where(ValidationRuleModel.is_active.is_(active))
        stmt = stmt.order_by(
            ValidationRuleModel.domain, ValidationRuleModel.name, ValidationRuleModel.version
        )
        with self.session_factory() as session:
            return [_rule_to_dict(rule) for rule in session.execute(stmt).scalars().all()]

    def active_rules(
        self, domain: str, execution_kind: str, names: Iterable[str] | None = None
    ) -> list[dict[str, Any]]:
        stmt = select(ValidationRuleModel).where(
            ValidationRuleModel.domain == domain,
            ValidationRuleModel.execution_kind == execution_kind,
            ValidationRuleModel.is_active.is_(True),
        )
        if names is not None:
            stmt = stmt.where(ValidationRuleModel.name.in_(list(names)))
        stmt = stmt.order_by(ValidationRuleModel.name)
        with self.session_factory() as session:
            return [_rule_to_dict(rule) for rule in session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # Validation results
    # ------------------------------------------------------------------

    def save_result(self, outcome: ValidationOutcome, duration_ms: float | None = None) -> int:
        with self.session_factory.begin() as session:
            row = ValidationResultModel(
                entity_type=outcome.entity_type,
                entity_id=outcome.entity_id,
                rule_id=outcome.rule_id,
                is_valid=outcome.is_valid,
                severity=outcome.severity,
                errors=[issue.model_dump(mode="json") for issue in outcome.errors],
                warnings=[issue.model_dump(mode="json") for issue in outcome.warnings],
                failed_rules=list(outcome.failed_rules),
                duration_ms=duration_ms,
                validated_at=_naive_utc(outcome.validated_at),
            )
            session.add(row)
            session.flush()
            return row.id

    def list_results(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        entity_type: str | None = None,
        severity: str | None = None,
        only_failed: bool = False,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[dict[str, Any]]:
        """Range scan over persisted outcomes; ``start`` inclusive, ``end`` exclusive."""
        stmt = select(ValidationResultModel)
        if start is not None:
            stmt = stmt.where(ValidationResultModel.validated_at >= _naive_utc(start))
        if end is not None:
            stmt = stmt.where(ValidationResultModel.validated_at < _naive_utc(end))
        if entity_type is not None:
            stmt = stmt.where(ValidationResultModel.entity_type == entity_type)
        if severity is not None:
            stmt = stmt.where(ValidationResultModel.severity == severity)
        if only_failed:
            stmt = stmt.where(ValidationResultModel.is_valid.is_(False))
        if newest_first:
            stmt = stmt.order_by(ValidationResultModel.validated_at.desc(), ValidationResultModel.id.desc())
        else:
            stmt = stmt.order_by(ValidationResultModel.validated_at.asc(), ValidationResultModel.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session_factory() as session:
            return [_result_to_dict(row) for row in session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # Entity read model
    # ------------------------------------------------------------------

    def upsert_record(
        self,
        entity_type: str,
        record_id: str,
        attributes: dict[str, Any],
        *,
        parent_id: str | None = None,
        is_active: bool = True,
    ) -> dict[str, Any]:
        with self.session_factory.begin() as session:
            record = session.get(EntityRecordModel, (entity_type, record_id))
            if record is None:
                record = EntityRecordModel(entity_type=entity_type, id=record_id)
                session.add(record)
            record.parent_id = parent_id
            record.is_active = is_active
            record.attributes = dict(attributes)
            record.updated_at = _now()
            session.flush()
            return _record_to_dict(record)

    def get_record(self, entity_type: str, record_id: str) -> dict[str, Any] | None:
        with self.session_factory() as session:
            record = session.get(EntityRecordModel, (entity_type, record_id))
            if record is None:
                return None
            return _record_to_dict(record)

    def parent_of(self, entity_type: str, record_id: str) -> str | None:
        with self.session_factory() as session:
            return session.execute(
                select(EntityRecordModel.parent_id).where(
                    EntityRecordModel.entity_type == entity_type,
                    EntityRecordModel.id == record_id,
                )
            ).scalar_one_or_none()

    def find_records_by_attribute(
        self,
        entity_type: str,
        field: str,
        value: Any,
        *,
        exclude_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(EntityRecordModel).where(
            EntityRecordModel.entity_type == entity_type,
            EntityRecordModel.is_active.is_(True),
        )
        if exclude_id is not None:
            stmt = stmt.where(EntityRecordModel.id != exclude_id)
        scalar = _json_scalar(EntityRecordModel.attributes[field], value)
        if scalar is not None:
            stmt = stmt.where(scalar == value)
            if limit is not None:
                stmt = stmt.limit(limit)
        with self.session_factory() as session:
            rows = session.execute(stmt).scalars().all()
            # Composite values are matched here; scalars are already filtered.
            matches = [
                _record_to_dict(row)
                for row in rows
                if (row.attributes or {}).get(field) == value
            ]
        return matches[:limit] if limit is not None else matches

    def run_query(
        self, query: str, params: dict[str, Any], timeout_ms: int | None = None
    ) -> list[dict[str, Any]]:
        """Execute a read-only parameterized query for a data-source rule."""
        with self.session_factory() as session:
            if timeout_ms and self.engine.dialect.name == "postgresql":
                session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
            result = session.execute(text(query), params)
            rows = [dict(row._mapping) for row in result]
            session.rollback()
            return rows
