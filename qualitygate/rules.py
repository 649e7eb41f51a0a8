"""Rule kinds.

A stored rule definition is a JSON document tagged by ``kind``. Each kind is a
separate pydantic model carrying only the fields it needs; the union is
closed, so an unrecognised tag is a configuration error rather than a silent
no-op.

Examples::

    {"kind": "schema", "json_schema": {"type": "object", "required": ["name"]}}
    {"kind": "custom", "predicate": "uniqueness", "field": "email"}
    {"kind": "data_source",
     "query": "SELECT id FROM entity_record WHERE id = :contact_id",
     "params": {"contact_id": "contactId"},
     "expect": {"type": "not_empty"},
     "error_code": "CONTACT_NOT_FOUND"}
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from qualitygate import errors


class _RuleSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SchemaRuleSpec(_RuleSpec):
    kind: Literal["schema"]
    json_schema: dict[str, Any]


class CustomRuleSpec(_RuleSpec):
    kind: Literal["custom"]
    predicate: str
    field: str | None = None
    id_field: str = "id"
    parent_field: str = "parent_id"
    attribute_field: str | None = None
    record_type: str | None = None
    max_depth: int | None = Field(default=None, ge=1)


class Expectation(_RuleSpec):
    type: Literal["count", "empty", "not_empty", "exists"]
    value: int | None = None
    field: str | None = None


class DataSourceRuleSpec(_RuleSpec):
    kind: Literal["data_source"]
    query: str = Field(min_length=1)
    params: dict[str, str] = Field(default_factory=dict)
    expect: Expectation | None = None
    field: str = "database"
    error_code: str | None = None
    error_message: str | None = None


RuleSpec = Annotated[
    Union[SchemaRuleSpec, CustomRuleSpec, DataSourceRuleSpec],
    Field(discriminator="kind"),
]

_RULE_SPEC_ADAPTER: TypeAdapter[RuleSpec] = TypeAdapter(RuleSpec)

_UNKNOWN_KIND_ERRORS = {"union_tag_invalid", "union_tag_not_found"}


class RuleSpecError(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def parse_rule_spec(definition: Any) -> SchemaRuleSpec | CustomRuleSpec | DataSourceRuleSpec:
    """Parse a stored definition into its kind-specific model.

    Raises ``RuleSpecError`` with ``UNKNOWN_RULE_KIND`` when the ``kind`` tag is
    missing or unrecognised, and ``INVALID_RULE_DEFINITION`` for any other
    structural problem.
    """
    try:
        return _RULE_SPEC_ADAPTER.validate_python(definition)
    except ValidationError as exc:
        details = exc.errors()
        if details and details[0]["type"] in _UNKNOWN_KIND_ERRORS:
            kind = definition.get("kind") if isinstance(definition, dict) else None
            raise RuleSpecError(errors.UNKNOWN_RULE_KIND, f"Unknown rule kind: {kind!r}") from exc
        summary = "; ".join(
            f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in details
        )
        raise RuleSpecError(errors.INVALID_RULE_DEFINITION, f"Malformed rule definition: {summary}") from exc
