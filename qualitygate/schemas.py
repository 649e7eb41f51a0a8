from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class ApiError(BaseModel):
    code: str
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ApiError


# ---------------------------------------------------------------------------
# Validation outcomes
# ---------------------------------------------------------------------------


class ValidationIssue(BaseModel):
    field: str
    message: str
    code: str
    value: Any = None


class ValidationOutcome(BaseModel):
    is_valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    entity_type: str
    entity_id: str
    rule_id: str | None = None
    severity: Literal["error", "warning", "info"]
    validated_at: datetime
    failed_rules: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_severity(self) -> "ValidationOutcome":
        if (self.severity == "error") != bool(self.errors):
            raise ValueError("severity must be 'error' exactly when errors are present")
        if self.is_valid == bool(self.errors):
            raise ValueError("is_valid must be true exactly when errors are absent")
        return self

    @classmethod
    def build(
        cls,
        *,
        entity_type: str,
        entity_id: str,
        errors: list[ValidationIssue] | None = None,
        warnings: list[ValidationIssue] | None = None,
        failed_rules: list[str] | None = None,
        rule_id: str | None = None,
        validated_at: datetime | None = None,
    ) -> "ValidationOutcome":
        """Assemble an outcome, deriving ``is_valid`` and ``severity`` from
        the issue lists."""
        errors = list(errors or [])
        warnings = list(warnings or [])
        if errors:
            severity = "error"
        elif warnings:
            severity = "warning"
        else:
            severity = "info"
        return cls(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            entity_type=entity_type,
            entity_id=entity_id,
            rule_id=rule_id,
            severity=severity,
            validated_at=validated_at or datetime.now(timezone.utc),
            failed_rules=list(failed_rules or []),
        )


class BulkEntity(BaseModel):
    type: str = Field(min_length=1)
    data: Any = None
    id: str | None = None


class BulkSummary(BaseModel):
    total_validated: int = 0
    passed: int = 0
    failed: int = 0
    warnings: int = 0
    errors: int = 0


class BulkValidationResult(BaseModel):
    results: list[ValidationOutcome]
    summary: BulkSummary


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class RuleDefinition(BaseModel):
    id: str
    name: str
    domain: str
    execution_kind: Literal["sync", "async", "batch"]
    version: int
    is_active: bool
    definition: dict[str, Any]
    created_at: str | None = None
    updated_at: str | None = None


class CreateRuleRequest(BaseModel):
    name: str = Field(min_length=1)
    domain: str = Field(min_length=1)
    execution_kind: Literal["sync", "async", "batch"]
    definition: dict[str, Any]
    is_active: bool = True


class UpdateRuleRequest(BaseModel):
    execution_kind: Literal["sync", "async", "batch"] | None = None
    definition: dict[str, Any] | None = None


class RuleListResponse(BaseModel):
    items: list[RuleDefinition]
    total: int


# ---------------------------------------------------------------------------
# Validation requests
# ---------------------------------------------------------------------------


class ValidateRequest(BaseModel):
    entity_type: str = Field(min_length=1)
    data: dict[str, Any]
    rules: list[str] | None = None


class AsyncValidationAccepted(BaseModel):
    status: Literal["accepted"] = "accepted"
    entity_type: str
    entity_id: str


class BulkValidateRequest(BaseModel):
    # Entries are checked one by one so a malformed entry fails on its own.
    entities: list[Any]


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


class RuleFailureCount(BaseModel):
    rule_name: str
    failure_count: int


class ValidationMetrics(BaseModel):
    total_validations: int = 0
    successful_validations: int = 0
    failed_validations: int = 0
    error_rate: float = 0.0
    data_quality_score: float = 100.0
    average_response_time_ms: float = 0.0
    top_failing_rules: list[RuleFailureCount] = Field(default_factory=list)
    window_start: datetime | None = None
    computed_at: datetime | None = None


class ValidationAlert(BaseModel):
    id: str
    type: Literal["error_rate", "performance", "data_quality"]
    severity: Literal["low", "medium", "high", "critical"]
    message: str
    threshold: float
    actual_value: float
    timestamp: datetime
    acknowledged: bool = False


class AlertListResponse(BaseModel):
    items: list[ValidationAlert]
    total: int


class CacheStats(BaseModel):
    size: int
    ttl: float
