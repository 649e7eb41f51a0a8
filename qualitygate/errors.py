from __future__ import annotations

from typing import Any


# Issue codes attached to ValidationIssue.code by the engine itself. Rule
# authors may declare their own codes for data-source rules.
RULE_EXECUTION_ERROR = "RULE_EXECUTION_ERROR"
UNKNOWN_RULE_KIND = "UNKNOWN_RULE_KIND"
INVALID_RULE_DEFINITION = "INVALID_RULE_DEFINITION"
SCHEMA_ERROR = "SCHEMA_ERROR"
UNKNOWN_CUSTOM_PREDICATE = "UNKNOWN_CUSTOM_PREDICATE"
NOT_UNIQUE = "NOT_UNIQUE"
CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
HIERARCHY_INCONSISTENCY = "HIERARCHY_INCONSISTENCY"
DATABASE_VALIDATION_FAILED = "DATABASE_VALIDATION_FAILED"
VALIDATION_ERROR = "VALIDATION_ERROR"


class QualityGateError(Exception):
    code = "QUALITYGATE_ERROR"
    retryable = False

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or None


class UnknownDomainError(QualityGateError):
    code = "DOMAIN_NOT_FOUND"


class RuleNotFoundError(QualityGateError):
    code = "RULE_NOT_FOUND"


class RuleConflictError(QualityGateError):
    code = "RULE_CONFLICT"


class InvalidRuleDefinitionError(QualityGateError):
    code = INVALID_RULE_DEFINITION


class InvalidPayloadError(QualityGateError):
    code = "INVALID_PAYLOAD"


class AlertNotFoundError(QualityGateError):
    code = "ALERT_NOT_FOUND"
