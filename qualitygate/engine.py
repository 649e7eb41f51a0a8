"""Validation orchestrator.

Composes the rule registry, the rule executor and the result cache into the
three validation modes:

- ``validate_sync``: cached, side-effect free toward the store.
- ``validate_async``: evaluates async-kind rules and hands the outcome to a
  background persistence pool. The caller gets the outcome back whether or
  not it has been written yet.
- ``validate_bulk``: runs the synchronous path per entity, isolating
  per-entity failures, and persists every outcome in the background.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Iterable

from pydantic import ValidationError

from qualitygate import errors, events
from qualitygate.cache import ResultCache, fingerprint
from qualitygate.errors import InvalidPayloadError
from qualitygate.events import EventBus
from qualitygate.executor import RuleExecutor
from qualitygate.logging_config import get_logger
from qualitygate.models import ExecutionKind
from qualitygate.registry import RuleRegistry
from qualitygate.schemas import (
    BulkEntity,
    BulkSummary,
    BulkValidationResult,
    RuleDefinition,
    ValidationIssue,
    ValidationOutcome,
)
from qualitygate.store import SqlStore


logger = get_logger(__name__)


def entity_id_of(payload: Any, fallback: str | None = None) -> str:
    if isinstance(payload, Mapping):
        value = payload.get("id")
        if value is not None and value != "":
            return str(value)
    return fallback or "unknown"


def _require_mapping(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise InvalidPayloadError(
            f"Entity payload must be an object, got {type(payload).__name__}"
        )
    return dict(payload)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


class ValidationEngine:
    def __init__(
        self,
        store: SqlStore,
        registry: RuleRegistry,
        executor: RuleExecutor,
        cache: ResultCache,
        event_bus: EventBus | None = None,
        *,
        persist_workers: int = 2,
    ) -> None:
        self.store = store
        self.registry = registry
        self.executor = executor
        self.cache = cache
        self.events = event_bus or EventBus()
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, persist_workers), thread_name_prefix="qualitygate-persist"
        )
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public modes
    # ------------------------------------------------------------------

    def validate_sync(
        self,
        entity_type: str,
        payload: Mapping[str, Any],
        names: Iterable[str] | None = None,
    ) -> ValidationOutcome:
        data = _require_mapping(payload)
        selected = list(names) if names is not None else None
        key = fingerprint(entity_type, selected, data)

        cached = self.cache.get(key)
        if cached is not None:
            self.events.emit(events.SYNC_COMPLETED, cached)
            return cached

        rules = self.registry.resolve(entity_type, ExecutionKind.SYNC, selected)
        outcome = self._evaluate(entity_type, data, rules)
        self.cache.put(key, outcome)
        self.events.emit(events.SYNC_COMPLETED, outcome)
        return outcome

    def validate_async(
        self,
        entity_type: str,
        payload: Mapping[str, Any],
        names: Iterable[str] | None = None,
    ) -> ValidationOutcome:
        started = time.perf_counter()
        data = _require_mapping(payload)
        selected = list(names) if names is not None else None
        rules = self.registry.resolve(entity_type, ExecutionKind.ASYNC, selected)
        outcome = self._evaluate(entity_type, data, rules)
        self._persist_in_background(outcome, _elapsed_ms(started))
        self.events.emit(events.ASYNC_COMPLETED, outcome)
        return outcome

    def validate_bulk(self, entities: Iterable[BulkEntity | Mapping[str, Any]]) -> BulkValidationResult:
        items = list(entities)
        summary = BulkSummary(total_validated=len(items))
        results: list[ValidationOutcome] = []

        for index, item in enumerate(items):
            started = time.perf_counter()
            try:
                entity = item if isinstance(item, BulkEntity) else BulkEntity.model_validate(item)
                if entity.data is None:
                    raise InvalidPayloadError("Bulk entity is missing its payload")
                outcome = self.validate_sync(entity.type, entity.data)
                if entity.id and outcome.entity_id != entity_id_of(entity.data, entity.id):
                    outcome = outcome.model_copy(update={"entity_id": entity.id})
            except Exception as exc:
                outcome = self._bulk_failure(item, index, exc)
            results.append(outcome)
            self._persist_in_background(outcome, _elapsed_ms(started))

            if outcome.is_valid:
                summary.passed += 1
            else:
                summary.failed += 1
            summary.warnings += len(outcome.warnings)
            summary.errors += len(outcome.errors)

        result = BulkValidationResult(results=results, summary=summary)
        self.events.emit(events.BULK_COMPLETED, result)
        return result

    # ------------------------------------------------------------------
    # Persistence lifecycle
    # ------------------------------------------------------------------

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight persistence. Returns False on timeout."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._pool.shutdown(wait=wait_for_pending)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _evaluate(
        self, entity_type: str, payload: dict[str, Any], rules: list[RuleDefinition]
    ) -> ValidationOutcome:
        issues: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        failed_rules: list[str] = []

        for rule in rules:
            try:
                result = self.executor.execute(rule, payload, entity_type)
            except Exception as exc:
                logger.exception("rule_dispatch_failed", rule_id=rule.id, rule_name=rule.name)
                issues.append(
                    ValidationIssue(
                        field="system",
                        message=f"Rule execution failed: {exc}",
                        code=errors.RULE_EXECUTION_ERROR,
                        value=rule.name,
                    )
                )
                failed_rules.append(rule.name)
                continue
            if not result.is_valid:
                failed_rules.append(rule.name)
            issues.extend(result.errors)
            warnings.extend(result.warnings)

        return ValidationOutcome.build(
            entity_type=entity_type,
            entity_id=entity_id_of(payload),
            errors=issues,
            warnings=warnings,
            failed_rules=failed_rules,
            rule_id=rules[0].id if len(rules) == 1 else None,
        )

    def _bulk_failure(self, item: Any, index: int, exc: Exception) -> ValidationOutcome:
        if isinstance(item, BulkEntity):
            entity_type, data, entity_id = item.type, item.data, item.id
        elif isinstance(item, Mapping):
            entity_type = str(item.get("type") or "unknown")
            data, entity_id = item.get("data"), item.get("id")
        else:
            entity_type, data, entity_id = "unknown", item, None

        if isinstance(exc, ValidationError):
            message = f"Validation failed: malformed bulk entry at index {index}"
        else:
            message = f"Validation failed: {exc}"
        logger.warning("bulk_entity_failed", index=index, entity_type=entity_type, error=str(exc))
        return ValidationOutcome.build(
            entity_type=entity_type,
            entity_id=entity_id_of(data, str(entity_id) if entity_id is not None else None),
            errors=[
                ValidationIssue(
                    field="system",
                    message=message,
                    code=errors.VALIDATION_ERROR,
                    value=data,
                )
            ],
        )

    def _persist_in_background(self, outcome: ValidationOutcome, duration_ms: float) -> None:
        try:
            future = self._pool.submit(self._persist, outcome, duration_ms)
        except RuntimeError:
            logger.error(
                "validation_result_persist_skipped",
                entity_type=outcome.entity_type,
                entity_id=outcome.entity_id,
                reason="persistence pool is shut down",
            )
            return
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _persist(self, outcome: ValidationOutcome, duration_ms: float) -> None:
        try:
            self.store.save_result(outcome, duration_ms=duration_ms)
        except Exception:
            logger.exception(
                "validation_result_persist_failed",
                entity_type=outcome.entity_type,
                entity_id=outcome.entity_id,
            )
