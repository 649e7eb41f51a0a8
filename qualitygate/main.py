from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Literal

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from qualitygate.config import Settings
from qualitygate.engine import entity_id_of
from qualitygate.errors import (
    AlertNotFoundError,
    InvalidPayloadError,
    InvalidRuleDefinitionError,
    QualityGateError,
    RuleConflictError,
    RuleNotFoundError,
    UnknownDomainError,
)
from qualitygate.logging_config import configure_logging, get_logger
from qualitygate.schemas import (
    AlertListResponse,
    ApiError,
    AsyncValidationAccepted,
    BulkValidateRequest,
    BulkValidationResult,
    CacheStats,
    CreateRuleRequest,
    ErrorResponse,
    RuleDefinition,
    RuleListResponse,
    UpdateRuleRequest,
    ValidateRequest,
    ValidationAlert,
    ValidationMetrics,
    ValidationOutcome,
)
from qualitygate.services import Services, build_services


logger = get_logger(__name__)

_STATUS_BY_ERROR: dict[type[QualityGateError], int] = {
    UnknownDomainError: status.HTTP_404_NOT_FOUND,
    RuleNotFoundError: status.HTTP_404_NOT_FOUND,
    AlertNotFoundError: status.HTTP_404_NOT_FOUND,
    RuleConflictError: status.HTTP_409_CONFLICT,
    InvalidRuleDefinitionError: status.HTTP_400_BAD_REQUEST,
    InvalidPayloadError: status.HTTP_400_BAD_REQUEST,
}


def _error_body(code: str, message: str, retryable: bool = False, details: dict | None = None) -> dict:
    return ErrorResponse(
        error=ApiError(code=code, message=message, retryable=retryable, details=details)
    ).model_dump()


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Services | None = None) -> FastAPI:
    """Build the HTTP application.

    When ``services`` is omitted the service graph is built from the
    environment at startup and torn down at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            settings = Settings.from_env()
            configure_logging(settings.log_level, settings.log_json)
            app.state.services = build_services(settings)
        current: Services = app.state.services
        if current.settings.monitor_enabled:
            current.monitor.start()
        logger.info("qualitygate_started", monitor=current.monitor.state)
        try:
            yield
        finally:
            if owned:
                current.close()
            elif current.monitor.state == current.monitor.RUNNING:
                current.monitor.stop()
            logger.info("qualitygate_stopped")

    app = FastAPI(title="QualityGate", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            return JSONResponse(status_code=exc.status_code, content=exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(QualityGateError)
    async def qualitygate_error_handler(_: Request, exc: QualityGateError) -> JSONResponse:
        status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
        return JSONResponse(
            status_code=status_code,
            content=_error_body(exc.code, exc.message, exc.retryable, exc.details),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(_: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("database_error", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=_error_body("DATABASE_UNAVAILABLE", "Database operation failed", retryable=True),
        )

    # ------------------------------------------------------------------
    # Health and cache
    # ------------------------------------------------------------------

    @app.get("/health")
    def health(svc: Services = Depends(get_services)) -> JSONResponse:
        database = "ok"
        try:
            svc.store.ping()
        except SQLAlchemyError:
            logger.warning("health_database_unreachable", exc_info=True)
            database = "unreachable"
        body = {
            "status": "ok" if database == "ok" else "degraded",
            "database": database,
            "cache": svc.cache.stats(),
            "monitor": svc.monitor.state,
        }
        code = status.HTTP_200_OK if database == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=code, content=body)

    @app.get("/v1/cache/stats", response_model=CacheStats)
    def cache_stats(svc: Services = Depends(get_services)) -> CacheStats:
        return CacheStats(**svc.cache.stats())

    @app.post("/v1/cache/clear", response_model=CacheStats)
    def cache_clear(svc: Services = Depends(get_services)) -> CacheStats:
        svc.cache.clear()
        logger.info("cache_cleared")
        return CacheStats(**svc.cache.stats())

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @app.post("/v1/validation/validate", response_model=ValidationOutcome)
    def validate(payload: ValidateRequest, svc: Services = Depends(get_services)) -> ValidationOutcome:
        return svc.engine.validate_sync(payload.entity_type, payload.data, payload.rules)

    @app.post(
        "/v1/validation/validate-async",
        response_model=AsyncValidationAccepted,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def validate_async(
        payload: ValidateRequest,
        background_tasks: BackgroundTasks,
        svc: Services = Depends(get_services),
    ) -> AsyncValidationAccepted:
        svc.registry.check_domain(payload.entity_type)
        background_tasks.add_task(_run_async_validation, svc, payload)
        return AsyncValidationAccepted(
            entity_type=payload.entity_type,
            entity_id=entity_id_of(payload.data),
        )

    @app.post("/v1/validation/validate-bulk", response_model=BulkValidationResult)
    def validate_bulk(payload: BulkValidateRequest, svc: Services = Depends(get_services)) -> BulkValidationResult:
        return svc.engine.validate_bulk(payload.entities)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @app.get("/v1/rules", response_model=RuleListResponse)
    def list_rules(
        domain: str | None = None,
        execution_kind: Literal["sync", "async", "batch"] | None = None,
        active: bool | None = None,
        svc: Services = Depends(get_services),
    ) -> RuleListResponse:
        rows = svc.store.list_rules(domain=domain, execution_kind=execution_kind, active=active)
        return RuleListResponse(items=[RuleDefinition(**row) for row in rows], total=len(rows))

    @app.post("/v1/rules", response_model=RuleDefinition, status_code=status.HTTP_201_CREATED)
    def create_rule(payload: CreateRuleRequest, svc: Services = Depends(get_services)) -> RuleDefinition:
        svc.registry.check_domain(payload.domain)
        rule = svc.store.create_rule(
            name=payload.name,
            domain=payload.domain,
            execution_kind=payload.execution_kind,
            definition=payload.definition,
            is_active=payload.is_active,
        )
        logger.info("rule_created", rule_id=rule["id"], name=rule["name"], domain=rule["domain"])
        return RuleDefinition(**rule)

    @app.get("/v1/rules/{rule_id}", response_model=RuleDefinition)
    def get_rule(rule_id: str, svc: Services = Depends(get_services)) -> RuleDefinition:
        rule = svc.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError("Validation rule not found", rule_id=rule_id)
        return RuleDefinition(**rule)

    @app.put("/v1/rules/{rule_id}", response_model=RuleDefinition)
    def update_rule(
        rule_id: str, payload: UpdateRuleRequest, svc: Services = Depends(get_services)
    ) -> RuleDefinition:
        rule = svc.store.supersede_rule(
            rule_id,
            definition=payload.definition,
            execution_kind=payload.execution_kind,
        )
        logger.info("rule_superseded", previous_rule_id=rule_id, rule_id=rule["id"], version=rule["version"])
        return RuleDefinition(**rule)

    @app.delete("/v1/rules/{rule_id}", response_model=RuleDefinition)
    def delete_rule(rule_id: str, svc: Services = Depends(get_services)) -> RuleDefinition:
        rule = svc.store.deactivate_rule(rule_id)
        logger.info("rule_deactivated", rule_id=rule_id)
        return RuleDefinition(**rule)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    @app.get("/v1/reports/metrics", response_model=ValidationMetrics)
    def report_metrics(svc: Services = Depends(get_services)) -> ValidationMetrics:
        return svc.monitor.get_metrics()

    @app.get("/v1/reports/alerts", response_model=AlertListResponse)
    def report_alerts(
        unacknowledged_only: bool = False, svc: Services = Depends(get_services)
    ) -> AlertListResponse:
        items = svc.monitor.get_alerts(unacknowledged_only)
        return AlertListResponse(items=items, total=len(items))

    @app.post("/v1/reports/alerts/{alert_id}/acknowledge", response_model=ValidationAlert)
    def acknowledge_alert(alert_id: str, svc: Services = Depends(get_services)) -> ValidationAlert:
        return svc.monitor.acknowledge_alert(alert_id)

    @app.get("/v1/reports/daily")
    def report_daily(svc: Services = Depends(get_services)) -> dict[str, Any]:
        return svc.monitor.generate_daily_report()

    @app.get("/v1/reports/weekly")
    def report_weekly(svc: Services = Depends(get_services)) -> dict[str, Any]:
        return svc.monitor.generate_weekly_report()

    @app.get("/v1/reports/data-quality")
    def report_data_quality(
        start: datetime | None = None,
        end: datetime | None = None,
        entity_type: str | None = None,
        svc: Services = Depends(get_services),
    ) -> dict[str, Any]:
        return svc.monitor.data_quality_report(start=start, end=end, entity_type=entity_type)

    @app.get("/v1/reports/failures")
    def report_failures(
        entity_type: str | None = None,
        severity: Literal["error", "warning", "info"] | None = None,
        limit: int = Query(default=50, ge=1, le=500),
        svc: Services = Depends(get_services),
    ) -> dict[str, Any]:
        items = svc.monitor.failures_report(entity_type=entity_type, severity=severity, limit=limit)
        return {"items": items, "total": len(items)}

    @app.get("/v1/reports/performance")
    def report_performance(
        hours: int = Query(default=24, ge=1, le=168),
        svc: Services = Depends(get_services),
    ) -> dict[str, Any]:
        report = svc.monitor.performance_report(hours)
        report["cache"] = svc.cache.stats()
        return report

    return app


def _run_async_validation(svc: Services, payload: ValidateRequest) -> None:
    try:
        svc.engine.validate_async(payload.entity_type, payload.data, payload.rules)
    except Exception:
        logger.exception(
            "async_validation_failed",
            entity_type=payload.entity_type,
            entity_id=entity_id_of(payload.data),
        )


app = create_app()
