from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    # Timestamps are stored as naive UTC so SQLite and PostgreSQL compare alike.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class RuleDomain(str, Enum):
    CONTACT = "contact"
    WORKFLOW = "workflow"
    CROSS_SYSTEM = "cross-system"


class ExecutionKind(str, Enum):
    SYNC = "sync"
    ASYNC = "async"
    BATCH = "batch"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


JSON_DOC = JSON().with_variant(JSONB, "postgresql")


class ValidationRuleModel(Base):
    __tablename__ = "validation_rule"
    __table_args__ = (
        UniqueConstraint("domain", "name", "version", name="uq_validation_rule_domain_name_version"),
        Index("ix_validation_rule_domain_kind", "domain", "execution_kind"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(String(100), nullable=False)
    execution_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    definition: Mapped[dict] = mapped_column(JSON_DOC, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class ValidationResultModel(Base):
    __tablename__ = "validation_result"
    __table_args__ = (
        Index("ix_validation_result_entity", "entity_type", "entity_id"),
        Index("ix_validation_result_validated_at", "validated_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    rule_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=Severity.INFO.value)
    errors: Mapped[list[dict]] = mapped_column(JSON_DOC, nullable=False, default=list)
    warnings: Mapped[list[dict]] = mapped_column(JSON_DOC, nullable=False, default=list)
    failed_rules: Mapped[list[str]] = mapped_column(JSON_DOC, nullable=False, default=list)
    duration_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    validated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class EntityRecordModel(Base):
    """Read model of platform entities consulted by the custom predicates."""

    __tablename__ = "entity_record"

    entity_type: Mapped[str] = mapped_column(String(100), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    parent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    attributes: Mapped[dict] = mapped_column(JSON_DOC, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
