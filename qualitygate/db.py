from __future__ import annotations

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from qualitygate.models import Base


REQUIRED_SCHEMA: dict[str, set[str]] = {
    "validation_rule": {
        "id",
        "name",
        "domain",
        "execution_kind",
        "version",
        "is_active",
        "definition",
        "created_at",
        "updated_at",
    },
    "validation_result": {
        "id",
        "entity_type",
        "entity_id",
        "rule_id",
        "is_valid",
        "severity",
        "errors",
        "warnings",
        "failed_rules",
        "duration_ms",
        "validated_at",
    },
    "entity_record": {"entity_type", "id", "parent_id", "is_active", "attributes"},
}


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True}


def create_db_engine(database_url: str) -> Engine:
    return create_engine(database_url, future=True, **_engine_kwargs(database_url))


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def verify_schema(engine: Engine, required: dict[str, set[str]] | None = None) -> None:
    inspector = inspect(engine)
    required_schema = required or REQUIRED_SCHEMA
    existing_tables = set(inspector.get_table_names())
    missing_columns: list[str] = []
    for table_name, required_columns in required_schema.items():
        if table_name not in existing_tables:
            missing_columns.extend(f"{table_name}.{column}" for column in sorted(required_columns))
            continue
        existing_columns = {column["name"] for column in inspector.get_columns(table_name)}
        for required_column in sorted(required_columns):
            if required_column not in existing_columns:
                missing_columns.append(f"{table_name}.{required_column}")
    if missing_columns:
        detail = ", ".join(missing_columns)
        raise RuntimeError(f"Schema verification failed; missing columns: {detail}")


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)
    verify_schema(engine)


def reset_db(engine: Engine) -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
