from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.engine import Engine

from qualitygate.alerts import AlertStore
from qualitygate.cache import ResultCache
from qualitygate.config import Settings
from qualitygate.db import create_db_engine, create_session_factory, init_db
from qualitygate.engine import ValidationEngine
from qualitygate.events import EventBus
from qualitygate.executor import RuleExecutor
from qualitygate.monitor import MonitorConfig, ValidationMonitor
from qualitygate.registry import RuleRegistry
from qualitygate.store import SqlStore


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Services:
    """Everything a request handler needs, wired once per process."""

    settings: Settings
    store: SqlStore
    registry: RuleRegistry
    executor: RuleExecutor
    cache: ResultCache
    events: EventBus
    engine: ValidationEngine
    monitor: ValidationMonitor

    def close(self) -> None:
        if self.monitor.state == ValidationMonitor.RUNNING:
            self.monitor.stop()
        self.engine.shutdown()
        self.store.engine.dispose()


def build_services(
    settings: Settings | None = None,
    *,
    db_engine: Engine | None = None,
    cache_clock: Callable[[], float] = time.monotonic,
    monitor_clock: Callable[[], datetime] = _now,
    monitor_config: MonitorConfig | None = None,
) -> Services:
    settings = settings or Settings.from_env()
    db_engine = db_engine or create_db_engine(settings.database_url)
    init_db(db_engine)

    store = SqlStore(db_engine, create_session_factory(db_engine))
    registry = RuleRegistry(store, settings.extra_domains)
    executor = RuleExecutor(
        store,
        query_timeout_ms=settings.query_timeout_ms,
        max_hierarchy_depth=settings.max_hierarchy_depth,
    )
    cache = ResultCache(settings.cache_ttl_seconds, clock=cache_clock)
    event_bus = EventBus()
    engine = ValidationEngine(
        store,
        registry,
        executor,
        cache,
        event_bus,
        persist_workers=settings.persist_workers,
    )
    monitor = ValidationMonitor(store, event_bus, monitor_config, AlertStore(), clock=monitor_clock)
    return Services(
        settings=settings,
        store=store,
        registry=registry,
        executor=executor,
        cache=cache,
        events=event_bus,
        engine=engine,
        monitor=monitor,
    )
