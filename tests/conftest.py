import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("QUALITYGATE_DATABASE_URL", "sqlite+pysqlite:///:memory:")

from qualitygate.config import Settings
from qualitygate.main import create_app
from qualitygate.services import build_services


class FakeMonotonic:
    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeClock:
    # 2026-03-11 is a Wednesday.
    def __init__(self, start: datetime = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def cache_clock() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    # File-backed so the persistence pool gets its own connections.
    return Settings(
        database_url=f"sqlite+pysqlite:///{tmp_path / 'qualitygate.db'}",
        cache_ttl_seconds=300,
        persist_workers=1,
    )


@pytest.fixture
def services(settings, cache_clock, clock):
    svc = build_services(settings, cache_clock=cache_clock, monitor_clock=clock)
    yield svc
    svc.close()


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture
def add_rule(store):
    def _add(name, definition, *, domain="contact", execution_kind="sync", is_active=True):
        return store.create_rule(
            name=name,
            domain=domain,
            execution_kind=execution_kind,
            definition=definition,
            is_active=is_active,
        )

    return _add
