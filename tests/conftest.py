# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("SEED_DEFAULT_APPLIANCES", "false")

from laundry_sync.api.v1.dependencies import get_clock, get_push_notifier_dep
from laundry_sync.db.session import Base
from laundry_sync.db.session import get_db as app_get_session
from laundry_sync.main import app as fastapi_app
from laundry_sync.repositories.appliance_repo import ApplianceRepository
from laundry_sync.schemas.appliance import ApplianceRecord
from laundry_sync.services.push import PushNotifier

TEST_DB_URL = "sqlite://"

# 2024-01-01T12:00:00Z
START_TIME = 1_704_110_400

DEFAULT_NAMES = ("Washer 1", "Washer 2", "Dryer 1", "Dryer 2", "Dryer 3")


class ManualClock:
    """Deterministic time source advanced explicitly by tests."""

    def __init__(self, start: int = START_TIME) -> None:
        self.current_ms = start * 1000

    def now(self) -> int:
        return self.current_ms // 1000

    def now_ms(self) -> int:
        # Every reading moves forward so consecutive events are strictly ordered.
        self.current_ms += 1
        return self.current_ms

    def advance(self, seconds: float = 0, *, minutes: float = 0) -> None:
        self.current_ms += int((seconds + minutes * 60) * 1000)


class RecordingNotifier:
    """Notifier double that keeps every published event."""

    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(engine: Engine, session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
        # Repositories commit, so clean every table for the next test.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def repo(db_session: Session) -> ApplianceRepository:
    return ApplianceRepository(db_session)


@pytest.fixture()
def appliances(repo: ApplianceRepository, clock: ManualClock) -> list[ApplianceRecord]:
    """The five default appliances, all available."""
    return [repo.create(name, clock.now()) for name in DEFAULT_NAMES]


@pytest.fixture()
def push() -> PushNotifier:
    return PushNotifier(max_pending=10, keepalive_seconds=0.05)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    clock: ManualClock,
    push: PushNotifier,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_push_notifier_dep] = lambda: push
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_clock, None)
        app.dependency_overrides.pop(get_push_notifier_dep, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
