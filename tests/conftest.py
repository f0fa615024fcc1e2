"""Shared fixtures: SQLite-backed event store with a controllable clock, test settings."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from app.config.settings import AppSettings
from app.infrastructure.database.event_store_db import DbEventStore
from app.infrastructure.database.session import (
    create_engine,
    create_session_factory,
    init_schema,
)


class FakeClock:
    """Deterministic UTC clock for the store; advance() moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'events.db'}"


@pytest.fixture
def settings(db_url: str) -> AppSettings:
    return AppSettings(
        environment="test",
        database_url=db_url,
        poll_interval_seconds=0.05,
        batch_size=20,
        worker_concurrency=5,
        default_max_attempts=5,
        default_timeout_seconds=2,
        lease_seconds=30.0,
        shutdown_timeout_seconds=2.0,
    )


@pytest.fixture
async def engine(db_url: str):
    eng = create_engine(db_url)
    await init_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory, clock: FakeClock) -> DbEventStore:
    return DbEventStore(session_factory, lease_seconds=30.0, clock=clock)
