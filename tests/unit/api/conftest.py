"""Fixtures for API unit tests: event system on the SQLite test store, AsyncClient."""

import pytest
from httpx import ASGITransport, AsyncClient

from app.application.event_system import EventSystem
from app.main import app


@pytest.fixture
def event_system(store, settings):
    return EventSystem(store=store, settings=settings)


@pytest.fixture
def app_with_overrides(event_system):
    """App with the event system overridden; the lifespan does not run under ASGITransport."""
    from app.api import dependencies

    app.dependency_overrides[dependencies.get_event_system] = lambda: event_system
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app_with_overrides):
    transport = ASGITransport(app=app_with_overrides)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
