"""Shared test fixtures and utilities for all tests.

This conftest.py provides reusable fixtures that can be used across
unit, contract, and integration tests: an in-memory database, a registered
tenant, the FastAPI app with the recompute queue replaced by a recorder, and
helpers for building agent events.
"""

import sys
from pathlib import Path

# Ensure the project root is first in sys.path (scripts/ is imported by tests)
project_root = str(Path(__file__).parent.parent.absolute())
if project_root not in sys.path:
    sys.path.insert(0, project_root)
elif sys.path[0] != project_root:
    sys.path.remove(project_root)
    sys.path.insert(0, project_root)

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from churnguard_agent.envelope import Event
from churnguard_server.lib.database import Base, configure_engine, create_tables, get_session_factory
from churnguard_server.lib.settings import Settings, get_settings
from churnguard_server.models import Client
from churnguard_server.routers.tracking import get_recompute_dispatcher

TEST_API_KEY = 'cg_test_key_acme'
OTHER_API_KEY = 'cg_test_key_globex'


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory SQLite database installed as the global engine."""
    test_engine = configure_engine('sqlite://')
    create_tables()
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db_session(engine):
    """Session on the test database."""
    session = get_session_factory()()
    yield session
    session.close()


@pytest.fixture
def tenant(db_session):
    """Registered tenant owning TEST_API_KEY."""
    client = Client(name='Acme', api_key=TEST_API_KEY)
    db_session.add(client)
    db_session.commit()
    return client


@pytest.fixture
def api_key(tenant):
    """API key of the registered tenant."""
    return TEST_API_KEY


@pytest.fixture
def other_tenant(db_session):
    """Second tenant, for isolation tests."""
    client = Client(name='Globex', api_key=OTHER_API_KEY)
    db_session.add(client)
    db_session.commit()
    return client


@pytest.fixture
def now():
    """Fixed reference time (naive UTC, the storage convention)."""
    return datetime(2026, 3, 1, 12, 0, 0)


# ============================================================================
# FastAPI Application Fixtures
# ============================================================================

class RecordingDispatcher:
    """Stands in for RecomputeQueue.submit and records every dispatch."""

    def __init__(self):
        self.calls = []

    def __call__(self, client_id: str, user_id: str) -> bool:
        self.calls.append((client_id, user_id))
        return True


@pytest.fixture
def recompute_calls():
    return RecordingDispatcher()


@pytest.fixture
def settings():
    """Default settings, independent of the developer's .env files."""
    return Settings(prediction_ttl=timedelta(hours=24))


@pytest.fixture
def app(engine, recompute_calls, settings):
    """The real FastAPI app bound to the test database.

    The lifespan is not run (TestClient is used without a context manager),
    so the recompute dispatcher is replaced by a recorder.
    """
    from churnguard_server.app import app as fastapi_app

    fastapi_app.dependency_overrides[get_recompute_dispatcher] = lambda: recompute_calls
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Fixture that provides a test client for the app."""
    return TestClient(app)


# ============================================================================
# Agent Fixtures
# ============================================================================

def make_event(index: int = 0, user_id: str = 'u1', event_type: str = 'click') -> Event:
    """Minimal envelope for delivery queue tests."""
    return Event(
        event_id=f'evt-{index}',
        user_id=user_id,
        session_id='session_test_1',
        event_type=event_type,
        page_url='https://app.example.com/',
        properties={'index': index},
        timestamp='2026-03-01T12:00:00.000Z',
    )


class FakeTransport:
    """In-memory transport recording payloads sent by the agent."""

    def __init__(self, fail: bool = False, prediction: dict | None = None):
        self.fail = fail
        self.payloads = []
        self.prediction_requests = []
        self.prediction = prediction or {'user_id': 'u1', 'risk_score': 0.42, 'risk_factors': {}}
        self.closed = False

    async def send(self, payload: dict) -> None:
        from churnguard_agent.transport import DeliveryError

        self.payloads.append(payload)
        if self.fail:
            raise DeliveryError('HTTP error 503', status_code=503)

    async def fetch_prediction(self, api_key: str, user_id: str) -> dict:
        self.prediction_requests.append((api_key, user_id))
        return self.prediction

    async def aclose(self) -> None:
        self.closed = True

    def of_type(self, event_type: str) -> list:
        return [p for p in self.payloads if p['eventType'] == event_type]


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def event_factory():
    """make_event(index, user_id, event_type) -> Event."""
    return make_event


@pytest.fixture
def transport_factory():
    """FakeTransport class, for tests that need custom behaviour."""
    return FakeTransport
