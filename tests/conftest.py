"""
Shared pytest fixtures for the DesignFlow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - engine: Lifecycle engine over a fresh in-memory store (no audit sink)
    - recorder / recorded_engine: Engine whose emitted events are captured
    - project: A fresh project on the in-memory engine
"""

import pytest

from designflow import create_app
from designflow.models import db as _db
from designflow.services.engine import build_engine
from designflow.services.revision_store import InMemoryRevisionStore


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Engine fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def engine():
    """Engine wired to a private in-memory store."""
    return build_engine(InMemoryRevisionStore())


class EventRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, **event):
        self.events.append(event)

    def actions(self):
        return [e["action"] for e in self.events]


@pytest.fixture()
def recorder():
    return EventRecorder()


@pytest.fixture()
def recorded_engine(recorder):
    """Engine whose components report every event to ``recorder``."""
    return build_engine(InMemoryRevisionStore(), on_event=recorder)


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project(engine):
    """A fresh project in creation_pending with the default quota of 3."""
    return engine.projects.create_project(client_id="client-1", designer_id="designer-1", name="Brand kit")
