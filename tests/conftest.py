"""
Shared pytest fixtures for the ConstructHub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / director / senior_director / pm / customer / employee
    - auth_headers: Bearer header for a user
    - make_project / project, make_task
    - events: RecordingSink swapped in for the notification sink
"""

import pytest

from constructhub import create_app
from constructhub.core.events import EVENT_SINK_KEY, RecordingSink, set_event_sink
from constructhub.middleware.rate_limiter import get_auth_limiters
from constructhub.models import db as _db
from constructhub.services import cache_service, project_service, task_service
from constructhub.services.auth_service import create_user
from constructhub.services.jwt_service import generate_access_token

TEST_PASSWORD = "S3cure-pass!"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
        cache_service.clear_all()
        for limiter in get_auth_limiters(app).values():
            limiter.reset()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def events(app):
    """Record published domain events instead of sending notifications."""
    original = app.extensions.get(EVENT_SINK_KEY)
    sink = RecordingSink()
    set_event_sink(app, sink)
    yield sink
    set_event_sink(app, original)


# ── Users ────────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: make_user("Director", email=..., status=...) → User."""
    counter = {"n": 0}

    def _make(role, *, email=None, status="Active", full_name=None):
        counter["n"] += 1
        slug = role.lower().replace(" ", ".")
        return create_user(
            email or f"{slug}{counter['n']}@constructhub.io",
            TEST_PASSWORD,
            full_name or f"{role} {counter['n']}",
            role,
            status=status,
            rounds=4,
        )

    return _make


@pytest.fixture()
def director(make_user):
    return make_user("Director")


@pytest.fixture()
def senior_director(make_user):
    return make_user("Senior Director")


@pytest.fixture()
def pm(make_user):
    return make_user("Project Manager")


@pytest.fixture()
def customer(make_user):
    return make_user("Customer")


@pytest.fixture()
def employee(make_user):
    return make_user("Employee")


@pytest.fixture()
def auth_headers():
    """auth_headers(user) → {"Authorization": "Bearer <access token>"}."""

    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}

    return _headers


# ── Projects & tasks ─────────────────────────────────────────────────────


@pytest.fixture()
def make_project(director, pm, customer):
    """Factory: make_project(budget=..., **fields) created by the Director."""

    def _make(budget=250_000, **overrides):
        data = {
            "name": "Riverside Offices",
            "description": "Four-storey office block",
            "location": "Leeds",
            "project_type": "Commercial",
            "budget": budget,
            "client_id": customer.id,
            "project_manager_id": pm.id,
            "start_date": "2026-01-05",
            "end_date": "2026-12-18",
        }
        data.update(overrides)
        return project_service.create_project(data, director.id, "Director")

    return _make


@pytest.fixture()
def project(make_project):
    return make_project()


@pytest.fixture()
def make_task(project, pm):
    """Factory: make_task("Title", **fields) in ``project``, created by the PM."""

    def _make(title="Pour foundations", *, created_by=None, **fields):
        data = {"project_id": project.id, "title": title}
        data.update(fields)
        return task_service.create_task(data, (created_by or pm).id)

    return _make
