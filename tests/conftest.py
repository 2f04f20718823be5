"""
Shared pytest fixtures for the fulfillment core test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - directory: admin / lead / department users in the ``users`` table
    - admin, lead, front_desk, graphics, production, stores: Actors
    - make_project: factory creating a project through the intake service
    - headers: builds X-User-* headers for API calls
"""

import pytest

from fulfillment import create_app
from fulfillment.models import db as _db
from fulfillment.models.user import User
from fulfillment.services.permission import Actor


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


# ── Directory & actors ───────────────────────────────────────────────────


@pytest.fixture()
def directory():
    """Users the notification fan-out resolves against."""
    users = [
        User(id="admin-1", name="Ada Admin", role="admin", departments=["administration"]),
        User(id="admin-2", name="Abe Admin", role="admin", departments=["administration"]),
        User(id="lead-1", name="Lee Lead", role="user", departments=["production"]),
        User(id="fd-1", name="Fran Desk", role="user", departments=["front_desk"]),
        User(id="gfx-1", name="Gus Graphics", role="user", departments=["graphics"]),
        User(id="prod-1", name="Pat Production", role="user", departments=["production"]),
        User(id="stores-1", name="Sam Stores", role="user", departments=["stores"]),
    ]
    _db.session.add_all(users)
    _db.session.commit()
    return {u.id: u for u in users}


@pytest.fixture()
def admin(directory):
    return Actor.build("admin-1", "admin", ["administration"], "admin_portal")


@pytest.fixture()
def lead(directory):
    return Actor.build("lead-1", "user", ["production"], "client_portal")


@pytest.fixture()
def front_desk(directory):
    return Actor.build("fd-1", "user", ["Front Desk"], "client_portal")


@pytest.fixture()
def graphics(directory):
    return Actor.build("gfx-1", "user", ["graphics/design"], "client_portal")


@pytest.fixture()
def production(directory):
    return Actor.build("prod-1", "user", ["production"], "client_portal")


@pytest.fixture()
def stores(directory):
    return Actor.build("stores-1", "user", ["stores"], "client_portal")


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_project(admin):
    """Factory: create a project through the intake service.

    Usage:
        project = make_project(status="Pending Proof Reading")
    """
    from fulfillment.services.project_actions import create_project

    def _make(**overrides):
        data = {
            "project_name": "Annual Report Print Run",
            "project_type": "Standard",
            "lead_id": "lead-1",
            "departments": ["graphics", "production"],
        }
        data.update(overrides)
        return create_project(admin, data)

    return _make


@pytest.fixture()
def headers():
    """Build the X-User-* headers the actor middleware reads."""
    def _headers(user_id="admin-1", role="admin", departments="administration", origin="admin_portal"):
        result = {"X-User-Id": user_id, "X-User-Role": role, "X-Request-Origin": origin}
        if departments is not None:
            result["X-User-Departments"] = departments
        return result

    return _headers
