"""
Shared pytest fixtures for the SLA engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - default_tenant: Pre-created Tenant entity
    - auth_headers: Factory returning Bearer headers for a profile
"""

import pytest

from sla_engine import create_app
from sla_engine.models import db as _db
from sla_engine.services.scheduler_service import SchedulerService


def _ensure_default_tenant():
    """Create a default tenant for tests if it doesn't exist.

    Returns the tenant ID.
    """
    from sla_engine.models.auth import Tenant
    t = _db.session.execute(
        _db.select(Tenant).where(Tenant.slug == "test-default")
    ).scalar_one_or_none()
    if not t:
        t = Tenant(name="Test Default", slug="test-default")
        _db.session.add(t)
        _db.session.commit()
    return t.id


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
        _ensure_default_tenant()
        yield
        SchedulerService.shutdown()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def default_tenant():
    """Return the auto-created default test tenant."""
    from sla_engine.models.auth import Tenant
    return _db.session.execute(
        _db.select(Tenant).where(Tenant.slug == "test-default")
    ).scalar_one()


@pytest.fixture()
def auth_headers():
    """Return a function building Authorization headers for a profile."""
    from sla_engine.services.jwt_service import generate_access_token

    def _headers(profile, roles=None):
        token = generate_access_token(profile.id, profile.tenant_id, roles or [profile.role])
        return {"Authorization": f"Bearer {token}"}

    return _headers
