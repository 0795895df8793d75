"""
Pytest fixtures for FleetGuard backend tests.

Provides an in-memory database, principal and company factories, and
helpers for authenticated test-client calls.
"""

import pytest
from flask import Blueprint, g, jsonify

from fleetguard import create_app
from fleetguard.decorators import require_auth, require_permission
from fleetguard.extensions import db
from fleetguard.models import User, new_identity
from fleetguard.services.auth_service import hash_password
from fleetguard.services.tenant_service import create_company


TEST_PASSWORD = "Password123!"


def _fleet_blueprint():
    """A tenant-scoped consumer endpoint, the way CRUD screens use the decorator."""
    fleet_bp = Blueprint("fleet", __name__, url_prefix="/api/fleet")

    @fleet_bp.post("/vehicles")
    @require_auth
    @require_permission("vehicles", "edit")
    def edit_vehicles():
        return jsonify({"tenant_id": g.tenant_id}), 200

    return fleet_bp


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PROVISIONING_BACKOFF_BASE': 0,
        'EXPOSE_VERIFICATION_TOKENS': True,
    })
    app.register_blueprint(_fleet_blueprint())

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data and a fresh app context (and flask.g) for each test."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    """Factory for active principals with the shared test password."""
    def _make(email: str, **kwargs) -> User:
        kwargs.setdefault("role", "user")
        user = User(id=new_identity(), email=email, password_hash=password_hash, **kwargs)
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def owner(make_user):
    """U1: signs Acme up."""
    return make_user("owner@acme.com", first_name="Olivia", last_name="Owner")


@pytest.fixture(scope='function')
def acme(owner):
    """Tenant Acme owned by U1, with default grants seeded."""
    return create_company(owner, "Acme", "ops@acme.com", industry="Logistics")


@pytest.fixture(scope='function')
def globex(make_user):
    """Second tenant with its own owner."""
    globex_owner = make_user("hank@globex.com")
    return create_company(globex_owner, "Globex", "hank@globex.com")


@pytest.fixture(scope='function')
def operator(make_user):
    """Cross-tenant operator (global_override) with no memberships."""
    return make_user("ops@fleetguard.io", global_override=True)


def get_auth_token(client, email: str, password: str = TEST_PASSWORD) -> str | None:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
