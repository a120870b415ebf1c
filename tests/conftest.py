"""
Shared pytest fixtures for the BGF Dashboard test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - cast: one active user per dashboard role
    - make_user / actor_of / auth_headers: factory fixtures
    - new_request: factory creating a request (and its workflow) for the applicant
"""

import itertools
from types import SimpleNamespace

import pytest

from bgf import create_app
from bgf.auth import Actor
from bgf.models import db as _db
from bgf.models.user import Role, User
from bgf.services import request_service
from bgf.services.jwt_service import generate_access_token

_seq = itertools.count(1)


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


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_user(role: Role, full_name: str | None = None, access_code: str | None = None,
              is_active: bool = True) -> User:
    n = next(_seq)
    user = User(
        email=f"{role.value}.{n}@bgf.test",
        full_name=full_name or f"{role.value.replace('_', ' ').title()} {n}",
        role=role,
        staff_access_code=access_code,
        is_active=is_active,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def _actor_of(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


def _auth_headers(user: User) -> dict:
    token = generate_access_token(user.id, user.role, user.full_name)
    return {"Authorization": f"Bearer {token}"}


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def cast():
    """One user per role. The head of programs exists before any request."""
    return SimpleNamespace(
        admin=_make_user(Role.ADMIN),
        hop=_make_user(Role.HEAD_OF_PROGRAMS),
        apo=_make_user(Role.ASSISTANT_PROJECT_OFFICER),
        pm=_make_user(Role.PROJECT_MANAGER),
        director=_make_user(Role.DIRECTOR),
        ceo=_make_user(Role.CEO),
        patron=_make_user(Role.PATRON),
        applicant=_make_user(Role.USER),
    )


@pytest.fixture()
def new_request(cast):
    """Factory: submit a request as the cast's applicant (or ``requester``)."""

    def _create(requester: User | None = None, **fields):
        data = {
            "title": "School fees for Term 2",
            "description": "Tuition support for two students",
            "request_type": "scholarship",
            "amount": "1500.00",
        }
        data.update(fields)
        return request_service.create_request(_actor_of(requester or cast.applicant), data)

    return _create


@pytest.fixture()
def make_user():
    """Factory: ``make_user(Role.DIRECTOR, full_name=..., access_code=...)``."""
    return _make_user


@pytest.fixture()
def actor_of():
    """Factory: the engine ``Actor`` of a user."""
    return _actor_of


@pytest.fixture()
def auth_headers():
    """Factory: Bearer headers for a user."""
    return _auth_headers
