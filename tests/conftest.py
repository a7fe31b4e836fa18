"""Shared fixtures: testing app, in-memory database, user/issue factories."""

from types import SimpleNamespace
from uuid import uuid4

import pytest
from flask import has_app_context

from app import create_app
from extensions import db
from models import ROLE_CITIZEN, Issue, Role, User
from utils.security import reset_attempts

PASSWORD = "Str0ng!Passw0rd"


# ---------------------------------------------------------------------------
# Application fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app(tmp_path, monkeypatch):
    """Fresh application per test with an in-memory SQLite database."""
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("ANALYZE_ON_SUBMIT", raising=False)
    application = create_app("testing")
    reset_attempts()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
    reset_attempts()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    """Push an app context for service-level tests that talk to the session directly."""
    with app.app_context():
        yield app
        db.session.rollback()


def _in_context(app, fn):
    if has_app_context():
        return fn()
    with app.app_context():
        return fn()


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(app):
    """Create a user and return a plain namespace (id, email, password)."""

    def _make(role=ROLE_CITIZEN, email=None, full_name="Test User", password=PASSWORD):
        def create():
            user = User(
                full_name=full_name,
                email=email or f"user-{uuid4().hex[:8]}@civicpulse.org",
                role=Role.get_or_create(role),
                is_active=True,
            )
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return SimpleNamespace(id=user.id, email=user.email, password=password)

        return _in_context(app, create)

    return _make


@pytest.fixture
def make_issue(app):
    """Create an issue directly in the store and return its id."""

    def _make(
        reporter_id,
        title="Pothole on Main Street",
        description="Deep pothole next to the bus stop damaging tyres",
        category="Road Damage",
        status="new",
        address="12 Main Street",
        latitude=None,
        longitude=None,
        vote_count=0,
    ):
        def create():
            issue = Issue(
                reporter_id=reporter_id,
                title=title,
                description=description,
                category=category,
                status=status,
                address=address,
                latitude=latitude,
                longitude=longitude,
                vote_count=vote_count,
            )
            db.session.add(issue)
            db.session.commit()
            return issue.id

        return _in_context(app, create)

    return _make


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def login(client):
    def _login(user):
        response = client.post("/auth/login", json={"email": user.email, "password": user.password})
        assert response.status_code == 200, response.get_json()
        return response.get_json()["user"]

    return _login
