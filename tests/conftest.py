"""
Shared fixtures.

The app runs against an in-memory SQLite database through a `get_db`
override; the lifespan hook (which talks to the configured MySQL server) is
never entered because the TestClient is not used as a context manager.
"""

import os

os.environ.setdefault("JWT_SECRET", "test-signing-secret-that-is-long-enough-for-hs256")
os.environ.setdefault("DB_HOST", "localhost")
os.environ.setdefault("DB_PORT", "3306")
os.environ.setdefault("DB_USER", "moniplan")
os.environ.setdefault("DB_PASSWORD", "secret")
os.environ.setdefault("DB_NAME", "moniplan_test")
os.environ.setdefault("PORT", "8080")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from budget_api import models  # noqa: F401  (registers tables on Base)
from budget_api.config import get_settings
from budget_api.database import Base, get_db
from budget_api.main import app

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client():
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def register(client):
    """Register a user and return (user dict, auth headers)."""

    def _register(email="budi@example.com", name="Budi Santoso", password="rahasia123"):
        response = client.post(
            "/api/v1/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        assert response.status_code == 201, response.text
        body = response.json()
        return body["user"], {"Authorization": f"Bearer {body['token']}"}

    return _register


@pytest.fixture()
def auth_headers(register):
    _, headers = register()
    return headers


@pytest.fixture()
def unset_secret(monkeypatch):
    """Drop JWT_SECRET and rebuild cached settings around the test."""
    monkeypatch.delenv("JWT_SECRET", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
