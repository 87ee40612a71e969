"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any app import so settings
pick them up; values already present in the environment win.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_messagely.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("BCRYPT_WORK_FACTOR", "4")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from app.config import get_settings
get_settings.cache_clear()

from app import models  # noqa: F401,E402  registers tables on Base.metadata
from app.main import app  # noqa: E402
from app.storage import SessionLocal, Base, engine  # noqa: E402


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db():
    """Session against a fresh database, for store-level tests."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


def register_user(client, username: str, password: str = "password") -> str:
    """Register a user through the API and return its token."""
    response = client.post(
        "/auth/register",
        json={
            "username": username,
            "password": password,
            "first_name": username.title(),
            "last_name": "Test",
            "phone": "+14155550100",
        },
    )
    assert response.status_code == 200, response.text
    return response.json()["token"]


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
