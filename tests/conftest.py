"""Pytest fixtures for the election admin tests.

Unit tests drive ElectionManager and AccountService against the in-memory
backend. HTTP tests drive a fresh application per test through FastAPI's
TestClient with redirects left unfollowed, so 302 answers can be asserted.
"""

import os
import re

os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("BALLOT_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient

from election_admin.accounts import AccountService
from election_admin.database import MemoryDatabase
from election_admin.lifecycle import ElectionManager
from election_admin.main import create_app
from election_admin.models import RequestContext

CSRF_PATTERN = re.compile(r'name="_csrf" value="([^"]+)"')

ADMIN = {"name": "admin", "email": "test@user.com", "password": "1234567890"}


def extract_csrf_token(response) -> str:
    """Pull the hidden _csrf field out of a rendered page."""
    match = CSRF_PATTERN.search(response.text)
    assert match, "page has no CSRF field"
    return match.group(1)


@pytest.fixture
def database() -> MemoryDatabase:
    return MemoryDatabase()


@pytest.fixture
def manager(database: MemoryDatabase) -> ElectionManager:
    return ElectionManager(database)


@pytest.fixture
def accounts(database: MemoryDatabase) -> AccountService:
    return AccountService(database)


@pytest.fixture
def owner() -> RequestContext:
    return RequestContext(owner_id=1)


@pytest.fixture
def intruder() -> RequestContext:
    return RequestContext(owner_id=2)


@pytest.fixture
def app():
    """Application backed by its own empty in-memory storage."""
    return create_app(MemoryDatabase())


@pytest.fixture
def client(app):
    """Anonymous HTTP client; keeps cookies, does not follow redirects."""
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


@pytest.fixture
def signup():
    """Return a helper that registers (and logs in) an admin on a client."""
    def _signup(test_client: TestClient, **overrides):
        page = test_client.get("/signup")
        payload = dict(ADMIN, **overrides)
        payload["_csrf"] = extract_csrf_token(page)
        return test_client.post("/users", json=payload)

    return _signup


@pytest.fixture
def admin_client(client: TestClient, signup) -> TestClient:
    """Client with a logged-in admin session."""
    response = signup(client)
    assert response.status_code == 302
    return client


@pytest.fixture
def csrf_token(admin_client: TestClient) -> str:
    """CSRF token of the admin session."""
    return extract_csrf_token(admin_client.get("/elections/new"))


@pytest.fixture
def create_election(admin_client: TestClient, csrf_token: str):
    """Return a helper that creates an election over HTTP and returns its id."""
    def _create(name: str = "Election-22") -> int:
        response = admin_client.post("/election", json={"name": name, "_csrf": csrf_token})
        assert response.status_code == 302
        elections = admin_client.get("/election").json()["elections"]
        return elections[-1]["id"]

    return _create


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "postgres: mark test as requiring a reachable PostgreSQL server"
    )
