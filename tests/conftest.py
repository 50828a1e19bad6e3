import itertools

import pytest
from fastapi.testclient import TestClient

from auth import session_user_id
from config import Settings
from main import create_app
from schemas import UserCreate
from storage import MemoryStorage

_user_numbers = itertools.count(1)


@pytest.fixture(scope="function")
def settings():
    return Settings(environment="development", session_secret="test-secret")


@pytest.fixture(scope="function")
def storage():
    return MemoryStorage()


@pytest.fixture(scope="function")
def app(settings, storage):
    return create_app(settings=settings, storage=storage)


@pytest.fixture(scope="function")
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="function")
def make_user(storage):
    def _make(role="customer"):
        n = next(_user_numbers)
        return storage.create_user(UserCreate(
            name=f"{role.title()} {n}",
            email=f"{role}{n}@example.com",
            role=role,
            google_id=f"google-{role}-{n}",
        ))
    return _make


@pytest.fixture(scope="function")
def login_as(app):
    # Skip the OAuth round trip: make the session resolve to the given user
    def _login(user):
        app.dependency_overrides[session_user_id] = lambda: user["id"]
    yield _login
    app.dependency_overrides.clear()
