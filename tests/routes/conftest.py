"""
Conftest for route tests - a fresh app per test with the in-memory database.

``login_as`` swaps the authenticated user by overriding the auth
dependencies; ``login_as(None)`` makes requests anonymous.
"""

import pytest
from fastapi.testclient import TestClient

from t333watch.main import create_app
from t333watch.security.deps import get_current_user, get_optional_user


@pytest.fixture
def app(fake_db):
    application = create_app()
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def login_as(app):
    def _login(user):
        if user is None:
            app.dependency_overrides.pop(get_current_user, None)
            app.dependency_overrides.pop(get_optional_user, None)
            return

        async def _current_user():
            return user

        app.dependency_overrides[get_current_user] = _current_user
        app.dependency_overrides[get_optional_user] = _current_user

    return _login
