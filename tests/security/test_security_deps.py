"""
Tests for authentication dependencies.

Twitch is replaced with an httpx MockTransport so tokens resolve to canned
Helix profiles.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from t333watch.main import create_app
from t333watch.security.authorization import ensure_admin, ensure_owner, is_owner
from t333watch.services.twitch_client import TwitchClient, get_twitch_client
from t333watch.utils.exceptions import AuthorizationError

PROFILE = {
    "id": "9001",
    "login": "streamfan",
    "display_name": "StreamFan",
    "profile_image_url": "https://cdn.twitch.tv/avatar-1.png",
    "email": "fan@example.com",
}


@pytest.fixture
def twitch_profile():
    return dict(PROFILE)


@pytest.fixture
def client(fake_db, twitch_profile):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.headers.get("Authorization") != "Bearer good-token":
            return httpx.Response(401, json={"message": "invalid access token"})
        assert request.headers["Client-Id"] == "twitch-client-id"
        return httpx.Response(200, json={"data": [twitch_profile]})

    app = create_app()
    twitch = TwitchClient(transport=httpx.MockTransport(handler))
    app.dependency_overrides[get_twitch_client] = lambda: twitch
    return TestClient(app)


def test_bearer_token_creates_user(client, fake_db):
    response = client.get("/api/premium/verify", headers={"Authorization": "Bearer good-token"})

    assert response.status_code == 200
    users = fake_db.rows("users")
    assert len(users) == 1
    assert users[0]["twitch_id"] == "9001"
    assert users[0]["premium_flag"] is False
    # Email comes from Twitch on each request and is not persisted
    assert "email" not in users[0]


def test_cookie_token(client, fake_db):
    client.cookies.set("twitch_access_token", "good-token")

    response = client.get("/api/premium/verify")

    assert response.status_code == 200
    assert response.json()["user"]["display_name"] == "StreamFan"


def test_existing_user_avatar_refreshed(client, fake_db, make_user):
    make_user(twitch_id="9001", profile_image_url="https://cdn.twitch.tv/old.png")

    client.get("/api/packs", headers={"Authorization": "Bearer good-token"})

    users = fake_db.rows("users")
    assert len(users) == 1
    assert users[0]["profile_image_url"] == PROFILE["profile_image_url"]


def test_invalid_token(client, fake_db):
    response = client.get("/api/premium/verify", headers={"Authorization": "Bearer expired"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid token"}
    assert fake_db.rows("users") == []


def test_missing_token(client):
    response = client.get("/api/packs")

    assert response.status_code == 401
    assert response.json() == {"error": "Authentication required"}


def test_invalid_token_is_anonymous_for_public_reads(client, fake_db):
    fake_db.rows("packs").append({"id": "p1", "owner_id": "someone", "title": "Open", "visibility": "public"})

    response = client.get("/api/packs/p1", headers={"Authorization": "Bearer expired"})

    assert response.status_code == 200


# ==================== Ownership ====================


def test_is_owner():
    pack = {"id": "p1", "owner_id": "u1"}

    assert is_owner({"id": "u1"}, pack) is True
    assert is_owner({"id": "u2"}, pack) is False
    assert is_owner(None, pack) is False
    assert is_owner({"id": "u1"}, {"id": "p2"}) is False


def test_ensure_owner_raises():
    with pytest.raises(AuthorizationError, match="You do not have permission"):
        ensure_owner({"id": "u2"}, {"id": "p1", "owner_id": "u1"})


def test_ensure_admin():
    ensure_admin({"id": "a", "admin_flag": True})
    with pytest.raises(AuthorizationError, match="Admin access required"):
        ensure_admin({"id": "b", "admin_flag": False})
