"""Tests for premium verification and feature limit endpoints."""

import pytest

from t333watch.services.premium_cache import get_premium_cache


@pytest.fixture
def free_user(make_user, login_as):
    user = make_user(display_name="FreeViewer")
    login_as(user)
    return user


@pytest.fixture
def premium_user(make_user, login_as):
    user = make_user(display_name="PaidViewer", premium_flag=True)
    login_as(user)
    return user


def test_verify_free_user(client, free_user):
    response = client.get("/api/premium/verify")

    assert response.status_code == 200
    body = response.json()
    assert body["isPremium"] is False
    assert body["user"] == {"id": free_user["id"], "display_name": "FreeViewer", "premium_flag": False}
    assert body["features"]["maxStreams"] == 3
    assert body["features"]["unlimitedPacks"] is False


def test_verify_premium_user(client, premium_user):
    body = client.get("/api/premium/verify").json()

    assert body["isPremium"] is True
    assert body["features"]["maxStreams"] == 9


def test_verify_serves_cached_status(client, free_user, fake_db):
    assert client.get("/api/premium/verify").json()["isPremium"] is False

    # Flag flipped behind the cache's back; the cached value is served
    fake_db.rows("users")[0]["premium_flag"] = True
    assert client.get("/api/premium/verify").json()["isPremium"] is False

    refreshed = client.post("/api/premium/verify").json()
    assert refreshed == {"success": True, "isPremium": True, "refreshed": True}
    assert client.get("/api/premium/verify").json()["isPremium"] is True


def test_verify_requires_auth(client):
    response = client.get("/api/premium/verify")

    assert response.status_code == 401


def test_features_require_premium(client, free_user):
    response = client.get("/api/premium/features")

    assert response.status_code == 403
    assert response.json() == {
        "error": "Premium subscription required",
        "code": "PREMIUM_REQUIRED",
        "upgradeUrl": "/pricing",
    }


def test_features_for_premium_user(client, premium_user):
    response = client.get("/api/premium/features")

    assert response.status_code == 200
    features = response.json()["features"]
    assert features["unlimitedStreams"]["maxStreams"] == 9
    assert features["customLayouts"]["enabled"] is True


def test_validate_feature_within_limit(client, premium_user):
    response = client.post("/api/premium/features/validate", json={"feature": "streams", "currentUsage": 4})

    assert response.status_code == 200
    assert response.json() == {"success": True, "allowed": True, "feature": "streams", "currentUsage": 4}


def test_validate_feature_over_limit(client, premium_user):
    response = client.post("/api/premium/features/validate", json={"feature": "streams", "currentUsage": 9})

    assert response.status_code == 403
    assert response.json() == {
        "error": "Premium users can watch up to 9 streams",
        "allowed": False,
        "feature": "streams",
        "currentUsage": 9,
    }


def test_validate_feature_missing_fields(client, premium_user):
    response = client.post("/api/premium/features/validate", json={"feature": "streams"})

    assert response.status_code == 400


def test_premium_cache_shared_with_health(client, premium_user):
    client.get("/api/premium/verify")

    assert get_premium_cache().stats()["cached_users"] == 1
    assert client.get("/health").json()["premium_cache"]["cached_users"] == 1
