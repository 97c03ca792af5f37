"""Tests for the user record store."""

import pytest

from t333watch.db import users
from t333watch.utils.exceptions import NotFoundError


def test_create_user_defaults_flags(fake_db):
    user = users.create_user({"twitch_id": "1001", "login": "alice", "display_name": "Alice"})

    assert user["premium_flag"] is False
    assert user["admin_flag"] is False
    assert user["id"]
    assert users.get_user_by_twitch_id("1001")["login"] == "alice"


def test_get_user_lookups(make_user):
    user = make_user(twitch_id="42", stripe_customer_id="cus_42")

    assert users.get_user_by_id(user["id"])["twitch_id"] == "42"
    assert users.get_user_by_stripe_customer_id("cus_42")["id"] == user["id"]
    assert users.get_user_by_id("missing") is None
    assert users.get_user_by_stripe_customer_id("cus_unknown") is None


def test_set_premium_flag_round_trip(make_user):
    user = make_user()

    users.set_premium_flag(user["id"], True)
    assert users.get_premium_flag(user["id"]) is True

    users.set_premium_flag(user["id"], False)
    assert users.get_premium_flag(user["id"]) is False


def test_set_premium_flag_stamps_updated_at(make_user, fake_db):
    user = make_user()

    updated = users.set_premium_flag(user["id"], True)

    assert updated["updated_at"]
    assert fake_db.rows("users")[0]["premium_flag"] is True


def test_update_unknown_user_raises(fake_db):
    with pytest.raises(NotFoundError):
        users.update_user("nope", {"login": "ghost"})


def test_unknown_user_is_not_premium(fake_db):
    assert users.get_premium_flag("nobody") is False


def test_set_stripe_customer_id(make_user):
    user = make_user()

    users.set_stripe_customer_id(user["id"], "cus_new")

    assert users.get_user_by_id(user["id"])["stripe_customer_id"] == "cus_new"


def test_count_premium_users(make_user):
    make_user(premium_flag=True)
    make_user(premium_flag=True)
    make_user(premium_flag=False)

    assert users.count_premium_users() == 2
