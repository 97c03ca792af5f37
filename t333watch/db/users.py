"""
User record store.

Users are created on first authentication and never deleted. The premium
flag is written only by the webhook reconciler and by user-initiated
cancellation; every write here raises on failure so callers can surface it.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from t333watch.config.supabase_config import execute_with_retry
from t333watch.utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)

TABLE = "users"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _first(result) -> dict[str, Any] | None:
    return result.data[0] if result.data else None


def get_user_by_id(user_id: str) -> dict[str, Any] | None:
    def _get(client):
        return client.table(TABLE).select("*").eq("id", user_id).limit(1).execute()

    return _first(execute_with_retry(_get, operation_name="get_user_by_id"))


def get_user_by_twitch_id(twitch_id: str) -> dict[str, Any] | None:
    def _get(client):
        return client.table(TABLE).select("*").eq("twitch_id", twitch_id).limit(1).execute()

    return _first(execute_with_retry(_get, operation_name="get_user_by_twitch_id"))


def get_user_by_stripe_customer_id(customer_id: str) -> dict[str, Any] | None:
    """Resolve the user that owns a Stripe customer, or None."""

    def _get(client):
        return (
            client.table(TABLE)
            .select("*")
            .eq("stripe_customer_id", customer_id)
            .limit(1)
            .execute()
        )

    return _first(execute_with_retry(_get, operation_name="get_user_by_stripe_customer_id"))


def create_user(data: dict[str, Any]) -> dict[str, Any]:
    """
    Create a user row.

    Args:
        data: Column values; must include ``twitch_id``, ``login`` and ``display_name``

    Returns:
        The inserted row
    """
    row = {"premium_flag": False, "admin_flag": False, **data}
    row.setdefault("created_at", _now())
    row.setdefault("updated_at", row["created_at"])

    def _insert(client):
        return client.table(TABLE).insert(row).execute()

    created = _first(execute_with_retry(_insert, operation_name="create_user"))
    if created is None:
        raise RuntimeError(f"Failed to create user for twitch_id={data.get('twitch_id')}")

    logger.info(f"Created user {created.get('id')} (twitch_id={created.get('twitch_id')})")
    return created


def update_user(user_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    payload = {**fields, "updated_at": _now()}

    def _update(client):
        return client.table(TABLE).update(payload).eq("id", user_id).execute()

    updated = _first(execute_with_retry(_update, operation_name="update_user"))
    if updated is None:
        raise NotFoundError("User not found")
    return updated


def set_premium_flag(user_id: str, value: bool) -> dict[str, Any]:
    updated = update_user(user_id, {"premium_flag": value})
    logger.info(f"Set premium_flag={value} for user {user_id}")
    return updated


def set_stripe_customer_id(user_id: str, customer_id: str) -> dict[str, Any]:
    return update_user(user_id, {"stripe_customer_id": customer_id})


def get_premium_flag(user_id: str) -> bool:
    """Live premium check against the database; unknown users are not premium."""

    def _get(client):
        return client.table(TABLE).select("premium_flag").eq("id", user_id).limit(1).execute()

    row = _first(execute_with_retry(_get, operation_name="get_premium_flag"))
    return bool(row and row.get("premium_flag"))


def count_premium_users() -> int:
    def _count(client):
        return (
            client.table(TABLE)
            .select("id", count="exact")
            .eq("premium_flag", True)
            .execute()
        )

    result = execute_with_retry(_count, operation_name="count_premium_users")
    if result.count is not None:
        return result.count
    return len(result.data or [])
