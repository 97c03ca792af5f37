"""
Subscription analytics storage.

Append-only event tables used for reporting. Nothing here is a source of
truth for premium status. Writers raise on database errors; the analytics
service decides whether a failure matters (it never does for billing).
"""

import logging
from datetime import UTC, datetime
from typing import Any

from t333watch.config.supabase_config import execute_with_retry

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS_TABLE = "subscription_events"
PAYMENT_EVENTS_TABLE = "payment_events"
FUNNEL_EVENTS_TABLE = "conversion_funnel_events"
LIFECYCLE_EVENTS_TABLE = "subscription_lifecycle_events"
RETENTION_TRACKING_TABLE = "user_retention_tracking"
COHORT_SUMMARY_VIEW = "cohort_retention_summary"
USER_RETENTION_VIEW = "user_retention_summary"

SUBSCRIPTION_EVENT_TYPES = {
    "subscription_created",
    "subscription_cancelled",
    "subscription_upgraded",
    "subscription_downgraded",
}
PAYMENT_EVENT_TYPES = {"payment_succeeded", "payment_failed", "payment_refunded"}
FUNNEL_STEPS = (
    "landing_page",
    "view_pricing",
    "start_checkout",
    "payment_info",
    "complete_purchase",
    "abandoned_checkout",
)


def _insert(table: str, row: dict[str, Any], operation_name: str) -> dict[str, Any] | None:
    row = {key: value for key, value in row.items() if value is not None}
    row.setdefault("created_at", datetime.now(UTC).isoformat())

    def _write(client):
        return client.table(table).insert(row).execute()

    result = execute_with_retry(_write, operation_name=operation_name)
    return result.data[0] if result.data else None


def save_subscription_event(
    user_id: str,
    event_type: str,
    plan_id: str | None = None,
    plan_name: str | None = None,
    previous_plan_id: str | None = None,
    previous_plan_name: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    if event_type not in SUBSCRIPTION_EVENT_TYPES:
        raise ValueError(f"Unknown subscription event type: {event_type}")

    return _insert(
        SUBSCRIPTION_EVENTS_TABLE,
        {
            "user_id": user_id,
            "event_type": event_type,
            "plan_id": plan_id,
            "plan_name": plan_name,
            "previous_plan_id": previous_plan_id,
            "previous_plan_name": previous_plan_name,
            "metadata": metadata or {},
        },
        "save_subscription_event",
    )


def save_payment_event(
    user_id: str,
    event_type: str,
    amount: int | None = None,
    currency: str = "usd",
    stripe_payment_intent_id: str | None = None,
    stripe_subscription_id: str | None = None,
    error_code: str | None = None,
    error_message: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Record a payment outcome. ``amount`` is in cents."""
    if event_type not in PAYMENT_EVENT_TYPES:
        raise ValueError(f"Unknown payment event type: {event_type}")

    return _insert(
        PAYMENT_EVENTS_TABLE,
        {
            "user_id": user_id,
            "event_type": event_type,
            "amount": amount,
            "currency": currency,
            "stripe_payment_intent_id": stripe_payment_intent_id,
            "stripe_subscription_id": stripe_subscription_id,
            "error_code": error_code,
            "error_message": error_message,
            "metadata": metadata or {},
        },
        "save_payment_event",
    )


def save_funnel_event(
    funnel_step: str,
    user_id: str | None = None,
    session_id: str | None = None,
    event_data: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    if funnel_step not in FUNNEL_STEPS:
        raise ValueError(f"Unknown funnel step: {funnel_step}")

    return _insert(
        FUNNEL_EVENTS_TABLE,
        {
            "funnel_step": funnel_step,
            "user_id": user_id,
            "session_id": session_id,
            "event_data": event_data or {},
        },
        "save_funnel_event",
    )


def save_lifecycle_event(
    user_id: str,
    event_type: str,
    subscription_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    return _insert(
        LIFECYCLE_EVENTS_TABLE,
        {
            "user_id": user_id,
            "event_type": event_type,
            "subscription_id": subscription_id,
            "metadata": metadata or {},
        },
        "save_lifecycle_event",
    )


def initialize_retention_tracking(
    user_id: str, subscription_id: str, started_at: datetime, amount_cents: int
) -> None:
    def _rpc(client):
        return client.rpc(
            "initialize_user_retention_tracking",
            {
                "p_user_id": user_id,
                "p_subscription_id": subscription_id,
                "p_subscription_start_date": started_at.isoformat(),
                "p_amount_cents": amount_cents,
            },
        ).execute()

    execute_with_retry(_rpc, operation_name="initialize_retention_tracking")


def update_retention_on_cancellation(
    user_id: str, subscription_id: str, churn_reason: str | None = None
) -> None:
    def _rpc(client):
        return client.rpc(
            "update_user_retention_on_cancellation",
            {
                "p_user_id": user_id,
                "p_subscription_id": subscription_id,
                "p_churn_reason": churn_reason,
            },
        ).execute()

    execute_with_retry(_rpc, operation_name="update_retention_on_cancellation")


def list_events(table: str, start: str, end: str) -> list[dict[str, Any]]:
    """Events of one analytics table created within [start, end], newest first."""

    def _list(client):
        return (
            client.table(table)
            .select("*")
            .gte("created_at", start)
            .lte("created_at", end)
            .order("created_at", desc=True)
            .execute()
        )

    result = execute_with_retry(_list, operation_name=f"list_{table}")
    return result.data or []


# ==================== Retention reads ====================


def _by_cohort_month(view: str, start_month: str, end_month: str) -> list[dict[str, Any]]:
    def _list(client):
        return (
            client.table(view)
            .select("*")
            .gte("cohort_month", start_month)
            .lte("cohort_month", end_month)
            .order("cohort_month", desc=True)
            .execute()
        )

    result = execute_with_retry(_list, operation_name=f"list_{view}")
    return result.data or []


def cohort_retention_summary(start_month: str, end_month: str) -> list[dict[str, Any]]:
    """Per-cohort, per-period retention rows; months are ``YYYY-MM-DD``."""
    return _by_cohort_month(COHORT_SUMMARY_VIEW, start_month, end_month)


def user_retention_summary(start_month: str, end_month: str) -> list[dict[str, Any]]:
    """Per-cohort user totals, newest cohort first."""
    return _by_cohort_month(USER_RETENTION_VIEW, start_month, end_month)


def _churn_rpc(name: str, start: str, end: str) -> list[dict[str, Any]]:
    def _rpc(client):
        return client.rpc(name, {"p_start_date": start, "p_end_date": end}).execute()

    result = execute_with_retry(_rpc, operation_name=name)
    return result.data or []


def get_churn_reasons(start: str, end: str) -> list[dict[str, Any]]:
    return _churn_rpc("get_churn_reasons", start, end)


def get_churn_by_month(start: str, end: str) -> list[dict[str, Any]]:
    return _churn_rpc("get_churn_by_month", start, end)


def list_churned_subscriptions(start: str, end: str) -> list[dict[str, Any]]:
    """Retention rows whose churn date falls within [start, end]."""

    def _list(client):
        return (
            client.table(RETENTION_TRACKING_TABLE)
            .select("subscription_start_date, churn_date")
            .gte("churn_date", start)
            .lte("churn_date", end)
            .execute()
        )

    result = execute_with_retry(_list, operation_name="list_churned_subscriptions")
    return result.data or []
