"""
Subscription analytics recorder.

Every method here is fire-and-forget: it hands the database write to the
best-effort notifier and returns ``None``. A failed analytics write is
logged and never affects the billing change that triggered it.
"""

import logging
import math
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import BackgroundTasks

from t333watch.db import subscription_analytics as analytics_db
from t333watch.db.users import count_premium_users
from t333watch.services.background_tasks import BestEffortNotifier

logger = logging.getLogger(__name__)


class AnalyticsRecorder:
    def __init__(self, notifier: BestEffortNotifier | None = None):
        self._notifier = notifier or BestEffortNotifier()

    def subscription_created(
        self,
        user_id: str,
        plan_id: str | None = None,
        plan_name: str = "Premium",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._notifier.notify(
            analytics_db.save_subscription_event,
            user_id,
            "subscription_created",
            plan_id=plan_id,
            plan_name=plan_name,
            metadata=metadata,
        )
        self._notifier.notify(
            analytics_db.save_lifecycle_event,
            user_id,
            "subscription_started",
            subscription_id=(metadata or {}).get("subscription_id"),
            metadata=metadata,
        )

    def complete_purchase(
        self,
        user_id: str,
        plan_id: str | None = None,
        plan_name: str = "Premium",
        amount: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._notifier.notify(
            analytics_db.save_funnel_event,
            "complete_purchase",
            user_id=user_id,
            event_data={"plan_id": plan_id, "plan_name": plan_name, "amount": amount, **(metadata or {})},
        )

    def initialize_retention(
        self,
        user_id: str,
        subscription_id: str | None,
        started_at: datetime | None = None,
        amount_cents: int = 0,
    ) -> None:
        if not subscription_id:
            logger.debug(f"No subscription id for user {user_id}; skipping retention tracking")
            return
        self._notifier.notify(
            analytics_db.initialize_retention_tracking,
            user_id,
            subscription_id,
            started_at or datetime.now(UTC),
            amount_cents,
        )

    def subscription_cancelled(
        self,
        user_id: str,
        subscription_id: str | None = None,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._notifier.notify(
            analytics_db.save_subscription_event,
            user_id,
            "subscription_cancelled",
            plan_name="Premium",
            metadata={"subscription_id": subscription_id, "reason": reason, **(metadata or {})},
        )
        self._notifier.notify(
            analytics_db.save_lifecycle_event,
            user_id,
            "subscription_cancelled",
            subscription_id=subscription_id,
            metadata={"reason": reason, **(metadata or {})},
        )
        if subscription_id:
            self._notifier.notify(
                analytics_db.update_retention_on_cancellation,
                user_id,
                subscription_id,
                reason,
            )

    def payment_succeeded(
        self,
        user_id: str,
        amount: int | None,
        currency: str = "usd",
        payment_intent_id: str | None = None,
        subscription_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._notifier.notify(
            analytics_db.save_payment_event,
            user_id,
            "payment_succeeded",
            amount=amount,
            currency=currency,
            stripe_payment_intent_id=payment_intent_id,
            stripe_subscription_id=subscription_id,
            metadata=metadata,
        )

    def payment_failed(
        self,
        user_id: str,
        error_code: str | None = None,
        error_message: str | None = None,
        subscription_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._notifier.notify(
            analytics_db.save_payment_event,
            user_id,
            "payment_failed",
            stripe_subscription_id=subscription_id,
            error_code=error_code,
            error_message=error_message,
            metadata=metadata,
        )

    def plan_changed(
        self,
        user_id: str,
        from_plan: str | None,
        to_plan: str,
        subscription_id: str | None = None,
        upgrade: bool = True,
    ) -> None:
        self._notifier.notify(
            analytics_db.save_subscription_event,
            user_id,
            "subscription_upgraded" if upgrade else "subscription_downgraded",
            plan_id=to_plan,
            plan_name=to_plan.capitalize(),
            previous_plan_id=from_plan,
            previous_plan_name=from_plan.capitalize() if from_plan else None,
            metadata={"subscription_id": subscription_id},
        )

    def feature_used(self, name: str, properties: dict[str, Any] | None = None) -> None:
        logger.info(f"feature_used: {name}", extra={"extra": {"feature": name, **(properties or {})}})


def _rate(numerator: int, denominator: int) -> float:
    return round(numerator / denominator * 100, 2) if denominator > 0 else 0.0


def _safe_rows(fetch, *args) -> list[dict[str, Any]]:
    try:
        return fetch(*args)
    except Exception as e:
        logger.warning(f"Churn query {fetch.__name__} failed: {e}")
        return []


def _avg_days_to_churn(rows: list[dict[str, Any]]) -> int:
    days = []
    for row in rows:
        try:
            started = datetime.fromisoformat(row["subscription_start_date"])
            churned = datetime.fromisoformat(row["churn_date"])
        except (KeyError, TypeError, ValueError):
            continue
        days.append(math.ceil(abs((churned - started).total_seconds()) / 86400))
    return round(sum(days) / len(days)) if days else 0


def build_retention_metrics(start: str, end: str) -> dict[str, Any]:
    """
    Cohort retention and churn figures for the admin dashboard.

    Cohort views are filtered by month, so only the date part of ``start`` and
    ``end`` applies to them. Raises when the cohort views cannot be read; the
    churn queries degrade to empty lists on their own.
    """
    summary = analytics_db.user_retention_summary(start[:10], end[:10])
    cohorts = analytics_db.cohort_retention_summary(start[:10], end[:10])

    total_users = sum(row.get("total_users") or 0 for row in summary)
    active_users = sum(row.get("active_users") or 0 for row in summary)
    total_revenue = sum(float(row.get("total_revenue_dollars") or 0) for row in summary)
    retained_revenue = sum(
        float(row.get("revenue_retained_dollars") or 0) for row in cohorts if row.get("period_number") == 0
    )
    retention_rate = _rate(active_users, total_users)
    lifetimes = [float(row.get("avg_months_retained") or 0) for row in summary]

    return {
        "overall_retention_rate": retention_rate,
        "avg_customer_lifetime_months": round(sum(lifetimes) / len(lifetimes), 2) if lifetimes else 0.0,
        "monthly_churn_rate": round(100 - retention_rate, 2) if total_users else 0.0,
        "revenue_retention_rate": round(retained_revenue / total_revenue * 100, 2) if total_revenue else 0.0,
        "cohort_summary": summary[:6],
        "churn_analysis": {
            "churn_reasons": _safe_rows(analytics_db.get_churn_reasons, start, end),
            "churn_by_month": _safe_rows(analytics_db.get_churn_by_month, start, end),
            "avg_time_to_churn_days": _avg_days_to_churn(
                _safe_rows(analytics_db.list_churned_subscriptions, start, end)
            ),
        },
    }


def build_admin_overview(start: str | None = None, end: str | None = None) -> dict[str, Any]:
    """
    Aggregate subscription, payment and funnel events for the admin dashboard.

    Args:
        start: ISO timestamp; defaults to 30 days ago
        end: ISO timestamp; defaults to now
    """
    now = datetime.now(UTC)
    start = start or (now - timedelta(days=30)).isoformat()
    end = end or now.isoformat()

    subscription_events = analytics_db.list_events(analytics_db.SUBSCRIPTION_EVENTS_TABLE, start, end)
    payment_events = analytics_db.list_events(analytics_db.PAYMENT_EVENTS_TABLE, start, end)
    funnel_events = analytics_db.list_events(analytics_db.FUNNEL_EVENTS_TABLE, start, end)

    total_subscriptions = sum(1 for e in subscription_events if e.get("event_type") == "subscription_created")
    total_cancellations = sum(1 for e in subscription_events if e.get("event_type") == "subscription_cancelled")
    total_revenue_cents = sum(
        e.get("amount") or 0 for e in payment_events if e.get("event_type") == "payment_succeeded"
    )

    steps = {step: 0 for step in analytics_db.FUNNEL_STEPS}
    for event in funnel_events:
        step = event.get("funnel_step")
        if step in steps:
            steps[step] += 1

    conversion_rates = {
        "landing_to_pricing": _rate(steps["view_pricing"], steps["landing_page"]),
        "pricing_to_checkout": _rate(steps["start_checkout"], steps["view_pricing"]),
        "checkout_to_payment": _rate(steps["payment_info"], steps["start_checkout"]),
        "payment_to_purchase": _rate(steps["complete_purchase"], steps["payment_info"]),
        "overall_conversion": _rate(steps["complete_purchase"], steps["landing_page"]),
    }

    try:
        active_subscribers = count_premium_users()
    except Exception as e:
        logger.error(f"Error counting active subscribers: {e}", exc_info=True)
        active_subscribers = 0

    try:
        retention = build_retention_metrics(start, end)
    except Exception as e:
        logger.error(f"Error fetching retention metrics: {e}", exc_info=True)
        retention = None

    return {
        "overview": {
            "totalSubscriptions": total_subscriptions,
            "totalCancellations": total_cancellations,
            "activeSubscribers": active_subscribers,
            "totalRevenue": total_revenue_cents / 100,
            "churnRate": _rate(total_cancellations, total_subscriptions),
            "conversionRate": conversion_rates["overall_conversion"],
        },
        "funnel": {
            "steps": steps,
            "conversionRates": conversion_rates,
            "abandonmentRate": _rate(steps["abandoned_checkout"], steps["start_checkout"]),
        },
        "retention": retention,
        "events": {
            "subscriptions": subscription_events,
            "payments": payment_events,
            "conversions": funnel_events,
        },
        "dateRange": {"startDate": start, "endDate": end},
    }


def get_analytics_recorder(background_tasks: BackgroundTasks) -> AnalyticsRecorder:
    """FastAPI dependency: analytics deferred until after the response is sent."""
    return AnalyticsRecorder(BestEffortNotifier(background_tasks))
