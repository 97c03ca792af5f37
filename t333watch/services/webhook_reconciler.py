"""
Webhook reconciler.

Turns verified Stripe deliveries into premium flag changes. The provider is
the source of truth for subscription state; this is the only path (besides a
user's own immediate cancellation) that writes ``users.premium_flag``.

Each delivery is handled as:

1. Verify the signature (fail closed, nothing is written on failure)
2. Skip events already recorded in the ledger
3. Apply the flag change, then invalidate the user's premium cache entry
4. Hand analytics to the best-effort notifier
5. Record the event id in the ledger

Failures in steps 1-3 propagate so the provider retries the delivery; the
event is only recorded once it was applied.
"""

import logging
from typing import Any

from fastapi import Depends

from t333watch.db.users import get_user_by_stripe_customer_id, set_premium_flag
from t333watch.db.webhook_events import is_event_processed, record_processed_event
from t333watch.schemas.payments import BillingEvent, BillingEventKind, WebhookProcessingResult
from t333watch.services.analytics import AnalyticsRecorder, get_analytics_recorder
from t333watch.services.payments import (
    StripeService,
    get_stripe_object_value,
    get_stripe_service,
    metadata_to_dict,
)
from t333watch.services.premium_cache import PremiumStatusCache, get_premium_cache
from t333watch.utils.exceptions import NotFoundError, ValidationError
from t333watch.utils.security_validators import sanitize_for_logging

logger = logging.getLogger(__name__)


class WebhookReconciler:
    def __init__(
        self,
        stripe_service: StripeService,
        cache: PremiumStatusCache,
        analytics: AnalyticsRecorder,
    ):
        self.stripe_service = stripe_service
        self.cache = cache
        self.analytics = analytics

    def handle(self, payload: bytes | str, signature: str | None) -> WebhookProcessingResult:
        event = self.stripe_service.construct_event(payload, signature)
        logger.info(f"Processing webhook: {event.type} (ID: {sanitize_for_logging(event.id)})")

        if is_event_processed(event.id):
            return WebhookProcessingResult(
                event_id=event.id,
                event_type=event.type,
                duplicate=True,
                message=f"Event {event.id} already processed (duplicate)",
            )

        kind = event.kind
        user_id = None
        if kind == BillingEventKind.CHECKOUT_COMPLETED:
            user_id = self._handle_checkout_completed(event)
        elif kind == BillingEventKind.SUBSCRIPTION_DELETED:
            user_id = self._handle_subscription_deleted(event)
        elif kind == BillingEventKind.INVOICE_PAYMENT_SUCCEEDED:
            user_id = self._handle_invoice_payment(event, succeeded=True)
        elif kind == BillingEventKind.INVOICE_PAYMENT_FAILED:
            user_id = self._handle_invoice_payment(event, succeeded=False)
        else:
            logger.info(f"Unhandled webhook event type acknowledged: {event.type}")

        record_processed_event(
            event_id=event.id,
            event_type=event.type,
            user_id=user_id,
            metadata={"livemode": event.livemode},
        )

        return WebhookProcessingResult(
            event_id=event.id,
            event_type=event.type,
            user_id=user_id,
            message=f"Event {event.type} processed successfully",
        )

    def _handle_checkout_completed(self, event: BillingEvent) -> str:
        session = event.data
        metadata = metadata_to_dict(get_stripe_object_value(session, "metadata"))
        user_id = metadata.get("user_id")
        twitch_id = metadata.get("twitch_id")

        if not user_id or not twitch_id:
            logger.error(f"Checkout session {session.get('id')} is missing user_id or twitch_id metadata")
            raise ValidationError("Missing user_id or twitch_id in session metadata")

        set_premium_flag(user_id, True)
        self.cache.invalidate(user_id)
        logger.info(f"Granted premium to user {user_id} (twitch_id={twitch_id}) after checkout")

        plan = metadata.get("plan")
        subscription_id = get_stripe_object_value(session, "subscription")
        amount_total = get_stripe_object_value(session, "amount_total")
        details = {
            "session_id": get_stripe_object_value(session, "id"),
            "subscription_id": subscription_id,
            "customer_id": get_stripe_object_value(session, "customer"),
        }

        self.analytics.subscription_created(user_id, plan_id=plan, metadata=details)
        self.analytics.complete_purchase(user_id, plan_id=plan, amount=amount_total, metadata=details)
        self.analytics.initialize_retention(user_id, subscription_id, amount_cents=amount_total or 0)
        return user_id

    def _handle_subscription_deleted(self, event: BillingEvent) -> str:
        subscription = event.data
        customer_id = get_stripe_object_value(subscription, "customer")
        user = get_user_by_stripe_customer_id(customer_id) if customer_id else None

        if not user:
            logger.error(f"No user found for Stripe customer {customer_id}")
            raise NotFoundError("User not found")

        user_id = user["id"]
        set_premium_flag(user_id, False)
        self.cache.invalidate(user_id)
        logger.info(f"Revoked premium from user {user_id} after subscription deletion")

        details = get_stripe_object_value(subscription, "cancellation_details") or {}
        self.analytics.subscription_cancelled(
            user_id,
            subscription_id=get_stripe_object_value(subscription, "id"),
            reason=get_stripe_object_value(details, "reason") or "subscription_deleted",
            metadata={"customer_id": customer_id},
        )
        return user_id

    def _handle_invoice_payment(self, event: BillingEvent, succeeded: bool) -> str | None:
        invoice = event.data
        customer_id = get_stripe_object_value(invoice, "customer")
        user = get_user_by_stripe_customer_id(customer_id) if customer_id else None

        if not user:
            logger.warning(f"Invoice {invoice.get('id')} for unknown Stripe customer {customer_id}; ignoring")
            return None

        user_id = user["id"]
        subscription_id = _invoice_subscription_id(invoice)
        metadata = {"invoice_id": get_stripe_object_value(invoice, "id")}

        if succeeded:
            self.analytics.payment_succeeded(
                user_id,
                amount=get_stripe_object_value(invoice, "amount_paid"),
                currency=get_stripe_object_value(invoice, "currency") or "usd",
                payment_intent_id=get_stripe_object_value(invoice, "payment_intent"),
                subscription_id=subscription_id,
                metadata=metadata,
            )
        else:
            error = get_stripe_object_value(invoice, "last_finalization_error") or {}
            self.analytics.payment_failed(
                user_id,
                error_code=get_stripe_object_value(error, "code") or "payment_failed",
                error_message=get_stripe_object_value(error, "message") or "Invoice payment failed",
                subscription_id=subscription_id,
                metadata=metadata,
            )
        return user_id


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    subscription_id = get_stripe_object_value(invoice, "subscription")
    if subscription_id:
        return subscription_id
    # Newer API versions nest it under parent.subscription_details
    details = get_stripe_object_value(get_stripe_object_value(invoice, "parent"), "subscription_details")
    return get_stripe_object_value(details, "subscription")


def get_webhook_reconciler(
    stripe_service: StripeService = Depends(get_stripe_service),
    cache: PremiumStatusCache = Depends(get_premium_cache),
    analytics: AnalyticsRecorder = Depends(get_analytics_recorder),
) -> WebhookReconciler:
    """FastAPI dependency building a reconciler bound to this request's background tasks."""
    return WebhookReconciler(stripe_service, cache, analytics)
