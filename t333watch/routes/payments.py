"""
Stripe Payment Routes
Endpoints for the premium subscription: webhook, checkout, cancellation,
plan changes, billing portal and history
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Request

from t333watch.schemas.payments import (
    CancelSubscriptionRequest,
    CreateCheckoutSessionRequest,
    ModifySubscriptionRequest,
)
from t333watch.security.deps import get_current_user
from t333watch.services.analytics import AnalyticsRecorder, get_analytics_recorder
from t333watch.services.payments import StripeService, get_stripe_service
from t333watch.services.premium_cache import PremiumStatusCache, get_premium_cache
from t333watch.services.webhook_reconciler import WebhookReconciler, get_webhook_reconciler
from t333watch.utils.exceptions import APIExceptions, T333Error
from t333watch.utils.security_validators import sanitize_for_logging
from t333watch.utils.sentry_context import capture_payment_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Stripe Payments"])


# ==================== Webhook Endpoint ====================


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="stripe-signature"),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    Stripe webhook endpoint

    Handled events:
    - checkout.session.completed - grant premium
    - customer.subscription.deleted - revoke premium
    - invoice.payment_succeeded / invoice.payment_failed - payment analytics

    Other event types are acknowledged without action. Errors return a
    non-2xx status (400 signature/metadata, 404 unknown customer, 500
    otherwise) so Stripe retries the delivery.
    """
    payload = await request.body()

    try:
        result = reconciler.handle(payload, stripe_signature)
    except T333Error as e:
        logger.warning(f"Webhook rejected ({e.status_code}): {sanitize_for_logging(e.message)}")
        raise
    except Exception as e:
        logger.error(f"Webhook processing error: {e}", exc_info=True)
        capture_payment_error(e, operation="webhook")
        raise APIExceptions.internal_error("process webhook") from e

    logger.info(f"Webhook processed: {result.event_type} - {result.message}")

    response: dict[str, Any] = {"received": True}
    if result.duplicate:
        response["duplicate"] = True
    return response


# ==================== Checkout Sessions ====================


@router.post("/create-checkout-session")
async def create_checkout_session(
    body: CreateCheckoutSessionRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Create a Stripe Checkout session for the premium subscription.

    Example request body:
    {
        "plan": "yearly"
    }
    """
    user_id = current_user["id"]
    logger.info(
        "Creating checkout session for user %s, plan: %s",
        sanitize_for_logging(user_id),
        body.plan.value,
    )

    try:
        session = stripe_service.create_checkout_session(current_user, body.plan)
    except T333Error:
        raise
    except Exception as e:
        logger.error(f"Error creating checkout session: {e}", exc_info=True)
        raise APIExceptions.internal_error("create checkout session") from e

    return {"sessionUrl": session.session_url}


# ==================== Subscription Management ====================


@router.post("/cancel-subscription")
async def cancel_subscription(
    body: CancelSubscriptionRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
    cache: PremiumStatusCache = Depends(get_premium_cache),
    analytics: AnalyticsRecorder = Depends(get_analytics_recorder),
):
    """
    Cancel the caller's subscription, at period end by default.

    Example request body:
    {
        "reason": "too_expensive",
        "feedback": "optional free text",
        "immediate": false
    }
    """
    try:
        result = stripe_service.cancel_subscription(current_user, body, cache, analytics)
    except T333Error:
        raise
    except Exception as e:
        logger.error(f"Error canceling subscription: {e}", exc_info=True)
        raise APIExceptions.internal_error("cancel subscription") from e

    logger.info(
        "Subscription cancellation for user %s: reason=%s immediate=%s",
        sanitize_for_logging(current_user["id"]),
        sanitize_for_logging(body.reason),
        body.immediate,
    )
    return result.model_dump()


@router.get("/modify-subscription")
async def get_subscription_plans(
    current_user: dict[str, Any] = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """Available plans and the caller's current subscription, if any."""
    try:
        return stripe_service.get_plans_and_current(current_user)
    except T333Error:
        raise
    except Exception as e:
        logger.error(f"Error fetching subscription plans: {e}", exc_info=True)
        raise APIExceptions.internal_error("get subscription information") from e


@router.post("/modify-subscription")
async def modify_subscription(
    body: ModifySubscriptionRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
    cache: PremiumStatusCache = Depends(get_premium_cache),
    analytics: AnalyticsRecorder = Depends(get_analytics_recorder),
):
    try:
        return stripe_service.modify_subscription(current_user, body.action, body.newPlan, cache, analytics)
    except T333Error:
        raise
    except Exception as e:
        logger.error(f"Error modifying subscription: {e}", exc_info=True)
        raise APIExceptions.internal_error("modify subscription") from e


@router.post("/create-portal-session")
async def create_portal_session(
    current_user: dict[str, Any] = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    try:
        return {"url": stripe_service.create_portal_session(current_user)}
    except T333Error:
        raise
    except Exception as e:
        logger.error(f"Error creating portal session: {e}", exc_info=True)
        raise APIExceptions.internal_error("create portal session") from e


@router.get("/subscription-history")
async def subscription_history(
    current_user: dict[str, Any] = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    try:
        return stripe_service.get_subscription_history(current_user)
    except T333Error:
        raise
    except Exception as e:
        logger.error(f"Error fetching subscription history: {e}", exc_info=True)
        raise APIExceptions.internal_error("fetch subscription history") from e
