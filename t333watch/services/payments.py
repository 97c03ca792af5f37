"""
Stripe Service
Handles Stripe billing operations for the premium subscription
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

import stripe

from t333watch.config import Config
from t333watch.db.users import set_premium_flag, set_stripe_customer_id
from t333watch.schemas.payments import (
    BillingEvent,
    BillingPlan,
    CancellationResult,
    CancelSubscriptionRequest,
    CheckoutSessionResult,
    SubscriptionSummary,
)
from t333watch.utils.exceptions import (
    ConfigurationError,
    ProviderError,
    ValidationError,
    WebhookSignatureError,
)
from t333watch.utils.sentry_context import capture_payment_error

logger = logging.getLogger(__name__)

WEBHOOK_TOLERANCE_SECONDS = 300

PLAN_FEATURES = [
    f"Up to {Config.MAX_PREMIUM_STREAMS} streams",
    "Save and share Packs",
    "VOD synchronization",
    "Notifications for live Packs",
    "Priority support",
]

IMMEDIATE_CANCELLATION_MESSAGE = (
    "Your subscription has been canceled immediately. "
    "You no longer have access to premium features."
)


def get_stripe_object_value(obj: Any, attr: str) -> Any:
    """
    Safely extract a field from a Stripe object (dict-like or attribute-based).
    """
    if obj is None:
        return None

    if isinstance(obj, dict):
        return obj.get(attr)

    try:
        return obj[attr]
    except (KeyError, TypeError, IndexError, AttributeError):
        return getattr(obj, attr, None)


def metadata_to_dict(metadata: Any) -> dict[str, Any]:
    """Convert Stripe metadata object into a plain dictionary."""
    if metadata is None:
        return {}
    if isinstance(metadata, dict):
        return dict(metadata)
    try:
        return dict(metadata)
    except (TypeError, ValueError):
        return {}


def _first_item(subscription: Any) -> Any:
    items = get_stripe_object_value(get_stripe_object_value(subscription, "items"), "data") or []
    return items[0] if items else None


def _subscription_price_id(subscription: Any) -> str | None:
    return get_stripe_object_value(get_stripe_object_value(_first_item(subscription), "price"), "id")


def _current_period_end(subscription: Any) -> int | None:
    # Newer API versions moved the billing period onto the subscription items
    value = get_stripe_object_value(subscription, "current_period_end")
    if value is None:
        value = get_stripe_object_value(_first_item(subscription), "current_period_end")
    return value


def _format_period_end(timestamp: int | None) -> str:
    if not timestamp:
        return "the end of the billing period"
    return datetime.fromtimestamp(timestamp, tz=UTC).strftime("%B %d, %Y")


def _format_card(card: Any) -> dict[str, Any] | None:
    if not card:
        return None
    return {
        "brand": get_stripe_object_value(card, "brand"),
        "last4": get_stripe_object_value(card, "last4"),
        "exp_month": get_stripe_object_value(card, "exp_month"),
        "exp_year": get_stripe_object_value(card, "exp_year"),
    }


class StripeService:
    """Service class for handling Stripe billing operations"""

    def __init__(
        self,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        monthly_price_id: str | None = None,
        yearly_price_id: str | None = None,
        base_url: str | None = None,
    ):
        self.api_key = api_key or Config.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or Config.STRIPE_WEBHOOK_SECRET
        self.monthly_price_id = monthly_price_id or Config.STRIPE_MONTHLY_PRICE_ID
        self.yearly_price_id = yearly_price_id or Config.STRIPE_YEARLY_PRICE_ID
        self.base_url = (base_url or Config.BASE_URL).rstrip("/")

        if not self.api_key:
            raise ConfigurationError("STRIPE_SECRET_KEY not found in environment variables")

        if not self.webhook_secret:
            logger.warning(
                "STRIPE_WEBHOOK_SECRET not configured - webhook signature validation will fail"
            )

        stripe.api_key = self.api_key

    # ==================== Plans ====================

    def price_id_for_plan(self, plan: BillingPlan) -> str:
        price_id = self.yearly_price_id if plan == BillingPlan.YEARLY else self.monthly_price_id
        if not price_id:
            raise ConfigurationError("Price ID not configured")
        return price_id

    def plan_for_price_id(self, price_id: str | None) -> BillingPlan | None:
        if price_id and price_id == self.monthly_price_id:
            return BillingPlan.MONTHLY
        if price_id and price_id == self.yearly_price_id:
            return BillingPlan.YEARLY
        return None

    @staticmethod
    def subscription_plans() -> dict[str, dict[str, Any]]:
        price = Config.SUBSCRIPTION_PRICE
        return {
            "monthly": {
                "id": "monthly",
                "name": "Monthly Premium",
                "price": price,
                "currency": "usd",
                "interval": "month",
                "features": list(PLAN_FEATURES),
            },
            "yearly": {
                "id": "yearly",
                "name": "Yearly Premium",
                # Two months free
                "price": round(price * 10, 2),
                "currency": "usd",
                "interval": "year",
                "savings": "17%",
                "features": [*PLAN_FEATURES, "2 months free (17% savings)"],
            },
        }

    # ==================== Checkout ====================

    def ensure_customer(self, user: dict[str, Any]) -> str:
        """Return the user's Stripe customer id, creating and persisting one if needed."""
        customer_id = user.get("stripe_customer_id")
        if customer_id:
            return customer_id

        customer = stripe.Customer.create(
            email=user.get("email"),
            name=user.get("display_name"),
            metadata={"twitch_id": user.get("twitch_id"), "user_id": user.get("id")},
        )
        customer_id = get_stripe_object_value(customer, "id")

        set_stripe_customer_id(user["id"], customer_id)
        user["stripe_customer_id"] = customer_id
        logger.info(f"Created Stripe customer {customer_id} for user {user['id']}")
        return customer_id

    def create_checkout_session(self, user: dict[str, Any], plan: BillingPlan) -> CheckoutSessionResult:
        """
        Create a subscription-mode Stripe Checkout session for the user.

        Args:
            user: Authenticated user record
            plan: Billing plan to subscribe to

        Returns:
            CheckoutSessionResult with the hosted checkout URL
        """
        price_id = self.price_id_for_plan(plan)

        try:
            customer_id = self.ensure_customer(user)
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=f"{self.base_url}/dashboard?checkout=success",
                cancel_url=f"{self.base_url}/dashboard?checkout=canceled",
                metadata={
                    "user_id": user["id"],
                    "twitch_id": user.get("twitch_id"),
                    "plan": plan.value,
                },
            )
        except stripe.StripeError as e:
            capture_payment_error(e, operation="checkout", user_id=user.get("id"))
            raise ProviderError(e.user_message or str(e)) from e

        session_id = get_stripe_object_value(session, "id")
        logger.info(f"Checkout session {session_id} created for user {user['id']} ({plan.value})")

        return CheckoutSessionResult(
            session_url=get_stripe_object_value(session, "url"),
            session_id=session_id,
            customer_id=customer_id,
            price_id=price_id,
        )

    # ==================== Subscription Management ====================

    def get_active_subscription(self, customer_id: str) -> Any | None:
        subscriptions = stripe.Subscription.list(customer=customer_id, status="active", limit=1)
        data = get_stripe_object_value(subscriptions, "data") or []
        return data[0] if data else None

    def _require_active_subscription(self, user: dict[str, Any]) -> Any:
        customer_id = user.get("stripe_customer_id")
        if not customer_id:
            raise ValidationError("No active subscription found")

        subscription = self.get_active_subscription(customer_id)
        if subscription is None:
            raise ValidationError("No active subscription found")
        return subscription

    def cancel_subscription(
        self,
        user: dict[str, Any],
        request: CancelSubscriptionRequest,
        cache,
        analytics,
    ) -> CancellationResult:
        """
        Cancel the user's active subscription.

        By default the subscription ends with the current billing period and the
        user keeps premium until the provider's deletion webhook arrives. With
        ``immediate`` the subscription ends now and premium is revoked here.

        Args:
            user: Authenticated user record
            request: Cancellation options and feedback
            cache: Premium status cache to invalidate on revocation
            analytics: Best-effort analytics recorder
        """
        user_id = user["id"]

        try:
            subscription = self._require_active_subscription(user)
            subscription_id = get_stripe_object_value(subscription, "id")

            logger.info(
                f"Canceling subscription {subscription_id} for user {user_id} "
                f"(immediate: {request.immediate})"
            )

            if request.immediate:
                canceled = stripe.Subscription.cancel(subscription_id)
            else:
                canceled = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            capture_payment_error(e, operation="cancel_subscription", user_id=user_id)
            raise ProviderError(e.user_message or str(e)) from e

        if request.immediate:
            set_premium_flag(user_id, False)
            cache.invalidate(user_id)

        period_end = _current_period_end(canceled)

        # Churn is counted once, from customer.subscription.deleted
        analytics.feature_used(
            "subscription_cancel_requested",
            {
                "user_id": user_id,
                "subscription_id": subscription_id,
                "reason": request.reason or "not_specified",
                "feedback": request.feedback or "",
                "immediate": request.immediate,
            },
        )

        if request.immediate:
            message = IMMEDIATE_CANCELLATION_MESSAGE
        else:
            message = (
                "Your subscription will be canceled at the end of your current billing period "
                f"({_format_period_end(period_end)}). "
                "You'll continue to have access to premium features until then."
            )

        return CancellationResult(
            success=True,
            subscription=SubscriptionSummary(
                id=get_stripe_object_value(canceled, "id") or subscription_id,
                status=get_stripe_object_value(canceled, "status") or "canceled",
                cancel_at_period_end=bool(get_stripe_object_value(canceled, "cancel_at_period_end")),
                current_period_end=period_end,
            ),
            message=message,
        )

    def modify_subscription(
        self,
        user: dict[str, Any],
        action: str,
        new_plan: BillingPlan,
        cache,
        analytics,
    ) -> dict[str, Any]:
        """Switch the active subscription to another plan with prorations."""
        user_id = user["id"]
        if not user.get("stripe_customer_id"):
            raise ValidationError("No Stripe customer found")

        new_price_id = self.price_id_for_plan(new_plan)

        try:
            subscription = self._require_active_subscription(user)
            current_item = _first_item(subscription)
            current_price_id = _subscription_price_id(subscription)

            if current_price_id == new_price_id:
                raise ValidationError("You are already on this plan")

            current_plan = self.plan_for_price_id(current_price_id)
            updated = stripe.Subscription.modify(
                get_stripe_object_value(subscription, "id"),
                items=[{"id": get_stripe_object_value(current_item, "id"), "price": new_price_id}],
                proration_behavior="create_prorations",
            )
        except stripe.StripeError as e:
            capture_payment_error(e, operation="modify_subscription", user_id=user_id)
            raise ProviderError(e.user_message or str(e)) from e

        cache.invalidate(user_id)

        updated_id = get_stripe_object_value(updated, "id")
        analytics.plan_changed(
            user_id,
            from_plan=current_plan.value if current_plan else None,
            to_plan=new_plan.value,
            subscription_id=updated_id,
            upgrade=action != "downgrade",
        )

        return {
            "success": True,
            "subscription": {
                "id": updated_id,
                "status": get_stripe_object_value(updated, "status"),
                "current_period_end": _current_period_end(updated),
                "plan": new_plan.value,
            },
            "message": (
                f"Successfully {action}d to {new_plan.value} plan. "
                "Changes will be reflected in your next billing cycle."
            ),
        }

    def get_plans_and_current(self, user: dict[str, Any]) -> dict[str, Any]:
        current = None
        customer_id = user.get("stripe_customer_id")

        if customer_id:
            try:
                subscription = self.get_active_subscription(customer_id)
            except stripe.StripeError as e:
                capture_payment_error(e, operation="get_subscription", user_id=user.get("id"))
                raise ProviderError(e.user_message or str(e)) from e

            if subscription is not None:
                plan = self.plan_for_price_id(_subscription_price_id(subscription))
                current = {
                    "id": get_stripe_object_value(subscription, "id"),
                    "status": get_stripe_object_value(subscription, "status"),
                    "current_period_start": get_stripe_object_value(subscription, "current_period_start"),
                    "current_period_end": _current_period_end(subscription),
                    "plan": plan.value if plan else None,
                    "cancel_at_period_end": bool(
                        get_stripe_object_value(subscription, "cancel_at_period_end")
                    ),
                }

        return {"plans": self.subscription_plans(), "currentSubscription": current}

    def create_portal_session(self, user: dict[str, Any]) -> str:
        customer_id = user.get("stripe_customer_id")
        if not customer_id:
            raise ValidationError("User does not have a Stripe customer ID")

        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=f"{self.base_url}/dashboard/subscription",
            )
        except stripe.StripeError as e:
            capture_payment_error(e, operation="portal_session", user_id=user.get("id"))
            raise ProviderError(e.user_message or str(e)) from e

        return get_stripe_object_value(session, "url")

    def get_subscription_history(self, user: dict[str, Any]) -> dict[str, list[dict[str, Any]]]:
        customer_id = user.get("stripe_customer_id")
        if not customer_id:
            return {"subscriptions": [], "invoices": [], "paymentMethods": []}

        try:
            subscriptions = stripe.Subscription.list(
                customer=customer_id, limit=10, expand=["data.default_payment_method"]
            )
            invoices = stripe.Invoice.list(customer=customer_id, limit=20)
            payment_methods = stripe.PaymentMethod.list(customer=customer_id, type="card")
        except stripe.StripeError as e:
            capture_payment_error(e, operation="subscription_history", user_id=user.get("id"))
            raise ProviderError(e.user_message or str(e)) from e

        return {
            "subscriptions": [
                self._format_subscription(sub)
                for sub in get_stripe_object_value(subscriptions, "data") or []
            ],
            "invoices": [
                self._format_invoice(invoice)
                for invoice in get_stripe_object_value(invoices, "data") or []
            ],
            "paymentMethods": [
                {
                    "id": get_stripe_object_value(pm, "id"),
                    "type": get_stripe_object_value(pm, "type"),
                    "card": _format_card(get_stripe_object_value(pm, "card")),
                    "created": get_stripe_object_value(pm, "created"),
                }
                for pm in get_stripe_object_value(payment_methods, "data") or []
            ],
        }

    @staticmethod
    def _format_subscription(sub: Any) -> dict[str, Any]:
        price = get_stripe_object_value(_first_item(sub), "price")
        recurring = get_stripe_object_value(price, "recurring")
        payment_method = get_stripe_object_value(sub, "default_payment_method")
        # Unexpanded payment methods are plain id strings
        if isinstance(payment_method, str):
            payment_method = {"id": payment_method}

        return {
            "id": get_stripe_object_value(sub, "id"),
            "status": get_stripe_object_value(sub, "status"),
            "current_period_start": get_stripe_object_value(sub, "current_period_start"),
            "current_period_end": _current_period_end(sub),
            "created": get_stripe_object_value(sub, "created"),
            "canceled_at": get_stripe_object_value(sub, "canceled_at"),
            "ended_at": get_stripe_object_value(sub, "ended_at"),
            "plan": {
                "id": get_stripe_object_value(price, "id"),
                "amount": get_stripe_object_value(price, "unit_amount"),
                "currency": get_stripe_object_value(price, "currency"),
                "interval": get_stripe_object_value(recurring, "interval"),
                "product": get_stripe_object_value(price, "product"),
            },
            "payment_method": (
                {
                    "id": get_stripe_object_value(payment_method, "id"),
                    "type": get_stripe_object_value(payment_method, "type"),
                    "card": _format_card(get_stripe_object_value(payment_method, "card")),
                }
                if payment_method
                else None
            ),
        }

    @staticmethod
    def _format_invoice(invoice: Any) -> dict[str, Any]:
        payment_intent = get_stripe_object_value(invoice, "payment_intent")
        return {
            "id": get_stripe_object_value(invoice, "id"),
            "number": get_stripe_object_value(invoice, "number"),
            "status": get_stripe_object_value(invoice, "status"),
            "amount_paid": get_stripe_object_value(invoice, "amount_paid"),
            "amount_due": get_stripe_object_value(invoice, "amount_due"),
            "currency": get_stripe_object_value(invoice, "currency"),
            "created": get_stripe_object_value(invoice, "created"),
            "period_start": get_stripe_object_value(invoice, "period_start"),
            "period_end": get_stripe_object_value(invoice, "period_end"),
            "hosted_invoice_url": get_stripe_object_value(invoice, "hosted_invoice_url"),
            "invoice_pdf": get_stripe_object_value(invoice, "invoice_pdf"),
            "subscription_id": get_stripe_object_value(invoice, "subscription"),
            "payment_intent": (
                {"id": payment_intent, "status": get_stripe_object_value(invoice, "status")}
                if payment_intent
                else None
            ),
        }

    # ==================== Webhooks ====================

    def construct_event(self, payload: bytes | str, signature: str | None) -> BillingEvent:
        """
        Verify a webhook delivery and parse it into a BillingEvent.

        Raises:
            WebhookSignatureError: If the secret or signature is missing, the
                signature does not match, or the payload is not a Stripe event
        """
        if not signature:
            raise WebhookSignatureError("Missing stripe-signature header")
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret not configured")

        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise WebhookSignatureError("Webhook payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature, self.webhook_secret, tolerance=WEBHOOK_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Webhook signature verification failed: {e}") from e

        try:
            return BillingEvent.from_payload(json.loads(payload))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise WebhookSignatureError(f"Invalid webhook payload: {e}") from e


def get_stripe_service() -> StripeService:
    """FastAPI dependency for the Stripe service."""
    return StripeService()
