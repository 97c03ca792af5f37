"""
Tests for the Stripe service.

Stripe SDK calls are patched; webhook signatures are real HMAC signatures
checked by ``stripe.WebhookSignature``.
"""

import json
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe

from t333watch.schemas.payments import BillingPlan, CancelSubscriptionRequest
from t333watch.services.payments import StripeService, get_stripe_object_value, metadata_to_dict
from t333watch.utils.exceptions import (
    ConfigurationError,
    ProviderError,
    ValidationError,
    WebhookSignatureError,
)

# 2026-01-01T00:00:00Z
PERIOD_END = 1767225600


@pytest.fixture
def service():
    return StripeService()


@pytest.fixture
def subscriber(make_user):
    return make_user(stripe_customer_id="cus_123", premium_flag=True, email="viewer@example.com")


def _subscription(price_id="price_monthly", **fields):
    return {
        "id": "sub_123",
        "status": "active",
        "cancel_at_period_end": False,
        "current_period_end": PERIOD_END,
        "items": {"data": [{"id": "si_123", "price": {"id": price_id}}]},
        **fields,
    }


# ==================== Helpers ====================


def test_stripe_object_value_handles_dicts_and_objects():
    assert get_stripe_object_value({"id": "x"}, "id") == "x"
    assert get_stripe_object_value(None, "id") is None
    assert get_stripe_object_value(SimpleNamespace(id="y"), "id") == "y"


def test_metadata_to_dict():
    assert metadata_to_dict(None) == {}
    assert metadata_to_dict({"user_id": "u1"}) == {"user_id": "u1"}
    assert metadata_to_dict([("plan", "monthly")]) == {"plan": "monthly"}


def test_missing_api_key_is_configuration_error(monkeypatch):
    monkeypatch.setattr("t333watch.services.payments.Config.STRIPE_SECRET_KEY", None)

    with pytest.raises(ConfigurationError):
        StripeService()


def test_plan_price_mapping(service):
    assert service.price_id_for_plan(BillingPlan.MONTHLY) == "price_monthly"
    assert service.price_id_for_plan(BillingPlan.YEARLY) == "price_yearly"
    assert service.plan_for_price_id("price_yearly") == BillingPlan.YEARLY
    assert service.plan_for_price_id("price_other") is None


def test_unconfigured_price_raises():
    service = StripeService(monthly_price_id="price_monthly")
    service.yearly_price_id = None

    with pytest.raises(ConfigurationError, match="Price ID not configured"):
        service.price_id_for_plan(BillingPlan.YEARLY)


def test_subscription_plans():
    plans = StripeService.subscription_plans()

    assert plans["monthly"]["price"] == 5.99
    assert plans["yearly"]["price"] == 59.9
    assert plans["yearly"]["savings"] == "17%"


# ==================== Webhook verification ====================


def test_construct_event_accepts_valid_signature(service, sign_payload, stripe_event):
    payload = stripe_event("checkout.session.completed", {"id": "cs_1"}, event_id="evt_ok")

    event = service.construct_event(payload.encode(), sign_payload(payload))

    assert event.id == "evt_ok"
    assert event.type == "checkout.session.completed"
    assert event.data == {"id": "cs_1"}


def test_construct_event_rejects_missing_signature(service, stripe_event):
    with pytest.raises(WebhookSignatureError, match="Missing stripe-signature header"):
        service.construct_event(stripe_event("invoice.payment_failed", {}), None)


def test_construct_event_rejects_wrong_secret(service, sign_payload, stripe_event):
    payload = stripe_event("checkout.session.completed", {})

    with pytest.raises(WebhookSignatureError):
        service.construct_event(payload, sign_payload(payload, secret="whsec_other"))


def test_construct_event_rejects_tampered_payload(service, sign_payload, stripe_event):
    payload = stripe_event("checkout.session.completed", {"amount_total": 599})
    signature = sign_payload(payload)

    with pytest.raises(WebhookSignatureError):
        service.construct_event(payload.replace("599", "1"), signature)


def test_construct_event_rejects_stale_timestamp(service, sign_payload, stripe_event):
    payload = stripe_event("checkout.session.completed", {})

    with pytest.raises(WebhookSignatureError):
        service.construct_event(payload, sign_payload(payload, timestamp=int(time.time()) - 3600))


def test_construct_event_rejects_signed_garbage(service, sign_payload):
    payload = json.dumps({"hello": "world"})

    with pytest.raises(WebhookSignatureError, match="Invalid webhook payload"):
        service.construct_event(payload, sign_payload(payload))


def test_construct_event_without_secret(sign_payload, stripe_event):
    service = StripeService()
    service.webhook_secret = None
    payload = stripe_event("checkout.session.completed", {})

    with pytest.raises(WebhookSignatureError, match="Webhook secret not configured"):
        service.construct_event(payload, sign_payload(payload))


# ==================== Checkout ====================


def test_checkout_creates_customer_and_session(service, make_user, fake_db):
    user = make_user(twitch_id="555", email="new@example.com")

    with (
        patch("stripe.Customer.create", return_value={"id": "cus_new"}) as create_customer,
        patch(
            "stripe.checkout.Session.create",
            return_value={"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"},
        ) as create_session,
    ):
        result = service.create_checkout_session(user, BillingPlan.YEARLY)

    assert result.session_url == "https://checkout.stripe.com/c/cs_1"
    assert result.customer_id == "cus_new"
    assert result.price_id == "price_yearly"
    create_customer.assert_called_once()
    kwargs = create_session.call_args.kwargs
    assert kwargs["mode"] == "subscription"
    assert kwargs["customer"] == "cus_new"
    assert kwargs["line_items"] == [{"price": "price_yearly", "quantity": 1}]
    assert kwargs["success_url"] == "https://t333.watch/dashboard?checkout=success"
    assert kwargs["cancel_url"] == "https://t333.watch/dashboard?checkout=canceled"
    assert kwargs["metadata"] == {"user_id": user["id"], "twitch_id": "555", "plan": "yearly"}
    assert fake_db.rows("users")[0]["stripe_customer_id"] == "cus_new"


def test_checkout_reuses_existing_customer(service, subscriber):
    with (
        patch("stripe.Customer.create") as create_customer,
        patch("stripe.checkout.Session.create", return_value={"id": "cs_2", "url": "https://x"}),
    ):
        result = service.create_checkout_session(subscriber, BillingPlan.MONTHLY)

    create_customer.assert_not_called()
    assert result.customer_id == "cus_123"


def test_checkout_provider_error(service, subscriber):
    with patch(
        "stripe.checkout.Session.create",
        side_effect=stripe.InvalidRequestError("No such price: 'price_monthly'", param="price"),
    ):
        with pytest.raises(ProviderError, match="No such price"):
            service.create_checkout_session(subscriber, BillingPlan.MONTHLY)


# ==================== Cancellation ====================


def test_cancel_at_period_end_keeps_premium(service, subscriber, fake_db):
    cache, analytics = MagicMock(), MagicMock()
    canceled = _subscription(cancel_at_period_end=True)

    with (
        patch("stripe.Subscription.list", return_value={"data": [_subscription()]}),
        patch("stripe.Subscription.modify", return_value=canceled) as modify,
    ):
        result = service.cancel_subscription(
            subscriber, CancelSubscriptionRequest(reason="too_expensive"), cache, analytics
        )

    modify.assert_called_once_with("sub_123", cancel_at_period_end=True)
    assert result.subscription.cancel_at_period_end is True
    assert "(January 01, 2026)" in result.message
    assert fake_db.rows("users")[0]["premium_flag"] is True
    cache.invalidate.assert_not_called()
    analytics.subscription_cancelled.assert_not_called()
    name, properties = analytics.feature_used.call_args.args
    assert name == "subscription_cancel_requested"
    assert properties["reason"] == "too_expensive"
    assert properties["immediate"] is False


def test_immediate_cancel_revokes_premium(service, subscriber, fake_db):
    cache, analytics = MagicMock(), MagicMock()

    with (
        patch("stripe.Subscription.list", return_value={"data": [_subscription()]}),
        patch("stripe.Subscription.cancel", return_value=_subscription(status="canceled")) as cancel,
    ):
        result = service.cancel_subscription(
            subscriber, CancelSubscriptionRequest(immediate=True), cache, analytics
        )

    cancel.assert_called_once_with("sub_123")
    assert result.subscription.status == "canceled"
    assert result.message.startswith("Your subscription has been canceled immediately.")
    assert fake_db.rows("users")[0]["premium_flag"] is False
    cache.invalidate.assert_called_once_with(subscriber["id"])


def test_cancel_without_subscription(service, make_user):
    user = make_user()

    with pytest.raises(ValidationError, match="No active subscription found"):
        service.cancel_subscription(user, CancelSubscriptionRequest(), MagicMock(), MagicMock())


def test_cancel_when_provider_has_no_active_subscription(service, subscriber):
    with patch("stripe.Subscription.list", return_value={"data": []}):
        with pytest.raises(ValidationError):
            service.cancel_subscription(subscriber, CancelSubscriptionRequest(), MagicMock(), MagicMock())


# ==================== Plan changes ====================


def test_modify_subscription_switches_price(service, subscriber):
    cache, analytics = MagicMock(), MagicMock()
    updated = {"id": "sub_123", "status": "active", "items": {"data": [{"current_period_end": PERIOD_END}]}}

    with (
        patch("stripe.Subscription.list", return_value={"data": [_subscription()]}),
        patch("stripe.Subscription.modify", return_value=updated) as modify,
    ):
        result = service.modify_subscription(subscriber, "upgrade", BillingPlan.YEARLY, cache, analytics)

    modify.assert_called_once_with(
        "sub_123",
        items=[{"id": "si_123", "price": "price_yearly"}],
        proration_behavior="create_prorations",
    )
    assert result["subscription"]["plan"] == "yearly"
    assert result["subscription"]["current_period_end"] == PERIOD_END
    assert result["message"].startswith("Successfully upgraded to yearly plan.")
    cache.invalidate.assert_called_once_with(subscriber["id"])
    analytics.plan_changed.assert_called_once_with(
        subscriber["id"], from_plan="monthly", to_plan="yearly", subscription_id="sub_123", upgrade=True
    )


def test_modify_to_same_plan_rejected(service, subscriber):
    with (
        patch("stripe.Subscription.list", return_value={"data": [_subscription()]}),
        patch("stripe.Subscription.modify") as modify,
    ):
        with pytest.raises(ValidationError, match="You are already on this plan"):
            service.modify_subscription(subscriber, "change", BillingPlan.MONTHLY, MagicMock(), MagicMock())

    modify.assert_not_called()


def test_modify_requires_customer(service, make_user):
    with pytest.raises(ValidationError, match="No Stripe customer found"):
        service.modify_subscription(make_user(), "upgrade", BillingPlan.YEARLY, MagicMock(), MagicMock())


def test_plans_and_current_subscription(service, subscriber, make_user):
    with patch("stripe.Subscription.list", return_value={"data": [_subscription("price_yearly")]}):
        result = service.get_plans_and_current(subscriber)

    assert result["currentSubscription"]["plan"] == "yearly"
    assert set(result["plans"]) == {"monthly", "yearly"}
    assert service.get_plans_and_current(make_user())["currentSubscription"] is None


# ==================== Portal and history ====================


def test_portal_session(service, subscriber):
    with patch(
        "stripe.billing_portal.Session.create", return_value={"url": "https://billing.stripe.com/p/1"}
    ) as create:
        assert service.create_portal_session(subscriber) == "https://billing.stripe.com/p/1"

    assert create.call_args.kwargs["return_url"] == "https://t333.watch/dashboard/subscription"


def test_portal_requires_customer(service, make_user):
    with pytest.raises(ValidationError):
        service.create_portal_session(make_user())


def test_history_without_customer_is_empty(service, make_user):
    assert service.get_subscription_history(make_user()) == {
        "subscriptions": [],
        "invoices": [],
        "paymentMethods": [],
    }


def test_history_formats_provider_objects(service, subscriber):
    sub = _subscription(
        default_payment_method={"id": "pm_1", "type": "card", "card": {"brand": "visa", "last4": "4242"}}
    )
    sub["items"]["data"][0]["price"].update(
        {"unit_amount": 599, "currency": "usd", "recurring": {"interval": "month"}}
    )
    invoice = {"id": "in_1", "status": "paid", "amount_paid": 599, "payment_intent": "pi_1"}

    with (
        patch("stripe.Subscription.list", return_value={"data": [sub]}),
        patch("stripe.Invoice.list", return_value={"data": [invoice]}),
        patch("stripe.PaymentMethod.list", return_value={"data": []}),
    ):
        history = service.get_subscription_history(subscriber)

    formatted = history["subscriptions"][0]
    assert formatted["plan"]["amount"] == 599
    assert formatted["plan"]["interval"] == "month"
    assert formatted["payment_method"]["card"]["last4"] == "4242"
    assert history["invoices"][0]["payment_intent"] == {"id": "pi_1", "status": "paid"}
    assert history["paymentMethods"] == []
