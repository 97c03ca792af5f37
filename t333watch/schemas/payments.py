"""Schema definitions for Stripe billing."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class BillingPlan(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BillingEventKind(str, Enum):
    """Provider event types the reconciler acts on."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class BillingEvent(BaseModel):
    """A verified provider event; ``data`` is the event's ``data.object``."""

    id: str
    type: str
    created: int | None = None
    livemode: bool = False
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "BillingEvent":
        return cls(
            id=payload["id"],
            type=payload["type"],
            created=payload.get("created"),
            livemode=bool(payload.get("livemode", False)),
            data=(payload.get("data") or {}).get("object") or {},
        )

    @property
    def kind(self) -> BillingEventKind | None:
        try:
            return BillingEventKind(self.type)
        except ValueError:
            return None


class WebhookProcessingResult(BaseModel):
    """Outcome of handling one webhook delivery."""

    event_id: str
    event_type: str
    success: bool = True
    duplicate: bool = False
    user_id: str | None = None
    message: str = "Webhook processed"
    processed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class CreateCheckoutSessionRequest(BaseModel):
    plan: BillingPlan


class CheckoutSessionResult(BaseModel):
    session_url: str
    session_id: str
    customer_id: str
    price_id: str


class CancelSubscriptionRequest(BaseModel):
    feedback: str | None = None
    reason: str | None = None
    immediate: bool = False


class SubscriptionSummary(BaseModel):
    id: str
    status: str
    cancel_at_period_end: bool
    current_period_end: int | None = None


class CancellationResult(BaseModel):
    success: bool = True
    subscription: SubscriptionSummary
    message: str


class ModifySubscriptionRequest(BaseModel):
    action: Literal["upgrade", "downgrade", "change"]
    newPlan: BillingPlan


class PortalSessionResponse(BaseModel):
    url: str
