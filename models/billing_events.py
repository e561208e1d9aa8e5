"""
Typed billing lifecycle events parsed from Stripe webhook payloads
"""
from typing import Any, Optional, Union
from pydantic import BaseModel

from backend.utils.errors import MalformedEvent


CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"

HANDLED_EVENT_TYPES = frozenset({
    CHECKOUT_COMPLETED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    SUBSCRIPTION_DELETED,
    INVOICE_PAYMENT_SUCCEEDED,
    INVOICE_PAYMENT_FAILED,
    PAYMENT_INTENT_SUCCEEDED,
    PAYMENT_INTENT_FAILED,
})

# Metadata keys the checkout flow may have stored the user id under
CHECKOUT_USER_ID_KEYS = ("userId", "supabaseUserId", "user_id")


class BillingEvent(BaseModel):
    event_id: Optional[str] = None
    event_type: str


class CheckoutCompleted(BillingEvent):
    user_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None


class SubscriptionChanged(BillingEvent):
    """created or updated"""
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    status: str
    user_id: Optional[str] = None


class SubscriptionDeleted(BillingEvent):
    stripe_subscription_id: str
    stripe_customer_id: Optional[str] = None


class PaymentSucceeded(BillingEvent):
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None


class PaymentFailed(BillingEvent):
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None


class UnhandledEvent(BillingEvent):
    pass


AnyBillingEvent = Union[
    CheckoutCompleted,
    SubscriptionChanged,
    SubscriptionDeleted,
    PaymentSucceeded,
    PaymentFailed,
    UnhandledEvent,
]


def _ref(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, str) and value:
        return value
    return None


def _metadata(obj: dict) -> dict:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _metadata_str(obj: dict, key: str) -> Optional[str]:
    value = _metadata(obj).get(key)
    return str(value) if value else None


def _invoice_subscription(invoice: dict) -> Optional[str]:
    subscription_id = _ref(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    # Newer API versions nest it under parent.subscription_details
    parent = invoice.get("parent")
    if isinstance(parent, dict):
        details = parent.get("subscription_details")
        if isinstance(details, dict):
            return _ref(details.get("subscription"))
    return None


def parse_billing_event(payload: Any) -> AnyBillingEvent:
    """
    Turn a verified webhook payload into one of the event variants.

    Args:
        payload: Decoded JSON body of the webhook request

    Returns:
        The matching BillingEvent subclass; UnhandledEvent for types we ignore

    Raises:
        MalformedEvent: If the payload lacks a type, a data.object, or the ids
            the event type needs
    """
    if not isinstance(payload, dict):
        raise MalformedEvent("Webhook payload must be a JSON object")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEvent("Webhook payload has no event type")

    event_id = payload.get("id") if isinstance(payload.get("id"), str) else None
    common = {"event_id": event_id, "event_type": event_type}

    # Ignored types are acknowledged whatever their body looks like
    if event_type not in HANDLED_EVENT_TYPES:
        return UnhandledEvent(**common)

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise MalformedEvent(f"Webhook payload for {event_type} has no data.object")

    if event_type == CHECKOUT_COMPLETED:
        metadata = _metadata(obj)
        user_id = next(
            (metadata[key] for key in CHECKOUT_USER_ID_KEYS if metadata.get(key)),
            obj.get("client_reference_id"),
        )
        return CheckoutCompleted(
            **common,
            user_id=str(user_id) if user_id else None,
            stripe_customer_id=_ref(obj.get("customer")),
            stripe_subscription_id=_ref(obj.get("subscription")),
        )

    if event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED):
        status = obj.get("status")
        subscription_id = _ref(obj.get("id"))
        customer_id = _ref(obj.get("customer"))
        if not isinstance(status, str) or not status:
            raise MalformedEvent(f"{event_type} has no subscription status")
        if not subscription_id and not customer_id:
            raise MalformedEvent(f"{event_type} references neither a customer nor a subscription")
        return SubscriptionChanged(
            **common,
            stripe_subscription_id=subscription_id,
            stripe_customer_id=customer_id,
            status=status,
            user_id=_metadata_str(obj, "user_id"),
        )

    if event_type == SUBSCRIPTION_DELETED:
        subscription_id = _ref(obj.get("id"))
        if not subscription_id:
            raise MalformedEvent(f"{event_type} has no subscription id")
        return SubscriptionDeleted(
            **common,
            stripe_subscription_id=subscription_id,
            stripe_customer_id=_ref(obj.get("customer")),
        )

    if event_type == INVOICE_PAYMENT_SUCCEEDED:
        return PaymentSucceeded(
            **common,
            stripe_subscription_id=_invoice_subscription(obj),
            stripe_customer_id=_ref(obj.get("customer")),
        )

    if event_type == PAYMENT_INTENT_SUCCEEDED:
        return PaymentSucceeded(
            **common,
            stripe_subscription_id=_metadata_str(obj, "subscriptionId"),
            stripe_customer_id=_ref(obj.get("customer")),
        )

    if event_type == INVOICE_PAYMENT_FAILED:
        return PaymentFailed(
            **common,
            stripe_subscription_id=_invoice_subscription(obj),
            stripe_customer_id=_ref(obj.get("customer")),
        )

    if event_type == PAYMENT_INTENT_FAILED:
        return PaymentFailed(
            **common,
            stripe_subscription_id=_metadata_str(obj, "subscriptionId"),
            stripe_customer_id=_ref(obj.get("customer")),
        )

    return UnhandledEvent(**common)
