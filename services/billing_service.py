"""
Billing Service - Stripe hosted checkout, billing portal and webhook verification
"""

import json
import logging
from typing import Optional

import stripe
from sqlalchemy.exc import SQLAlchemyError

from backend.utils.errors import ConfigurationError, InvalidSignature, MalformedEvent
from config import settings
from crud.subscription import SubscriptionRepository

logger = logging.getLogger(__name__)

# Initialize Stripe client
if settings.stripe_secret_key:
    stripe.api_key = settings.stripe_secret_key
else:
    logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")


def _stripe_error(action: str, e: "stripe.StripeError") -> dict:
    logger.error(f"Failed to {action}: {e}", exc_info=True)
    return {
        "error": e.user_message or str(e),
        "status": e.http_status or 500,
        "is_error": True,
    }


def verify_webhook(payload: bytes, signature: Optional[str]) -> dict:
    """
    Check the Stripe-Signature header against the raw body and decode it.

    Args:
        payload: Raw request body, exactly as received
        signature: Value of the Stripe-Signature header

    Returns:
        The decoded event payload

    Raises:
        ConfigurationError: If STRIPE_WEBHOOK_SECRET is not set
        InvalidSignature: If the header is missing or does not match
        MalformedEvent: If the body is not valid JSON
    """
    webhook_secret = settings.stripe_webhook_secret
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET environment variable is not set")
        raise ConfigurationError("Webhook secret not configured")

    if not signature:
        raise InvalidSignature("Missing signature header")

    try:
        stripe.Webhook.construct_event(payload, signature, webhook_secret)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Stripe webhook signature verification failed: {e}")
        raise InvalidSignature("Invalid webhook signature") from e
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise MalformedEvent("Invalid payload format") from e

    try:
        return json.loads(payload)
    except ValueError as e:
        raise MalformedEvent("Invalid payload format") from e


class BillingService:
    """
    Service class for starting Stripe billing flows on behalf of a signed-in user.
    Session internals stay with Stripe; we only hand back the URL or client secret.
    """

    def __init__(self, subscription_repo: SubscriptionRepository):
        """
        Initialize the billing service.

        Args:
            subscription_repo: Used to look up the user's Stripe customer id
        """
        self.subscription_repo = subscription_repo

    def allowed_price_ids(self) -> set:
        return {
            price_id
            for price_id in (settings.stripe_pro_price_id, settings.stripe_pro_yearly_price_id)
            if price_id
        }

    def _check_configured(self, price_id: Optional[str] = None) -> Optional[dict]:
        if not settings.stripe_secret_key:
            logger.error("STRIPE_SECRET_KEY is not set. Cannot start billing flow.")
            return {"error": "Billing is not configured", "status": 500, "is_error": True}
        if price_id is not None and price_id not in self.allowed_price_ids():
            return {"error": "Invalid price ID", "status": 400, "is_error": True}
        return None

    async def create_checkout_session(self, user_id: str, email: Optional[str], price_id: str):
        """
        Create a subscription-mode Stripe Checkout session for the user.

        Args:
            user_id: Signed-in user; stored on the session so the webhook can find them
            email: Prefills the checkout form
            price_id: Monthly or yearly pro price

        Returns:
            Normalized response: {"data": url, "is_error": False} or
            {"error": str, "status": int, "is_error": True}
        """
        problem = self._check_configured(price_id)
        if problem:
            return problem

        frontend_url = settings.frontend_url or "http://localhost:3000"
        try:
            checkout_session = stripe.checkout.Session.create(
                customer_email=email,
                client_reference_id=user_id,
                mode="subscription",
                line_items=[{
                    "price": price_id,
                    "quantity": 1,
                }],
                success_url=f"{frontend_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{frontend_url}/pricing",
                metadata={
                    "userId": user_id,
                },
            )
        except stripe.StripeError as e:
            return _stripe_error("create checkout session", e)

        return {"data": checkout_session.url, "is_error": False}

    async def create_billing_portal_session(self, user_id: str):
        """
        Create a Stripe Billing Portal session for the user's customer record.

        Returns:
            Normalized response: {"data": url, "is_error": False} or
            {"error": str, "status": int, "is_error": True}
        """
        problem = self._check_configured()
        if problem:
            return problem

        try:
            subscription = await self.subscription_repo.get_by_user_id(user_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to look up subscription for user {user_id}: {e}", exc_info=True)
            return {"error": "Subscription store unavailable", "status": 503, "is_error": True}

        if subscription is None or not subscription.stripe_customer_id:
            return {"error": "No subscription found", "status": 400, "is_error": True}

        frontend_url = settings.frontend_url or "http://localhost:3000"
        try:
            portal_session = stripe.billing_portal.Session.create(
                customer=subscription.stripe_customer_id,
                return_url=f"{frontend_url}/account",
            )
        except stripe.StripeError as e:
            return _stripe_error("create billing portal session", e)

        return {"data": portal_session.url, "is_error": False}

    async def create_subscription(self, user_id: str, email: Optional[str], price_id: str):
        """
        Create an incomplete subscription for an embedded payment form.

        Reuses the Stripe customer with the user's email when one exists.

        Returns:
            Normalized response:
            {"data": {"subscriptionId": str, "clientSecret": str}, "is_error": False}
            or {"error": str, "status": int, "is_error": True}
        """
        problem = self._check_configured(price_id)
        if problem:
            return problem

        try:
            customers = stripe.Customer.list(email=email, limit=1)
            if customers.data:
                customer_id = customers.data[0].id
            else:
                customer = stripe.Customer.create(
                    email=email,
                    metadata={"user_id": user_id},
                )
                customer_id = customer.id

            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price_id}],
                metadata={"user_id": user_id},
                payment_behavior="default_incomplete",
                payment_settings={"save_default_payment_method": "on_subscription"},
                expand=["latest_invoice.payment_intent"],
            )
        except stripe.StripeError as e:
            return _stripe_error("create subscription", e)

        return {
            "data": {
                "subscriptionId": subscription.id,
                "clientSecret": subscription.latest_invoice.payment_intent.client_secret,
            },
            "is_error": False,
        }
