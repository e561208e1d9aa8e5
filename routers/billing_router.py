"""
Billing Router - API endpoints for Stripe billing integration
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.auth.billing import is_pro_subscription
from backend.auth.user import CurrentUser
from backend.utils.errors import CollaboratorUnavailable
from backend.utils.responses import success_response, error_response
from config import TIER_FREE, TIER_PRO
from crud.subscription import SubscriptionRepository
from database import get_db
from models.billing_events import parse_billing_event
from services.billing_service import BillingService, verify_webhook
from services.subscription_service import SubscriptionService
from utils.shared_utils import log_endpoint_event

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api", tags=["billing"])


class PriceRequest(BaseModel):
    price_id: str = Field(alias="priceId")


def get_subscription_service(db: AsyncSession = Depends(get_db)) -> SubscriptionService:
    return SubscriptionService(db, SubscriptionRepository(db))


def get_billing_service(db: AsyncSession = Depends(get_db)) -> BillingService:
    return BillingService(SubscriptionRepository(db))


def _billing_result(result: dict, key: str):
    if result.get("is_error"):
        return error_response(
            "billing_error",
            status=result.get("status", 500),
            message=result.get("error", "Unknown error"),
        )
    return JSONResponse(status_code=200, content={key: result["data"]})


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Handle Stripe webhook events with signature verification.

    Only verified events are applied. Responses:
    - 400 for a bad signature or malformed payload (InvalidSignature / MalformedEvent)
    - 503 when the subscription store failed, so Stripe redelivers
    - 200 {"received": true} for applied, ignored and unmatched events
    """
    # Get raw request body (required for signature verification)
    payload = await request.body()
    stripe_signature = request.headers.get("stripe-signature")

    event = parse_billing_event(verify_webhook(payload, stripe_signature))

    result = await subscription_service.apply_event(event)
    if result.get("is_error"):
        log_endpoint_event("/api/stripe/webhook", None, "error", {"event_type": event.event_type})
        raise CollaboratorUnavailable(result.get("error", "Subscription store unavailable"))

    outcome = result["data"]["outcome"]
    log_endpoint_event("/api/stripe/webhook", None, outcome, {"event_type": event.event_type, "event_id": event.event_id})
    return JSONResponse(
        status_code=200,
        content={
            "received": True,
            "event_type": event.event_type,
            "outcome": outcome,
        }
    )


@billing_router.post("/stripe/create-checkout")
async def create_checkout_session(
    body: PriceRequest,
    user: CurrentUser = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """Create a hosted Stripe Checkout session and return its URL"""
    result = await billing_service.create_checkout_session(user.id, user.email, body.price_id)
    return _billing_result(result, "url")


@billing_router.post("/stripe/create-portal")
async def create_billing_portal_session(
    user: CurrentUser = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """Create a Stripe Billing Portal session and return its URL"""
    result = await billing_service.create_billing_portal_session(user.id)
    return _billing_result(result, "url")


@billing_router.post("/stripe/create-subscription")
async def create_subscription(
    body: PriceRequest,
    user: CurrentUser = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """Create an incomplete subscription for the embedded payment form"""
    result = await billing_service.create_subscription(user.id, user.email, body.price_id)
    if result.get("is_error"):
        return _billing_result(result, "data")
    return JSONResponse(status_code=200, content=result["data"])


@billing_router.get("/subscription")
async def get_subscription(
    user: CurrentUser = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """Current user's tier and billing status"""
    try:
        subscription = await subscription_service.get_subscription(user.id)
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Error fetching subscription for user {user.id}: {e}")
        raise CollaboratorUnavailable("Could not read subscription") from e

    is_pro = is_pro_subscription(subscription)
    status: Optional[str] = subscription.status if subscription else None
    return success_response({
        "tier": TIER_PRO if is_pro else TIER_FREE,
        "status": status,
        "is_pro": is_pro,
    })
