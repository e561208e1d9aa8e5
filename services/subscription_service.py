"""
Subscription Service - applies Stripe lifecycle events to the local subscription record
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.billing import SUBSCRIPTION_STATUSES, is_pro_subscription, tier_for_status
from backend.utils.errors import UnknownSubscriptionReference
from config import TIER_FREE, TIER_PRO
from crud.subscription import SubscriptionRepository
from database_models import Subscription
from models.billing_events import (
    AnyBillingEvent,
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionChanged,
    SubscriptionDeleted,
)

logger = logging.getLogger(__name__)

OUTCOME_APPLIED = "applied"
OUTCOME_IGNORED = "ignored"
OUTCOME_UNKNOWN_REFERENCE = "unknown_reference"


class SubscriptionService:
    """
    Keeps one subscription row per user in step with Stripe.

    Writes are keyed by stable billing identifiers, so a redelivered event
    lands on the same row with the same values. Events carry no ordering
    guard: whichever event is processed last decides status and tier.
    """

    def __init__(self, db: AsyncSession, subscription_repo: SubscriptionRepository):
        """
        Initialize the subscription service.

        Args:
            db: AsyncSession used to commit each reconciled event
            subscription_repo: Reads and writes subscription rows
        """
        self.db = db
        self.subscription_repo = subscription_repo

    async def apply_event(self, event: AnyBillingEvent):
        """
        Reconcile one verified billing event.

        Args:
            event: Parsed event variant (see models.billing_events)

        Returns:
            Normalized response: {"data": {"outcome": ..., "event_type": ...}, "is_error": False}
            or {"error": str, "is_error": True} when the store failed and the
            event should be redelivered
        """
        try:
            if isinstance(event, CheckoutCompleted):
                outcome = await self._checkout_completed(event)
            elif isinstance(event, SubscriptionChanged):
                outcome = await self._subscription_changed(event)
            elif isinstance(event, SubscriptionDeleted):
                outcome = await self._subscription_deleted(event)
            elif isinstance(event, PaymentSucceeded):
                outcome = await self._payment_succeeded(event)
            elif isinstance(event, PaymentFailed):
                logger.warning(
                    f"Payment failed ({event.event_type}) for subscription "
                    f"{event.stripe_subscription_id} / customer {event.stripe_customer_id}"
                )
                outcome = OUTCOME_IGNORED
            else:
                logger.info(f"Unhandled event type {event.event_type}")
                outcome = OUTCOME_IGNORED

            if outcome == OUTCOME_APPLIED:
                await self.db.commit()
        except UnknownSubscriptionReference as e:
            logger.warning(f"Dropping {event.event_type} ({event.event_id}): {e.message}")
            outcome = OUTCOME_UNKNOWN_REFERENCE
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error reconciling {event.event_type} ({event.event_id}): {e}", exc_info=True)
            await self._rollback()
            return {"error": "Subscription store unavailable", "is_error": True}

        return {"data": {"outcome": outcome, "event_type": event.event_type}, "is_error": False}

    async def _checkout_completed(self, event: CheckoutCompleted) -> str:
        if not event.user_id:
            raise UnknownSubscriptionReference("checkout session carries no user id")

        values = {"tier": TIER_PRO, "status": "active"}
        if event.stripe_customer_id:
            values["stripe_customer_id"] = event.stripe_customer_id
        if event.stripe_subscription_id:
            values["stripe_subscription_id"] = event.stripe_subscription_id

        await self.subscription_repo.upsert_for_user(event.user_id, values)
        logger.info(f"Checkout completed for user {event.user_id}")
        return OUTCOME_APPLIED

    async def _subscription_changed(self, event: SubscriptionChanged) -> str:
        if event.status not in SUBSCRIPTION_STATUSES:
            logger.warning(f"Unrecognized subscription status '{event.status}', treating as free tier")

        values = {"status": event.status, "tier": tier_for_status(event.status)}
        if event.stripe_subscription_id:
            values["stripe_subscription_id"] = event.stripe_subscription_id
        if event.stripe_customer_id:
            values["stripe_customer_id"] = event.stripe_customer_id

        subscription = await self._find(event.stripe_customer_id, event.stripe_subscription_id)
        if subscription is not None:
            await self.subscription_repo.update(subscription, values)
        elif event.user_id:
            await self.subscription_repo.upsert_for_user(event.user_id, values)
        else:
            raise UnknownSubscriptionReference(
                f"no subscription for customer {event.stripe_customer_id} / "
                f"subscription {event.stripe_subscription_id}"
            )

        logger.info(f"Subscription {event.stripe_subscription_id} is now {event.status}")
        return OUTCOME_APPLIED

    async def _subscription_deleted(self, event: SubscriptionDeleted) -> str:
        subscription = await self.subscription_repo.get_by_subscription_id(event.stripe_subscription_id)
        if subscription is None:
            raise UnknownSubscriptionReference(f"no subscription {event.stripe_subscription_id}")

        await self.subscription_repo.update(subscription, {"status": "canceled", "tier": TIER_FREE})
        logger.info(f"Subscription {event.stripe_subscription_id} canceled")
        return OUTCOME_APPLIED

    async def _payment_succeeded(self, event: PaymentSucceeded) -> str:
        if not event.stripe_subscription_id:
            logger.info(f"{event.event_type} carries no subscription reference")
            return OUTCOME_IGNORED

        subscription = await self.subscription_repo.get_by_subscription_id(event.stripe_subscription_id)
        if subscription is None:
            raise UnknownSubscriptionReference(f"no subscription {event.stripe_subscription_id}")

        # Status only; a canceled row stays on the free tier
        await self.subscription_repo.update(subscription, {"status": "active"})
        return OUTCOME_APPLIED

    async def _find(self, customer_id: Optional[str], subscription_id: Optional[str]) -> Optional[Subscription]:
        subscription = None
        if customer_id:
            subscription = await self.subscription_repo.get_by_customer_id(customer_id)
        if subscription is None and subscription_id:
            subscription = await self.subscription_repo.get_by_subscription_id(subscription_id)
        return subscription

    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        return await self.subscription_repo.get_by_user_id(user_id)

    async def get_user_tier(self, user_id: str) -> str:
        """
        "pro" only for an active or trialing pro row; read errors count as free.
        """
        try:
            subscription = await self.subscription_repo.get_by_user_id(user_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error fetching subscription for user {user_id}: {e}")
            return TIER_FREE
        return TIER_PRO if is_pro_subscription(subscription) else TIER_FREE

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Rollback after reconciliation failure also failed: {e}")
