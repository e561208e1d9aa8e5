"""
SubscriptionRepository for database operations on Subscription model
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import Subscription, utcnow


class SubscriptionRepository:
    """
    Repository class for Subscription database operations.
    Each method is a single read or write against the subscriptions table.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def get_by_user_id(self, user_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_by_customer_id(self, stripe_customer_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.stripe_customer_id == stripe_customer_id)
        )
        return result.scalars().first()

    async def get_by_subscription_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
        )
        return result.scalars().first()

    async def upsert_for_user(self, user_id: str, values: dict) -> Subscription:
        """
        Create the user's subscription row or overwrite the given fields on it.

        Args:
            user_id: Owner of the row (unique)
            values: Column values to set, e.g. {"tier": "pro", "status": "active"}

        Returns:
            The persisted Subscription object
        """
        subscription = await self.get_by_user_id(user_id)
        if subscription is None:
            subscription = Subscription(user_id=user_id, **values)
            self.db.add(subscription)
        else:
            self._apply(subscription, values)

        await self.db.flush()
        await self.db.refresh(subscription)
        return subscription

    async def update(self, subscription: Subscription, values: dict) -> Subscription:
        self._apply(subscription, values)
        await self.db.flush()
        await self.db.refresh(subscription)
        return subscription

    @staticmethod
    def _apply(subscription: Subscription, values: dict) -> None:
        for key, value in values.items():
            if hasattr(subscription, key):
                setattr(subscription, key, value)
        subscription.updated_at = utcnow()
