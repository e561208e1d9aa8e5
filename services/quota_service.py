"""
Quota Service - daily query allowance for free tier users
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.billing import is_pro_subscription
from backend.utils.errors import CollaboratorUnavailable, Unauthenticated
from config import settings
from crud.query_log import QueryLogRepository
from crud.subscription import SubscriptionRepository

logger = logging.getLogger(__name__)


def start_of_today(tz_name: Optional[str] = None, now: Optional[datetime] = None) -> datetime:
    """
    Local midnight of the current day, as a naive UTC datetime.

    Args:
        tz_name: IANA zone defining "local"; server local time when None
        now: Aware reference instant (defaults to the current time)

    Returns:
        Naive UTC datetime comparable with stored created_at values
    """
    if now is None:
        now = datetime.now(timezone.utc)
    local_now = now.astimezone(ZoneInfo(tz_name)) if tz_name else now.astimezone()
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)


class QuotaService:
    """
    Decides whether a user may submit another query today.

    Pro users are always admitted. Free users get `daily_limit` admitted
    queries per local calendar day, counted from the query log. Nothing is
    cached between calls, so two concurrent requests may both read the same
    count and both be admitted.
    """

    def __init__(
        self,
        db: AsyncSession,
        subscription_repo: SubscriptionRepository,
        query_log_repo: QueryLogRepository,
        daily_limit: Optional[int] = None,
        tz_name: Optional[str] = None,
    ):
        """
        Args:
            db: AsyncSession used to commit admitted queries
            subscription_repo: Reads the user's subscription row
            query_log_repo: Counts and appends query log rows
            daily_limit: Free tier cap (defaults to settings.free_daily_query_limit)
            tz_name: Zone for the day boundary (defaults to settings.quota_timezone)
        """
        self.db = db
        self.subscription_repo = subscription_repo
        self.query_log_repo = query_log_repo
        self.daily_limit = settings.free_daily_query_limit if daily_limit is None else daily_limit
        self.tz_name = tz_name if tz_name is not None else settings.quota_timezone

    async def check_and_consume(self, user_id: Optional[str], query_details: Any = None) -> bool:
        """
        Admit and record one query, or refuse it.

        Args:
            user_id: Authenticated user id
            query_details: Opaque payload stored with the log row

        Returns:
            True if the query was admitted and logged, False if the quota
            is exhausted or the store could not be read (fail closed)

        Raises:
            Unauthenticated: If no user id is supplied
        """
        if not user_id:
            raise Unauthenticated()

        try:
            subscription = await self.subscription_repo.get_by_user_id(user_id)
            if not is_pro_subscription(subscription):
                used = await self.query_log_repo.count_since(user_id, start_of_today(self.tz_name))
                if used >= self.daily_limit:
                    logger.info(f"Quota exhausted for user {user_id}: {used}/{self.daily_limit}")
                    return False

            await self.query_log_repo.add(user_id, query_details)
            await self.db.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Quota check failed for user {user_id}, denying: {e}", exc_info=True)
            await self._rollback()
            return False

        return True

    async def get_usage(self, user_id: Optional[str]) -> dict:
        """
        Today's usage for display.

        Returns:
            {"used": int, "limit": int | None, "remaining": int | None, "is_pro": bool}

        Raises:
            Unauthenticated: If no user id is supplied
            CollaboratorUnavailable: If the store could not be read
        """
        if not user_id:
            raise Unauthenticated()

        try:
            subscription = await self.subscription_repo.get_by_user_id(user_id)
            used = await self.query_log_repo.count_since(user_id, start_of_today(self.tz_name))
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Usage lookup failed for user {user_id}: {e}", exc_info=True)
            raise CollaboratorUnavailable("Could not read query usage") from e

        if is_pro_subscription(subscription):
            return {"used": used, "limit": None, "remaining": None, "is_pro": True}

        return {
            "used": used,
            "limit": self.daily_limit,
            "remaining": max(self.daily_limit - used, 0),
            "is_pro": False,
        }

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Rollback after quota failure also failed: {e}")
