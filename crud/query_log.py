"""
QueryLogRepository for the append-only user_queries table
"""

from datetime import datetime
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from database_models import QueryLogEntry


class QueryLogRepository:
    """
    Rows are only ever inserted and counted; nothing here updates or deletes.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_since(self, user_id: str, since: datetime) -> int:
        """
        Count the user's logged queries created at or after `since`.

        Args:
            user_id: User to count for
            since: Naive UTC lower bound (inclusive)

        Returns:
            Number of matching rows
        """
        result = await self.db.execute(
            select(func.count(QueryLogEntry.id)).where(
                QueryLogEntry.user_id == user_id,
                QueryLogEntry.created_at >= since,
            )
        )
        return result.scalar_one()

    async def add(self, user_id: str, query_details: Optional[Any] = None,
                  created_at: Optional[datetime] = None) -> QueryLogEntry:
        entry = QueryLogEntry(user_id=user_id, query_details=query_details)
        if created_at is not None:
            entry.created_at = created_at
        self.db.add(entry)
        await self.db.flush()
        return entry
