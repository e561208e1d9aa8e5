from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from datetime import datetime, timezone
from database import Base

from config import TIER_FREE


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Subscription(Base):
    """
    One billing record per user.
    Cancellation is a status change; rows are never deleted.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)
    tier = Column(String, nullable=False, default=TIER_FREE)
    status = Column(String, nullable=False, default="incomplete")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class QueryLogEntry(Base):
    """
    Append-only log of admitted queries, counted per day for the free tier quota.
    """
    __tablename__ = "user_queries"
    __table_args__ = (
        Index("ix_user_queries_user_id_created_at", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False)
    query_details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
