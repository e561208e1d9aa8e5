"""
Query Router - free tier quota gate in front of search queries
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.auth.user import CurrentUser
from backend.utils.errors import QuotaExceeded
from backend.utils.responses import success_response
from config import settings
from crud.query_log import QueryLogRepository
from crud.subscription import SubscriptionRepository
from database import get_db
from services.quota_service import QuotaService
from utils.shared_utils import log_endpoint_event

logger = logging.getLogger(__name__)

query_router = APIRouter(prefix="/api/query", tags=["query"])


def get_quota_service(db: AsyncSession = Depends(get_db)) -> QuotaService:
    return QuotaService(db, SubscriptionRepository(db), QueryLogRepository(db))


@query_router.post("")
async def submit_query(
    query_details: Optional[Any] = Body(default=None),
    user: CurrentUser = Depends(get_current_user),
    quota_service: QuotaService = Depends(get_quota_service),
):
    """
    Admit a search query if the user's daily allowance permits it.

    Returns 401 without a session, 429 when the free tier quota is used up,
    200 once the query has been logged.
    """
    allowed = await quota_service.check_and_consume(user.id, query_details)
    if not allowed:
        log_endpoint_event("/api/query", user.id, "denied")
        frontend_url = settings.frontend_url or "http://localhost:3000"
        raise QuotaExceeded(data={"upgrade_url": f"{frontend_url}/pricing"})

    log_endpoint_event("/api/query", user.id, "success")
    return success_response({"success": True})


@query_router.get("/limit")
async def get_query_limit(
    user: CurrentUser = Depends(get_current_user),
    quota_service: QuotaService = Depends(get_quota_service),
):
    """Today's query usage for the signed-in user"""
    usage = await quota_service.get_usage(user.id)
    return success_response(usage)
