"""
Authentication routes and dependencies
"""

import logging
from typing import Optional
from fastapi import APIRouter, Header, Depends, Cookie
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import decode_jwt
from backend.auth.user import CurrentUser
from backend.utils.errors import Unauthenticated
from backend.utils.responses import success_response
from crud.subscription import SubscriptionRepository
from database import get_db
from services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


async def get_optional_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Optional[CurrentUser]:
    """
    Resolve the caller from the auth provider's access token, or None.

    Token lookup order:
    1. auth_token cookie (browser clients)
    2. Authorization: Bearer header (API consumers), also tried when the
       cookie is stale or invalid
    """
    tokens = []
    if auth_token:
        tokens.append(auth_token)
    if authorization and authorization.startswith("Bearer "):
        tokens.append(authorization.replace("Bearer ", "").strip())

    for token in tokens:
        if not token:
            continue
        try:
            payload = decode_jwt(token)
        except ValueError as e:
            logger.error(f"Cannot verify access token: {e}")
            return None

        if payload and payload.get("sub"):
            return CurrentUser(id=str(payload["sub"]), email=payload.get("email"))

    return None


async def get_current_user(user: Optional[CurrentUser] = Depends(get_optional_user)) -> CurrentUser:
    """Dependency for protected routes. Raises Unauthenticated (401) without a valid session."""
    if user is None:
        raise Unauthenticated()
    return user


@auth_router.get("/me")
async def get_current_user_info(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get current user information and subscription tier"""
    tier = await SubscriptionService(db, SubscriptionRepository(db)).get_user_tier(user.id)
    return success_response({
        "user_id": user.id,
        "email": user.email,
        "tier": tier,
    })
