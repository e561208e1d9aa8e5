"""
Authentication utilities: access token verification for the hosted auth provider
"""

import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import settings

# JWT configuration
ALGORITHM = "HS256"


def decode_jwt(token: str) -> Optional[dict]:
    """Decode an access token. Returns None if invalid or expired."""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot decode JWT token.")

    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[ALGORITHM],
            audience=settings.jwt_audience or None,
            options={"verify_aud": bool(settings.jwt_audience)},
        )
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def create_jwt(user_id: str, email: Optional[str] = None, expires_in: timedelta = timedelta(hours=1)) -> str:
    """
    Mint an access token shaped like the auth provider's.
    Used by tests and local development; production tokens come from the provider.
    """
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot create JWT token.")

    payload = {
        "sub": user_id,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    if email:
        payload["email"] = email
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)
