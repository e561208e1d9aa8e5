"""
Pytest configuration and fixtures for testing
"""
import hashlib
import hmac
import json
import os
import time

# Settings are read once at import time, so the environment must be ready first
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRO_PRICE_ID", "price_pro_monthly")
os.environ.setdefault("STRIPE_PRO_YEARLY_PRICE_ID", "price_pro_yearly")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from auth_utils import create_jwt
from database import Base, get_db

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


@pytest.fixture
async def test_engine(tmp_path):
    """
    Fresh SQLite database file per test, with all tables created.
    A file (rather than :memory:) lets every connection see the same data.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_db(session_factory):
    """Isolated AsyncSession for service and repository tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def async_client(session_factory):
    """
    Async HTTP client against the app, with get_db pointed at the test database.
    """
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def auth_headers(user_id: str = "user-1", email: str = "user-1@example.com") -> dict:
    return {"Authorization": f"Bearer {create_jwt(user_id, email)}"}


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test") -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe does (HMAC-SHA256 over "t.payload")."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def signed_webhook(event: dict, secret: str = WEBHOOK_SECRET):
    """Return (body, headers) for posting an event to the webhook endpoint."""
    body = json.dumps(event)
    return body, {
        "Content-Type": "application/json",
        "Stripe-Signature": sign_payload(body, secret),
    }
