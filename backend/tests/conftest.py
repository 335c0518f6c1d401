"""
Pytest configuration and shared fixtures for backend tests.
"""

import json
import os
import sys
from pathlib import Path

# Test configuration must be in place before settings are first loaded
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("AUTH_JWT_SECRET", "test-identity-provider-secret-0123456789")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRICE_ID_PRO_MONTHLY", "price_pro_monthly")
os.environ.setdefault("STRIPE_PRICE_ID_PRO_YEARLY", "price_pro_yearly")
os.environ.setdefault("STRIPE_PRICE_ID_ELITE_MONTHLY", "price_elite_monthly")
os.environ.setdefault("STRIPE_PRICE_ID_ELITE_YEARLY", "price_elite_yearly")
os.environ.setdefault("ANTHROPIC_API_KEY", "")

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from datetime import datetime, timezone
from typing import AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from adapters.ai.coach_adapter import FocusCoachService
from adapters.payments.stripe_adapter import StripeAdapter, sign_webhook_payload
from core.security import TokenService
from infrastructure.config import get_settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import Base, User

settings = get_settings()
token_service = TokenService(
    secret_key=settings.auth_jwt_secret,
    algorithm=settings.auth_jwt_algorithm,
    audience=settings.auth_jwt_audience,
)

WEBHOOK_SECRET = "whsec_test_secret"

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session
        await session.rollback()


async def _create_user(db_session: AsyncSession, **overrides) -> User:
    values = {
        "id": str(uuid4()),
        "email": f"{uuid4().hex[:8]}@example.com",
        "full_name": "Test User",
        "subscription_tier": "free",
        "ai_requests_count": 0,
        "ai_requests_reset_at": datetime.now(timezone.utc),
    }
    values.update(overrides)
    user = User(**values)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable:
    """Factory for users with arbitrary billing / usage state."""

    async def _make(**overrides) -> User:
        return await _create_user(db_session, **overrides)

    return _make


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Free-tier user with no usage this month."""
    return await _create_user(db_session, email="test@example.com")


@pytest.fixture
async def subscribed_user(db_session: AsyncSession) -> User:
    """Pro user with an active Stripe subscription."""
    return await _create_user(
        db_session,
        email="subscribed@example.com",
        stripe_customer_id="cus_test123",
        stripe_subscription_id="sub_test123",
        subscription_tier="pro",
        subscription_status="active",
    )


def make_auth_headers(user_id: str) -> dict:
    access_token = token_service.create_access_token(user_id=user_id)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user."""
    return make_auth_headers(test_user.id)


@pytest.fixture
def stripe_adapter() -> StripeAdapter:
    """
    Stripe adapter with test credentials.

    Tests replace the network-facing methods (get_subscription,
    create_customer, ...) with AsyncMocks as needed.
    """
    return StripeAdapter(
        secret_key="sk_test_dummy",
        webhook_secret=WEBHOOK_SECRET,
        api_base_url="https://api.stripe.test/v1",
    )


@pytest.fixture
def coach_service() -> MagicMock:
    """Coaching service double that never reaches Anthropic."""
    service = MagicMock(spec=FocusCoachService)
    service.coach = AsyncMock(return_value="Break it into three 30-minute blocks.")
    return service


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    stripe_adapter: StripeAdapter,
    coach_service: MagicMock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here so the environment above is applied first
    from main import app
    from api.routes.billing import get_stripe_adapter
    from api.routes.coach import get_coach_service

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_adapter] = lambda: stripe_adapter
    app.dependency_overrides[get_coach_service] = lambda: coach_service

    # Reset rate limiter state between tests to prevent cross-test 429s
    if hasattr(app.state, "limiter"):
        try:
            app.state.limiter.reset()
        except Exception:
            pass

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Billing Test Fixtures
# ============================================================================

def build_event(event_type: str, obj: dict, event_id: str | None = None) -> dict:
    """Stripe event envelope around a ``data.object`` snapshot."""
    return {
        "id": event_id or f"evt_{uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": int(datetime.now(timezone.utc).timestamp()),
        "data": {"object": obj},
    }


def subscription_object(
    customer_id: str = "cus_test123",
    subscription_id: str = "sub_test123",
    status: str = "active",
    price_id: str = "price_pro_monthly",
) -> dict:
    """Minimal Stripe subscription object."""
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "current_period_end": 1893456000,
        "items": {
            "object": "list",
            "data": [{"id": "si_test", "price": {"id": price_id, "object": "price"}}],
        },
    }


@pytest.fixture
def signed_webhook() -> Callable[[dict], tuple[bytes, dict]]:
    """Serialize an event and build a valid Stripe-Signature header for it."""

    def _sign(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict]:
        body = json.dumps(event).encode()
        headers = {
            "Stripe-Signature": sign_webhook_payload(body, secret),
            "Content-Type": "application/json",
        }
        return body, headers

    return _sign


@pytest.fixture
def mock_stripe_api():
    """
    Mock httpx client for Stripe API calls.

    Usage:
        mock_stripe_api.post.return_value = mock_response
    """
    from unittest.mock import patch

    with patch("httpx.AsyncClient") as mock_client:
        mock_instance = AsyncMock()
        mock_client.return_value.__aenter__.return_value = mock_instance
        yield mock_instance


@pytest.fixture
def event_factory() -> Callable[..., dict]:
    """``build_event`` as a fixture."""
    return build_event


@pytest.fixture
def subscription_payload() -> Callable[..., dict]:
    """``subscription_object`` as a fixture."""
    return subscription_object


@pytest.fixture
def auth_headers_for() -> Callable[[str], dict]:
    """Bearer headers for an arbitrary user id."""
    return make_auth_headers
