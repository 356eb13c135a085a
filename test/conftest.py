"""
Pytest configuration and shared fixtures.

Service tests run against a throwaway SQLite file so every session gets its
own connection, the same way production sessions share Postgres.
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

import leadcatcher.compliance.models  # noqa: F401
import leadcatcher.leads.models  # noqa: F401
import leadcatcher.ledger.models  # noqa: F401
from leadcatcher.analysis.models import (
    AnalysisContext,
    Intent,
    IntentAnalysis,
    IntentClassificationError,
    IntentClassifier,
    Priority,
)
from leadcatcher.businesses.models import Business, BusinessProfile, SubscriptionStatus
from leadcatcher.shared.database import Base
from leadcatcher.telephony.mock_adapter import MockMessagingProvider

FORWARDING_NUMBER = "+15550001111"
OWNER_PHONE = "+15550009999"
CALLER = "+15557654321"
PUBLIC_BASE_URL = "https://leads.example.com"
CRON_SECRET = "cron-test-secret"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"


class FakeClassifier(IntentClassifier):
    """Returns a canned analysis (or raises) and records what it was asked."""

    def __init__(self, analysis: IntentAnalysis | None = None, fail: bool = False) -> None:
        self.analysis = analysis or IntentAnalysis(
            intent=Intent.BOOKING_REQUEST,
            priority=Priority.HIGH,
            summary="Wants a screen repair appointment",
            suggested_reply="Thanks! We can fit you in tomorrow morning.",
        )
        self.fail = fail
        self.calls: list[tuple[str, AnalysisContext]] = []

    async def classify(self, text: str, context: AnalysisContext) -> IntentAnalysis:
        self.calls.append((text, context))
        if self.fail:
            raise IntentClassificationError("classifier down")
        return self.analysis


@pytest.fixture(autouse=True)
def test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Settings are re-read per call under pytest; pin them here."""
    monkeypatch.setenv("PUBLIC_BASE_URL", PUBLIC_BASE_URL)
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", STRIPE_WEBHOOK_SECRET)
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setenv("STRIPE_PRO_PRICE_ID", "price_pro")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("TELEPHONY_PROVIDER_TYPE", "mock")
    monkeypatch.setenv("TELEPHONY_VALIDATE_SIGNATURES", "false")
    monkeypatch.setenv("TELEPHONY_WEBHOOK_BASE_URL", "")


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def provider() -> MockMessagingProvider:
    return MockMessagingProvider()


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


async def create_business(
    session_factory: async_sessionmaker[AsyncSession],
    **overrides: Any,
) -> BusinessProfile:
    """Insert a business in its own transaction and return its snapshot."""
    values: dict[str, Any] = {
        "name": "Fix-It Phones",
        "owner_phone": OWNER_PHONE,
        "forwarding_number": FORWARDING_NUMBER,
        "stripe_status": SubscriptionStatus.ACTIVE.value,
        "stripe_customer_id": "cus_test_1",
    }
    values.update(overrides)
    async with session_factory() as session:
        business = Business(**values)
        session.add(business)
        await session.commit()
        return BusinessProfile.from_model(business)


@pytest_asyncio.fixture
async def business(session_factory: async_sessionmaker[AsyncSession]) -> BusinessProfile:
    return await create_business(session_factory)


@pytest_asyncio.fixture
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    provider: MockMessagingProvider,
    classifier: FakeClassifier,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with storage, SMS and AI swapped for test doubles."""
    from leadcatcher.analysis.factory import get_intent_classifier
    from leadcatcher.main import app
    from leadcatcher.shared.database import get_db_session
    from leadcatcher.telephony.factory import get_messaging_provider

    async def _override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _override_get_db_session
    app.dependency_overrides[get_messaging_provider] = lambda: provider
    app.dependency_overrides[get_intent_classifier] = lambda: classifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def break_opt_out_lookup(engine: AsyncEngine) -> None:
    """Drop the opt-out table so every compliance lookup errors."""
    from leadcatcher.compliance.models import OptOut

    async with engine.begin() as conn:
        await conn.run_sync(OptOut.__table__.drop)
