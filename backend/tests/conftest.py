"""Pytest configuration and shared fixtures for backend tests."""

import itertools
import os
import sys
from typing import Any, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Add parent directory to path for app module discovery
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment BEFORE importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STRIPE_SECRET_KEY", "")
os.environ.setdefault("ORYNTH_API_KEY", "")

from app.core.database import Base
from app.core.exceptions import ProcessorError
from app.models import CreditHistory, Prompt, User
from app.models.credit_history import CreditHistoryType
from app.models.purchase import PaymentProvider
from app.services.notification_service import Notifier
from app.services.payment_gateway import (
    CheckoutRequest,
    CheckoutSession,
    PaymentGateway,
    SessionStatus,
)


@pytest_asyncio.fixture
async def db_session(tmp_path):
    """Provide a test database session.

    Uses ``TEST_DATABASE_URL`` when set (e.g. PostgreSQL inside Docker),
    otherwise a throwaway SQLite file. Tables are created fresh for each
    test and dropped afterwards.
    """
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"

    # Create a fresh engine for this test (avoids event loop conflicts)
    engine = create_async_engine(url, echo=False, future=True, poolclass=NullPool)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory creating a user and returning its id.

    Starting credits are recorded as a bonus entry so the credit history
    always sums to the balance.
    """
    counter = itertools.count(1)

    async def _make(username: Optional[str] = None, credits: int = 0) -> int:
        n = next(counter)
        username = username or f"user{n}"
        user = User(email=f"{username}@example.com", username=username, credits=credits)
        db_session.add(user)
        await db_session.flush()
        user_id = user.id
        if credits:
            db_session.add(
                CreditHistory(
                    user_id=user_id,
                    type=CreditHistoryType.BONUS,
                    amount=credits,
                    description="Starting balance",
                )
            )
        await db_session.commit()
        return user_id

    return _make


@pytest.fixture
def make_prompt(db_session: AsyncSession):
    """Factory creating a prompt and returning its id."""

    async def _make(
        owner_id: int,
        price: int = 500,
        published: bool = True,
        title: str = "Meeting notes summarizer",
    ) -> int:
        prompt = Prompt(
            owner_id=owner_id,
            title=title,
            short_description="Turns a transcript into action items",
            price_jpy=price,
            is_published=published,
        )
        db_session.add(prompt)
        await db_session.commit()
        return prompt.id

    return _make


class RecordingNotifier(Notifier):
    """Keeps every dispatched notification in memory."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def dispatch(self, user_id, notification_type, title, message, link=None, metadata=None):
        self.sent.append(
            {
                "user_id": user_id,
                "type": notification_type,
                "title": title,
                "message": message,
                "metadata": metadata,
            }
        )

    def for_user(self, user_id: int) -> list[dict[str, Any]]:
        return [n for n in self.sent if n["user_id"] == user_id]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


class FakeGateway(PaymentGateway):
    """In-memory processor: sessions are opened on demand and paid by tests."""

    def __init__(self, provider: PaymentProvider = PaymentProvider.STRIPE):
        super().__init__(timeout=1.0)
        self.provider = provider
        self.sessions: dict[str, SessionStatus] = {}
        self.requests: list[CheckoutRequest] = []
        self.refunds: list[tuple[str, int]] = []
        self.fail_checkout = False
        self.fail_refund = False
        self._ids = itertools.count(1)

    async def create_checkout(self, request, success_url, cancel_url):
        if self.fail_checkout:
            raise ProcessorError("Processor down", {"provider": self.provider.value})
        session_id = f"{self.provider.value}_sess_{next(self._ids)}"
        self.requests.append(request)
        self.sessions[session_id] = SessionStatus(
            session_id=session_id, paid=False, open=True, metadata=request.metadata
        )
        return CheckoutSession(
            session_id=session_id, redirect_url=f"https://pay.example.com/{session_id}"
        )

    async def get_session_status(self, session_id):
        return self.sessions[session_id]

    async def refund_payment(self, payment_id, amount):
        if self.fail_refund:
            raise ProcessorError("Refund rejected", {"provider": self.provider.value})
        self.refunds.append((payment_id, amount))
        return f"re_{payment_id}"

    def mark_paid(self, session_id: str, payment_id: str = "pi_123") -> None:
        status = self.sessions[session_id]
        status.paid = True
        status.open = False
        status.payment_id = payment_id


@pytest.fixture
def stripe_gateway() -> FakeGateway:
    return FakeGateway(PaymentProvider.STRIPE)


@pytest.fixture
def orynth_gateway() -> FakeGateway:
    return FakeGateway(PaymentProvider.ORYNTH)


@pytest.fixture
def gateways(stripe_gateway, orynth_gateway) -> dict:
    return {
        PaymentProvider.STRIPE: stripe_gateway,
        PaymentProvider.ORYNTH: orynth_gateway,
    }
