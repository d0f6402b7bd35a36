"""
Shared fixtures: in-memory SQLite per test, seeded users, contacts and
campaigns, and an API client with the session and collaborators overridden.
"""
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence

import jwt
import pytest
import pytest_asyncio
import pytz
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

import daily_outreach.models  # noqa: F401
from daily_outreach.api.deps import get_current_user, get_composer, get_notifier
from daily_outreach.config import settings
from daily_outreach.core.security import generate_secure_token
from daily_outreach.database import get_session
from daily_outreach.main import app
from daily_outreach.models import (
    User, Company, Contact, StrategicProfile, SenderProfile, CustomerProfile,
    OutreachPreferences, OutreachBatch, OutreachItem
)
from daily_outreach.models.outreach import BatchStatus, ItemStatus
from daily_outreach.repositories.outreach_repo import OutreachBatchRepository
from daily_outreach.services.batch_generator import batch_expires_at
from daily_outreach.services.email_composer import ComposedEmail
from daily_outreach.services.email_service import MockEmailService

# Wednesday afternoon, UTC
NOW = datetime(2025, 3, 12, 15, 0)
TODAY = date(2025, 3, 12)

SUBJECT = "Quick question for {{contact_company_name}}"
BODY = "Hi {{first_name}}, saw what {{contact_company_name}} is building."


def make_access_token(user_id, token_type: str = "access", expires_in: timedelta = timedelta(minutes=30)) -> str:
    """A bearer token shaped like the auth service's."""
    now = datetime.now(timezone.utc)
    payload = {"user_id": str(user_id), "type": token_type, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


class FakeComposer:
    """Deterministic composer that records who it wrote to."""

    def __init__(self):
        self.calls = []

    async def compose(self, contact, company, sender=None, product=None, customer=None, tone="default"):
        self.calls.append(contact.id)
        return ComposedEmail(subject=SUBJECT, body=BODY, tone=tone)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def user(session) -> User:
    user = User(email="dana@example.com", full_name="Dana Owner")
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture
def composer() -> FakeComposer:
    return FakeComposer()


@pytest.fixture
def mailer() -> MockEmailService:
    return MockEmailService()


async def create_contacts(
    session: AsyncSession,
    user_id,
    count: int,
    probabilities: Optional[Sequence[Optional[int]]] = None,
    with_email: bool = True,
    prefix: str = "Contact"
) -> List[Contact]:
    contacts = []
    for index in range(count):
        company = Company(user_id=user_id, name=f"{prefix} Co {index}")
        session.add(company)
        await session.flush()
        contact = Contact(
            user_id=user_id,
            company_id=company.id,
            name=f"Alex{index} {prefix}",
            role="Head of Sales",
            email=f"alex{index}.{prefix.lower()}@example.com" if with_email else None,
            probability=probabilities[index] if probabilities else 50
        )
        session.add(contact)
        contacts.append(contact)
    await session.commit()
    for contact in contacts:
        await session.refresh(contact)
    return contacts


@pytest.fixture
def add_contacts(session, user):
    async def _add(count: int, **kwargs) -> List[Contact]:
        return await create_contacts(session, user.id, count, **kwargs)
    return _add


@pytest_asyncio.fixture
async def campaign(session, user) -> OutreachPreferences:
    """Enabled preferences with all three profiles active, in UTC."""
    product = StrategicProfile(user_id=user.id, title="Pipeline Copilot", product_service="Sales automation")
    sender = SenderProfile(user_id=user.id, display_name="Sam Sender", company_name="Acme")
    customer = CustomerProfile(user_id=user.id, label="SaaS sales teams", pain_points="Manual prospecting")
    session.add_all([product, sender, customer])
    await session.flush()

    preferences = OutreachPreferences(
        user_id=user.id,
        enabled=True,
        schedule_days=["mon", "tue", "wed"],
        schedule_time="09:00",
        timezone="UTC",
        min_contacts_required=5,
        active_product_id=product.id,
        active_sender_profile_id=sender.id,
        active_customer_profile_id=customer.id
    )
    session.add(preferences)
    await session.commit()
    await session.refresh(preferences)
    return preferences


@pytest.fixture
def make_batch(session, user):
    """Insert a batch directly, one new contact per item status."""
    async def _make(
        statuses: Sequence[str] = (ItemStatus.PENDING,),
        batch_date: date = TODAY,
        sent_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        status: str = BatchStatus.ACTIVE,
        contacts: Optional[List[Contact]] = None
    ) -> OutreachBatch:
        if contacts is None:
            contacts = await create_contacts(
                session, user.id, len(statuses), prefix=f"Batch{batch_date:%m%d}"
            )
        batch = OutreachBatch(
            user_id=user.id,
            batch_date=batch_date,
            secure_token=generate_secure_token(),
            status=status,
            expires_at=expires_at or batch_expires_at(batch_date, pytz.utc)
        )
        items = [
            OutreachItem(
                contact_id=contact.id,
                company_id=contact.company_id,
                email_subject=SUBJECT,
                email_body=BODY,
                status=item_status,
                sent_at=(sent_at or NOW) if item_status == ItemStatus.SENT else None
            )
            for contact, item_status in zip(contacts, statuses)
        ]
        return await OutreachBatchRepository(session).create_with_items(batch, items)
    return _make


@pytest_asyncio.fixture
async def client(session, user, composer, mailer):
    async def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_composer] = lambda: composer
    app.dependency_overrides[get_notifier] = lambda: mailer

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
