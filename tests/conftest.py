"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database per test (file-backed so sweeps can open their own sessions)
- Organization, contact, and rule factories
- A recording channel sender registered for every channel
- HTTPX AsyncClient bound to the app with the tenant header set
"""
import asyncio
import os
import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///./orchestrator-test.db")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")

from orchestrator.core.constants import ORG_HEADER
from orchestrator.core.deps import get_db
from orchestrator.db.base import Base
from orchestrator.db.enums import Channel, TriggerType
from orchestrator.db.models import AutomationRule, Contact, Organization
from orchestrator.main import app
from orchestrator.services import business_hours_service
from orchestrator.services.channel_senders import (
    OutboundMessage,
    SendResult,
    register_sender,
    reset_senders,
)

UTC = timezone.utc

# 2024-01-08 is a Monday, 2024-01-06 a Saturday
MONDAY_10AM = datetime(2024, 1, 8, 10, 0, tzinfo=UTC)
SATURDAY_10AM = datetime(2024, 1, 6, 10, 0, tzinfo=UTC)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orchestrator.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    """Factory handed to sweeps; every send job opens its own session."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """UTC organization with the default Mon-Fri 09:00-17:00 schedule."""
    org = Organization(
        id=uuid.uuid4(),
        name="Test Organization",
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
        timezone="UTC",
        enforce_business_hours=True,
    )
    db.add(org)
    db.flush()
    business_hours_service.seed_default_business_hours(db, org.id)
    db.commit()
    return org


@pytest.fixture(scope="function")
def make_contact(db: Session, test_org: Organization):
    def _make(**overrides) -> Contact:
        values = {
            "organization_id": test_org.id,
            "email": f"contact-{uuid.uuid4().hex[:8]}@example.com",
            "phone": "+15551234567",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "company": "Analytical Engines",
            "custom_fields": {"plan": "pro"},
        }
        values.update(overrides)
        contact = Contact(**values)
        db.add(contact)
        db.commit()
        return contact

    return _make


@pytest.fixture(scope="function")
def test_contact(make_contact) -> Contact:
    return make_contact()


@pytest.fixture(scope="function")
def make_rule(db: Session, test_org: Organization):
    def _make(**overrides) -> AutomationRule:
        values = {
            "organization_id": test_org.id,
            "name": f"Rule {uuid.uuid4().hex[:6]}",
            "channel": Channel.EMAIL.value,
            "trigger_type": TriggerType.CONTACT_EVENT.value,
            "trigger_config": {},
            "conditions": [],
            "subject_template": "Hi {{first_name}}",
            "body_template": "Hello {{full_name}} from {{company}}",
            "ab_variants": [],
            "send_delay_minutes": 0,
            "max_retries": 3,
        }
        values.update(overrides)
        rule = AutomationRule(**values)
        db.add(rule)
        db.commit()
        return rule

    return _make


# =============================================================================
# Channel Fixtures
# =============================================================================

class FakeSender:
    """Records outbound messages; queued errors are raised by the next sends."""

    channel = "fake"

    def __init__(self):
        self.sent: list[OutboundMessage] = []
        self.errors: list[Exception] = []

    def fail_next(self, *errors: Exception) -> None:
        self.errors.extend(errors)

    async def send(self, message: OutboundMessage) -> SendResult:
        await asyncio.sleep(0)
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append(message)
        return SendResult(provider_message_id=f"fake-{len(self.sent)}")


@pytest.fixture(scope="function")
def fake_sender() -> Generator[FakeSender, None, None]:
    sender = FakeSender()
    for channel in Channel:
        register_sender(channel.value, sender)
    yield sender
    reset_senders()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, test_org: Organization) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient scoped to test_org through the tenant header."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={ORG_HEADER: str(test_org.id)},
    ) as c:
        yield c

    app.dependency_overrides.clear()
