"""
Tests for provider engagement callbacks.
"""

from datetime import datetime, timezone

import pytest

from orchestrator.core.config import settings
from orchestrator.core.constants import WEBHOOK_SECRET_HEADER
from orchestrator.db.models import CampaignRecipient, EngagementPattern
from orchestrator.schemas.campaign import CampaignCreate, CampaignEnqueueRequest, RecipientInput
from orchestrator.schemas.scheduling import EngagementEvent
from orchestrator.services import (
    campaign_service,
    contact_service,
    engagement_service,
    scheduler_service,
    send_executor,
)
from orchestrator.services.channel_senders import SendResult

UTC = timezone.utc
MONDAY_10AM = datetime(2024, 1, 8, 10, 0, tzinfo=UTC)
SECRET = "engagement-secret"


@pytest.fixture(scope="function")
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_SECRET", SECRET)
    return SECRET


@pytest.fixture(scope="function")
def sent_recipient(db, test_org) -> CampaignRecipient:
    """A campaign recipient delivered with provider id prov-1."""
    campaign = campaign_service.create_campaign(
        db,
        test_org.id,
        CampaignCreate(name="Launch", subject_template="News", body_template="Hello"),
    )
    campaign_service.enqueue_campaign(
        db,
        test_org.id,
        campaign.id,
        CampaignEnqueueRequest(
            recipients=[RecipientInput(address="reader@example.com")],
            scheduled_at=MONDAY_10AM,
        ),
        now=MONDAY_10AM,
    )
    scheduler_service.start_due_campaigns(db, MONDAY_10AM)
    db.commit()

    recipient = db.query(CampaignRecipient).filter(CampaignRecipient.campaign_id == campaign.id).one()
    token = scheduler_service.claim_recipient(db, recipient.id, MONDAY_10AM)
    db.commit()
    send_executor.record_recipient_outcome(
        db, recipient.id, token, SendResult(provider_message_id="prov-1"), MONDAY_10AM
    )
    db.refresh(recipient)
    return recipient


# =============================================================================
# Secret checks
# =============================================================================

def test_verify_webhook_secret(webhook_secret):
    assert engagement_service.verify_webhook_secret(webhook_secret)
    assert not engagement_service.verify_webhook_secret("wrong")
    assert not engagement_service.verify_webhook_secret(None)


def test_unset_secret_rejects_everything(monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_SECRET", "")
    assert not engagement_service.verify_webhook_secret("")
    assert not engagement_service.verify_webhook_secret("anything")


# =============================================================================
# Event handling
# =============================================================================

def test_open_updates_recipient_and_pattern(db, test_org, sent_recipient):
    opened_at = datetime(2024, 1, 9, 14, 5, tzinfo=UTC)
    target = engagement_service.handle_provider_event(
        db, EngagementEvent(event_type="open", provider_message_id="prov-1", occurred_at=opened_at)
    )
    engagement_service.handle_provider_event(
        db,
        EngagementEvent(
            event_type="open",
            provider_message_id="prov-1",
            occurred_at=datetime(2024, 1, 9, 16, 0, tzinfo=UTC),
        ),
    )
    db.commit()

    assert target.kind == "recipient"
    assert target.id == sent_recipient.id
    db.refresh(sent_recipient)
    assert sent_recipient.open_count == 2
    # First open wins
    assert sent_recipient.opened_at == opened_at

    buckets = {
        (p.day_of_week, p.hour_of_day): p.open_count
        for p in db.query(EngagementPattern).filter(
            EngagementPattern.organization_id == test_org.id
        )
    }
    assert buckets == {(2, 14): 1, (2, 16): 1}


def test_click_updates_recipient(db, sent_recipient):
    engagement_service.handle_provider_event(
        db, EngagementEvent(event_type="click", provider_message_id="prov-1")
    )
    db.commit()

    db.refresh(sent_recipient)
    assert sent_recipient.click_count == 1
    assert sent_recipient.clicked_at is not None


def test_bounce_suppresses_address(db, test_org, sent_recipient):
    engagement_service.handle_provider_event(
        db, EngagementEvent(event_type="bounce", provider_message_id="prov-1")
    )
    db.commit()

    assert contact_service.is_suppressed(db, test_org.id, "email", "Reader@Example.com")
    db.refresh(sent_recipient)
    assert sent_recipient.error_message == "Provider reported bounce"
    assert sent_recipient.status == "sent"


def test_unknown_provider_id_is_ignored(db, sent_recipient):
    assert (
        engagement_service.handle_provider_event(
            db, EngagementEvent(event_type="open", provider_message_id="nope")
        )
        is None
    )


def test_unknown_event_type_raises(db, sent_recipient):
    with pytest.raises(ValueError):
        engagement_service.handle_provider_event(
            db, EngagementEvent(event_type="delivered", provider_message_id="prov-1")
        )


# =============================================================================
# Webhook endpoint
# =============================================================================

@pytest.mark.asyncio
async def test_webhook_requires_secret(client, webhook_secret, sent_recipient):
    payload = {"event_type": "open", "provider_message_id": "prov-1"}

    response = await client.post("/webhooks/engagement", json=payload)
    assert response.status_code == 401

    response = await client.post(
        "/webhooks/engagement", json=payload, headers={WEBHOOK_SECRET_HEADER: "wrong"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_records_event(client, db, webhook_secret, sent_recipient):
    response = await client.post(
        "/webhooks/engagement",
        json={"event_type": "click", "provider_message_id": "prov-1"},
        headers={WEBHOOK_SECRET_HEADER: webhook_secret},
    )

    assert response.status_code == 202
    assert response.json() == {"matched": True, "kind": "recipient", "id": str(sent_recipient.id)}
    db.refresh(sent_recipient)
    assert sent_recipient.click_count == 1


@pytest.mark.asyncio
async def test_webhook_unknown_id_and_type(client, webhook_secret, sent_recipient):
    headers = {WEBHOOK_SECRET_HEADER: webhook_secret}

    response = await client.post(
        "/webhooks/engagement",
        json={"event_type": "open", "provider_message_id": "missing"},
        headers=headers,
    )
    assert response.status_code == 202
    assert response.json() == {"matched": False}

    response = await client.post(
        "/webhooks/engagement",
        json={"event_type": "delivered", "provider_message_id": "prov-1"},
        headers=headers,
    )
    assert response.status_code == 400
