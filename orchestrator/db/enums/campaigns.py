"""Campaign-related enums."""

from enum import Enum


class CampaignStatus(str, Enum):
    """Status of a campaign."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RecipientStatus(str, Enum):
    """Status of a campaign recipient.

    A failed attempt lands in RETRYING or PERMANENTLY_FAILED directly; there is
    no separate resting "failed" state.
    """

    PENDING = "pending"
    SENT = "sent"
    RETRYING = "retrying"
    PERMANENTLY_FAILED = "permanently_failed"
    CANCELLED = "cancelled"


RECIPIENT_TERMINAL_STATUSES = frozenset(
    {
        RecipientStatus.SENT.value,
        RecipientStatus.PERMANENTLY_FAILED.value,
        RecipientStatus.CANCELLED.value,
    }
)

# Statuses the sweep may claim for a send attempt
RECIPIENT_SENDABLE_STATUSES = frozenset(
    {
        RecipientStatus.PENDING.value,
        RecipientStatus.RETRYING.value,
    }
)

CAMPAIGN_TERMINAL_STATUSES = frozenset(
    {
        CampaignStatus.COMPLETED.value,
        CampaignStatus.CANCELLED.value,
        CampaignStatus.FAILED.value,
    }
)
