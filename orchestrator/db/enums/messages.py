"""Channel and message enums."""

from enum import Enum


class Channel(str, Enum):
    """Delivery channel."""

    EMAIL = "email"
    WHATSAPP = "whatsapp"


class MessageStatus(str, Enum):
    """Status of an individually scheduled message."""

    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EngagementKind(str, Enum):
    OPEN = "open"
    CLICK = "click"


class ProviderEventType(str, Enum):
    """Engagement callbacks reported by channel providers."""

    OPEN = "open"
    CLICK = "click"
    BOUNCE = "bounce"
    COMPLAINT = "complaint"


class SuppressionReason(str, Enum):
    BOUNCE = "bounce"
    COMPLAINT = "complaint"
    MANUAL = "manual"
