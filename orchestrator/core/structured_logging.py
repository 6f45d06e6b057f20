"""Structured logging helpers (PII-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    org_id: UUID | str | None = None,
    rule_id: UUID | str | None = None,
    contact_id: UUID | str | None = None,
    execution_id: UUID | str | None = None,
    campaign_id: UUID | str | None = None,
    recipient_id: UUID | str | None = None,
    message_id: UUID | str | None = None,
    sweep_id: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (identifiers only)."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if rule_id:
        context["rule_id"] = str(rule_id)
    if contact_id:
        context["contact_id"] = str(contact_id)
    if execution_id:
        context["execution_id"] = str(execution_id)
    if campaign_id:
        context["campaign_id"] = str(campaign_id)
    if recipient_id:
        context["recipient_id"] = str(recipient_id)
    if message_id:
        context["message_id"] = str(message_id)
    if sweep_id:
        context["sweep_id"] = sweep_id
    return context


def mask_address(address: str | None) -> str:
    """Mask an email address or phone number for logs."""
    if not address:
        return ""
    if "@" in address:
        local, _, domain = address.partition("@")
        prefix = local[:3] if local else ""
        return f"{prefix}...@{domain}"
    digits = "".join(ch for ch in address if ch.isdigit())
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"
