"""Channel senders - the outbound edge of the orchestrator.

Each channel has one sender implementing `ChannelSender`. Senders raise
`ChannelDeliveryError` for failures worth retrying and
`PermanentDeliveryFailure` when the provider rejects the message for good.
Without provider credentials a `DryRunSender` logs instead of sending.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

import httpx

from orchestrator.core.config import settings
from orchestrator.core.structured_logging import mask_address
from orchestrator.db.enums import Channel

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
PERMANENT_STATUSES = {400, 404, 410, 422}
HTTP_MAX_ATTEMPTS = 3
HTTP_RETRY_BASE_DELAY = 0.5
HTTP_RETRY_MAX_DELAY = 4.0


class ChannelDeliveryError(Exception):
    """Transient delivery failure; the attempt may be retried."""

    pass


class PermanentDeliveryFailure(ChannelDeliveryError):
    """The provider will never accept this message."""

    pass


@dataclass(frozen=True)
class OutboundMessage:
    channel: str
    to: str
    body: str
    subject: str | None = None
    # Stable per attempt target so provider-side dedupe survives our retries
    idempotency_key: str | None = None


@dataclass(frozen=True)
class SendResult:
    provider_message_id: str | None


class ChannelSender(Protocol):
    channel: str

    async def send(self, message: OutboundMessage) -> SendResult:
        ...


def _retry_delay(attempt: int, response: httpx.Response | None = None) -> float:
    if response is not None:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return min(float(retry_after), HTTP_RETRY_MAX_DELAY)
    delay = min(HTTP_RETRY_MAX_DELAY, HTTP_RETRY_BASE_DELAY * (2**attempt))
    return delay + random.uniform(0, delay / 2)


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = HTTP_MAX_ATTEMPTS,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff on network errors and retryable statuses."""
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise ChannelDeliveryError(f"Network error: {type(exc).__name__}") from exc
            logger.warning("Provider request failed, retrying", exc_info=exc)
            await asyncio.sleep(_retry_delay(attempt))
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            logger.warning("Provider returned %s, retrying", response.status_code)
            await asyncio.sleep(_retry_delay(attempt, response))
            continue

        return response

    return response


def _raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    if response.is_success:
        return
    detail = response.text[:200]
    message = f"{provider} returned {response.status_code}: {detail}"
    if response.status_code in PERMANENT_STATUSES:
        raise PermanentDeliveryFailure(message)
    raise ChannelDeliveryError(message)


class DryRunSender:
    """Logs instead of sending; used when a channel has no credentials."""

    def __init__(self, channel: str):
        self.channel = channel

    async def send(self, message: OutboundMessage) -> SendResult:
        logger.info(
            "[DRY RUN] %s send skipped for %s", self.channel, mask_address(message.to)
        )
        return SendResult(provider_message_id=f"dry-run-{uuid.uuid4()}")


class ResendEmailSender:
    """Sends email through the Resend API."""

    channel = Channel.EMAIL.value

    def __init__(
        self,
        api_key: str,
        from_address: str,
        base_url: str = "https://api.resend.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def send(self, message: OutboundMessage) -> SendResult:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if message.idempotency_key:
            headers["Idempotency-Key"] = message.idempotency_key
        payload = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject or "",
            "html": message.body,
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await request_with_retries(
                lambda: client.post(f"{self.base_url}/emails", json=payload, headers=headers)
            )

        _raise_for_provider_status(response, "Resend")
        provider_id = response.json().get("id")
        logger.info("Email sent to %s message_id=%s", mask_address(message.to), provider_id)
        return SendResult(provider_message_id=provider_id)


class GupshupWhatsAppSender:
    """Sends WhatsApp text messages through the Gupshup API."""

    channel = Channel.WHATSAPP.value

    def __init__(
        self,
        api_key: str,
        source_number: str,
        app_name: str,
        base_url: str = "https://api.gupshup.io",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.source_number = source_number
        self.app_name = app_name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def send(self, message: OutboundMessage) -> SendResult:
        destination = "".join(ch for ch in message.to if ch.isdigit())
        if not destination:
            raise PermanentDeliveryFailure("Invalid WhatsApp number")
        form = {
            "channel": "whatsapp",
            "source": self.source_number,
            "destination": destination,
            "src.name": self.app_name,
            "message": json.dumps({"type": "text", "text": message.body}),
        }
        headers = {"apikey": self.api_key}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await request_with_retries(
                lambda: client.post(f"{self.base_url}/wa/api/v1/msg", data=form, headers=headers)
            )

        _raise_for_provider_status(response, "Gupshup")
        body = response.json()
        if body.get("status") not in ("submitted", "success"):
            raise ChannelDeliveryError(f"Gupshup rejected message: {body.get('message', 'unknown')}")
        provider_id = body.get("messageId")
        logger.info("WhatsApp sent to %s message_id=%s", mask_address(message.to), provider_id)
        return SendResult(provider_message_id=provider_id)


_senders: dict[str, ChannelSender] = {}


def _default_sender(channel: str) -> ChannelSender:
    if channel == Channel.EMAIL.value and settings.RESEND_API_KEY:
        return ResendEmailSender(
            api_key=settings.RESEND_API_KEY,
            from_address=settings.EMAIL_FROM,
            base_url=settings.RESEND_API_BASE,
            timeout=settings.CHANNEL_TIMEOUT_SECONDS,
        )
    if channel == Channel.WHATSAPP.value and settings.GUPSHUP_API_KEY:
        return GupshupWhatsAppSender(
            api_key=settings.GUPSHUP_API_KEY,
            source_number=settings.GUPSHUP_SOURCE_NUMBER,
            app_name=settings.GUPSHUP_APP_NAME,
            base_url=settings.GUPSHUP_API_BASE,
            timeout=settings.CHANNEL_TIMEOUT_SECONDS,
        )
    return DryRunSender(channel)


def get_sender(channel: str) -> ChannelSender:
    """Return the sender registered for a channel, building the default on first use."""
    channel = Channel(channel).value
    sender = _senders.get(channel)
    if sender is None:
        sender = _default_sender(channel)
        if isinstance(sender, DryRunSender):
            logger.warning("No credentials for %s channel - messages will be logged, not sent", channel)
        _senders[channel] = sender
    return sender


def register_sender(channel: str, sender: ChannelSender) -> None:
    _senders[Channel(channel).value] = sender


def reset_senders() -> None:
    _senders.clear()
