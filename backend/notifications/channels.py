"""Notification senders used by EMAIL / SMS nodes.

Delivery providers live outside this service. The executor only talks to
``NotificationSender.send(channel, content, recipient)``; which sender is
wired depends on configuration:

- ``LogOnlyNotificationSender``: default, records the message in the log
- ``WebhookRelaySender``: POSTs the resolved message to a relay endpoint
  (the organization's mail/SMS gateway) with httpx
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class NotificationChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"


@dataclass
class SendResult:
    """Result of a delivery attempt."""
    success: bool
    channel: NotificationChannel
    recipient: str
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    delivered_at: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "channel": self.channel.value,
            "recipient": self.recipient,
            "provider_message_id": self.provider_message_id,
            "error": self.error,
            "delivered_at": self.delivered_at,
        }


# ─── Base Sender ──────────────────────────────────────────────

class NotificationSender(ABC):
    """Abstract delivery boundary."""

    @abstractmethod
    async def send(
        self,
        channel: NotificationChannel,
        content: dict[str, Any],
        recipient: str,
    ) -> SendResult:
        """Deliver ``content`` ({subject, html_body, message}) to ``recipient``."""
        ...


# ─── Log-only Sender ──────────────────────────────────────────

class LogOnlyNotificationSender(NotificationSender):
    """Records messages instead of delivering them."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def send(self, channel, content, recipient) -> SendResult:
        message_id = f"log-{uuid4().hex[:12]}"
        self.sent.append(
            {"channel": channel, "content": content, "recipient": recipient, "id": message_id}
        )
        logger.info(
            f"{channel.value} to {recipient}: "
            f"{content.get('subject') or (content.get('message') or '')[:80]}"
        )
        return SendResult(
            success=True,
            channel=channel,
            recipient=recipient,
            provider_message_id=message_id,
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )


# ─── Webhook Relay Sender ─────────────────────────────────────

class WebhookRelaySender(NotificationSender):
    """Hand messages to an HTTP relay.

    The relay answers with JSON ``{"id": "<provider message id>"}``.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[dict] = None,
        timeout: float = 15,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout
        self._transport = transport

    async def send(self, channel, content, recipient) -> SendResult:
        payload = {
            "channel": channel.value,
            "recipient": recipient,
            "subject": content.get("subject"),
            "html_body": content.get("html_body"),
            "message": content.get("message"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        headers = {
            "Content-Type": "application/json",
            "X-Workflow-Event": "notification",
            **self.headers,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Notification relay failed: {e}")
            return SendResult(
                success=False,
                channel=channel,
                recipient=recipient,
                error=str(e),
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        provider_id = body.get("id") if isinstance(body, dict) else None
        return SendResult(
            success=True,
            channel=channel,
            recipient=recipient,
            provider_message_id=provider_id,
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )


# ─── Factory ───────────────────────────────────────────────────

def get_notification_sender() -> NotificationSender:
    """Sender selected by settings."""
    settings = get_settings()
    if settings.NOTIFICATION_RELAY_URL:
        return WebhookRelaySender(
            settings.NOTIFICATION_RELAY_URL,
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
        )
    return LogOnlyNotificationSender()
