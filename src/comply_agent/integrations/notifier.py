"""
Notification Backends

Defines the notifier interface that notification steps dispatch through,
plus a structured-log backend and an HTTP webhook backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

from comply_agent.config.settings import NotifierKind, Settings
from comply_agent.store.models import utcnow

logger = structlog.get_logger(__name__)


@dataclass
class SentNotification:
    """Record of a dispatched notification."""
    channel: str
    message: str
    recipients: list[str] = field(default_factory=list)
    sent_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "message": self.message,
            "recipients": self.recipients,
            "sent_at": self.sent_at,
        }


class NotificationError(Exception):
    """Raised when a backend fails to deliver a notification."""

    def __init__(
        self,
        message: str,
        channel: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.channel = channel
        self.status_code = status_code
        self.original_error = original_error


class BaseNotifier(ABC):
    """
    Abstract base class for notification backends.

    The playbook engine treats delivery as fire-and-forget: it logs and
    ignores any error raised here.
    """

    @abstractmethod
    async def notify(self, channel: str, message: str, recipients: list[str]) -> None:
        """
        Deliver a rendered message.

        Args:
            channel: Notification channel (slack, email, jira, pagerduty, webhook).
            message: Rendered message text.
            recipients: Channel-specific recipients (channels, addresses...).

        Raises:
            NotificationError: If delivery fails.
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


class LogNotifier(BaseNotifier):
    """Writes notifications to the structured log and keeps them in memory."""

    def __init__(self):
        self._sent: list[SentNotification] = []

    async def notify(self, channel: str, message: str, recipients: list[str]) -> None:
        self._sent.append(SentNotification(channel, message, list(recipients)))
        logger.info(
            "Notification dispatched",
            channel=channel,
            message=message,
            recipients=recipients,
        )

    def get_sent(self) -> list[SentNotification]:
        """Get dispatched notifications."""
        return self._sent.copy()

    def clear(self) -> None:
        self._sent.clear()


class WebhookNotifier(BaseNotifier):
    """
    Posts notifications as JSON to per-channel webhook URLs.

    Channels without a configured URL are logged and skipped.
    """

    def __init__(
        self,
        urls: dict[str, str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._urls = urls
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    def _payload(self, channel: str, message: str, recipients: list[str]) -> dict[str, Any]:
        if channel == "slack":
            payload: dict[str, Any] = {"text": message}
            if recipients:
                payload["channel"] = recipients[0]
            return payload
        return {"channel": channel, "message": message, "recipients": recipients}

    async def notify(self, channel: str, message: str, recipients: list[str]) -> None:
        url = self._urls.get(channel)
        if not url:
            logger.warning("No webhook configured for channel", channel=channel)
            return

        try:
            response = await self._client.post(url, json=self._payload(channel, message, recipients))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Webhook returned {e.response.status_code}",
                channel=channel,
                status_code=e.response.status_code,
                original_error=e,
            )
        except httpx.HTTPError as e:
            raise NotificationError(
                f"Webhook request failed: {e}",
                channel=channel,
                original_error=e,
            )

    async def close(self) -> None:
        await self._client.aclose()


def create_notifier(config: Settings) -> BaseNotifier:
    """Build the notifier selected in settings."""
    if config.notifier == NotifierKind.WEBHOOK:
        return WebhookNotifier(config.webhook_urls(), timeout=config.notify_timeout)
    return LogNotifier()
