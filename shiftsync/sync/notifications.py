"""Notification providers — console, Teams, Slack."""

from __future__ import annotations

import abc
import logging
from typing import Any

logger = logging.getLogger(__name__)


class NotificationProvider(abc.ABC):
    """Abstract notification provider."""

    @abc.abstractmethod
    def notify(self, event: dict[str, Any]) -> bool:
        """Send a notification about a sync event.

        Parameters
        ----------
        event:
            Event dict with keys: type, user, snapshot, timestamp,
            details.

        Returns True if the notification was sent successfully.
        """

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Return True if the provider is ready to send."""


class ConsoleNotifier(NotificationProvider):
    """Always-available log notification provider."""

    def __init__(self) -> None:
        self._log: list[dict[str, Any]] = []

    def notify(self, event: dict[str, Any]) -> bool:
        self._log.append(event)
        logger.info("%s", format_event(event))
        return True

    def is_available(self) -> bool:
        return True

    @property
    def log(self) -> list[dict[str, Any]]:
        """Copy of every event received, oldest first."""
        return list(self._log)


class _WebhookNotifier(NotificationProvider):
    name = "webhook"

    def __init__(self, webhook_url: str | None = None, timeout: float = 10) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout

    def is_available(self) -> bool:
        if not self._webhook_url:
            return False
        try:
            import requests  # noqa: F401
            return True
        except ImportError:
            return False

    def build_payload(self, event: dict[str, Any]) -> dict[str, Any]:
        return {"text": format_event(event)}

    def notify(self, event: dict[str, Any]) -> bool:
        if not self.is_available():
            logger.warning("%s notifier unavailable, skipping.", self.name)
            return False

        try:
            import requests

            resp = requests.post(
                self._webhook_url, json=self.build_payload(event), timeout=self._timeout,
            )
            if not resp.ok:
                logger.warning(
                    "%s notification rejected: HTTP %s %s",
                    self.name, resp.status_code, resp.text[:200],
                )
            return resp.ok
        except requests.RequestException as exc:
            logger.warning("%s notification failed: %s", self.name, exc)
            return False


class TeamsNotifier(_WebhookNotifier):
    """Microsoft Teams incoming-webhook provider. Sends an Adaptive Card."""

    name = "Teams"

    def build_payload(self, event: dict[str, Any]) -> dict[str, Any]:
        body: list[dict[str, Any]] = [
            {
                "type": "TextBlock",
                "text": f"Schedule {event.get('type', 'update')}",
                "weight": "Bolder",
                "size": "Large",
                "wrap": True,
            },
            {
                "type": "TextBlock",
                "text": format_event(event),
                "wrap": True,
                "spacing": "Small",
            },
        ]
        if event.get("snapshot"):
            body.append({
                "type": "TextBlock",
                "text": f"Snapshot: {event['snapshot']}",
                "isSubtle": True,
                "wrap": True,
            })
        return {
            "type": "message",
            "attachments": [
                {
                    "contentType": "application/vnd.microsoft.card.adaptive",
                    "contentUrl": None,
                    "content": {
                        "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
                        "type": "AdaptiveCard",
                        "version": "1.4",
                        "body": body,
                    },
                }
            ],
        }


class SlackNotifier(_WebhookNotifier):
    """Slack incoming-webhook provider."""

    name = "Slack"


def format_event(event: dict[str, Any]) -> str:
    """Format an event dict into a readable notification message."""
    event_type = event.get("type", "unknown")
    user = event.get("user", "")
    snapshot = event.get("snapshot", "")
    details = event.get("details", "")

    parts = [f"shiftsync {event_type}"]
    if user:
        parts.append(f"by {user}")
    if snapshot:
        parts.append(f"({snapshot})")
    message = " ".join(parts)
    return f"{message}: {details}" if details else message
