"""Webhook dispatcher — routes sync events to notification providers."""

from __future__ import annotations

import logging
import time
from typing import Any

from shiftsync.config_manager import SyncSettings
from shiftsync.sync.notifications import (
    ConsoleNotifier,
    NotificationProvider,
    SlackNotifier,
    TeamsNotifier,
)

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """Dispatch sync events to all configured notification providers.

    Always includes a ConsoleNotifier as the default provider. A
    failing provider is logged and skipped; it never interrupts a
    save or merge.
    """

    def __init__(self, providers: list[NotificationProvider] | None = None) -> None:
        self._console = ConsoleNotifier()
        self._providers: list[NotificationProvider] = [self._console]
        if providers:
            self._providers.extend(providers)

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> WebhookDispatcher:
        """Dispatcher with Teams/Slack providers for any configured webhook."""
        providers: list[NotificationProvider] = []
        if settings.teams_webhook:
            providers.append(TeamsNotifier(settings.teams_webhook))
        if settings.slack_webhook:
            providers.append(SlackNotifier(settings.slack_webhook))
        return cls(providers)

    def add_provider(self, provider: NotificationProvider) -> None:
        """Register an additional notification provider."""
        self._providers.append(provider)

    @property
    def console(self) -> ConsoleNotifier:
        """The built-in console notifier."""
        return self._console

    def on_save(self, user: str, snapshot: str = "", details: str = "") -> None:
        self._dispatch(_make_event("save", user, snapshot, details))

    def on_conflict(self, user: str, snapshot: str = "", details: str = "") -> None:
        self._dispatch(_make_event("conflict", user, snapshot, details))

    def on_merge(self, user: str, snapshot: str = "", details: str = "") -> None:
        self._dispatch(_make_event("merge", user, snapshot, details))

    def on_restore(self, user: str, snapshot: str = "", details: str = "") -> None:
        self._dispatch(_make_event("restore", user, snapshot, details))

    def _dispatch(self, event: dict[str, Any]) -> None:
        """Send event to all available providers."""
        for provider in self._providers:
            if provider.is_available():
                try:
                    provider.notify(event)
                except Exception as exc:
                    logger.warning(
                        "Notification provider %s failed: %s",
                        type(provider).__name__,
                        exc,
                    )


def _make_event(event_type: str, user: str, snapshot: str, details: str) -> dict[str, Any]:
    return {
        "type": event_type,
        "user": user,
        "snapshot": snapshot,
        "timestamp": time.time(),
        "details": details,
    }
