"""
Notifier port (contracts-first).

The application layer only knows this protocol; infrastructure decides
whether a message goes through Celery, straight to a mail API, or nowhere.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol


class NotificationError(Exception):
    """Raised by notifier adapters when a message cannot be handed off."""


class Notifier(Protocol):
    """Fire-and-forget customer notification"""

    def send(self, to_address: str, subject: str, template: str, context: Mapping[str, Any]) -> None: ...


__all__ = ["Notifier", "NotificationError"]
