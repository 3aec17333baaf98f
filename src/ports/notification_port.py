"""Notification port: abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Outbound chat channel. Delivery is fire-and-forget."""

    async def send_message(self, identity: str, text: str) -> None: ...
