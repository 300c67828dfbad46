"""
Service channel - In-process stand-in for the extension's runtime messaging.

Messages and responses are deep-copied in both directions so neither side can
hold a reference into the other's objects.
"""

import asyncio
import copy
from typing import Callable

from services import Sender, WalletService


class ServiceChannel:
    """Privileged channel from relays to the wallet service."""

    def __init__(self, service: WalletService):
        self.service = service

    @property
    def request_timeout(self) -> float:
        """How long pages wait for a response before giving up."""
        return self.service.settings.request_timeout_seconds

    async def send_message(self, message: dict, sender: Sender) -> dict:
        # Yield once: delivery is never synchronous
        await asyncio.sleep(0)
        response = await self.service.handle(copy.deepcopy(message), sender)
        return copy.deepcopy(response)

    def connect_events(self, sender: Sender, listener: Callable[[str, dict], None]) -> Callable[[], None]:
        """Forward service events for the sender's origin. Returns a disconnect function."""
        return self.service.add_event_listener(sender.origin, listener)
