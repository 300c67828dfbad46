"""
Page window - In-process stand-in for a browser tab's window.

post_message() structurally clones the data and delivers it to every
listener on a later event-loop iteration, never synchronously.
"""

import asyncio
import copy
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_tab_ids = itertools.count(1)


@dataclass
class MessageEvent:
    """A delivered message: the cloned data and the window that posted it."""
    data: Any
    source: Any
    origin: str


MessageListener = Callable[[MessageEvent], None]


class PageWindow:
    """One tab: an origin, its message listeners and (once) an injected provider."""

    def __init__(self, origin: str, tab_id: Optional[int] = None):
        self.origin = origin
        self.tab_id = tab_id if tab_id is not None else next(_tab_ids)
        self.provider = None
        self.relay = None
        self._listeners: list[MessageListener] = []
        self.closed = False

    def add_event_listener(self, listener: MessageListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_event_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def post_message(self, data: Any, source: Optional["PageWindow"] = None) -> None:
        """
        Queue `data` for delivery to this window's listeners.

        `source` is the posting window; it defaults to this window (same-window
        post). Another window's scripts pass themselves.
        """
        if self.closed:
            return
        event = MessageEvent(
            data=copy.deepcopy(data),
            source=source if source is not None else self,
            origin=(source or self).origin,
        )
        asyncio.get_running_loop().call_soon(self._dispatch, event)

    def _dispatch(self, event: MessageEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Message listener failed in tab {self.tab_id}")

    async def close(self) -> None:
        """Tear the tab down, notifying the wallet through the relay."""
        if self.closed:
            return
        if self.relay is not None:
            await self.relay.teardown()
        self.closed = True
        self._listeners.clear()
