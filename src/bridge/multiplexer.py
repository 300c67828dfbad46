"""
Correlation multiplexer - One listener, many in-flight requests.

Every request gets an id "{method}_{counter}_{random hex}", registers a
future under that id and posts a request envelope. The single window
listener resolves futures purely by id, so responses may arrive in any order.
Only responses posted by the window itself are accepted.

Unanswered requests are evicted after `timeout` seconds and a cancel envelope
is posted, so the relay abandons the work instead of finishing it unseen.
"""

import asyncio
import itertools
import logging
import secrets
from typing import Optional

from errors import RequestTimeoutError
from .protocol import cancel_envelope, is_response, request_envelope
from .window import MessageEvent, PageWindow

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 120.0


class CorrelationMultiplexer:
    """Request/response over a page window, matched by correlation id."""

    def __init__(self, window: PageWindow, timeout: Optional[float] = DEFAULT_REQUEST_TIMEOUT):
        self.window = window
        self.timeout = timeout
        self._counter = itertools.count(1)
        self._pending: dict[str, asyncio.Future] = {}
        window.add_event_listener(self._on_message)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def next_id(self, method: str) -> str:
        return f"{method}_{next(self._counter)}_{secrets.token_hex(4)}"

    async def request(self, method: str, payload: Optional[dict] = None) -> dict:
        """Post a request and wait for the response envelope with the same id."""
        correlation_id = self.next_id(method)
        future = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future
        self.window.post_message(request_envelope(method, correlation_id, payload))

        try:
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{method} request {correlation_id} timed out after {self.timeout}s")
            self.window.post_message(cancel_envelope(method, correlation_id))
            raise RequestTimeoutError(f"{method} timed out") from None
        finally:
            self._pending.pop(correlation_id, None)

    def _on_message(self, event: MessageEvent) -> None:
        data = event.data
        if not is_response(data) or event.source is not self.window:
            return
        future = self._pending.get(data.get("correlationId"))
        if future is None or future.done():
            # Late response for an evicted request
            return
        future.set_result(data)

    def close(self) -> None:
        """Stop listening and cancel everything still in flight."""
        self.window.remove_event_listener(self._on_message)
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()
