"""
Relay - Bridges page-window messages to the wallet service and back.

Only same-window request envelopes are handled; anything else posted to the
window is ignored. Results are re-wrapped with the page's correlation id and
only whitelisted fields are copied across. A cancel envelope for an id the
page gave up on cancels the work still running for it; no response follows.
"""

import asyncio
import logging
from typing import Optional

from services import Operation, Sender
from .channel import ServiceChannel
from .protocol import (
    FOREIGN_SENDER,
    METHOD_CONNECT,
    METHOD_DISCONNECT,
    METHOD_SIGN_AND_SEND,
    METHOD_SIGN_TRANSACTION,
    UNKNOWN_METHOD,
    error_result,
    event_envelope,
    is_cancel,
    is_request,
    response_envelope,
)
from .window import MessageEvent, PageWindow

logger = logging.getLogger(__name__)

METHOD_OPERATIONS = {
    METHOD_CONNECT: Operation.CONNECT_WALLET,
    METHOD_DISCONNECT: Operation.DISCONNECT_WALLET,
    METHOD_SIGN_TRANSACTION: Operation.SIGN_TRANSACTION,
}


class Relay:
    """Content-script side of one tab."""

    def __init__(self, window: PageWindow, channel: ServiceChannel):
        self.window = window
        self.channel = channel
        self.sender = Sender(origin=window.origin, tab_id=window.tab_id)
        self._tasks: set[asyncio.Task] = set()
        # correlationId -> task still working on it
        self._inflight: dict[str, asyncio.Task] = {}
        self._disconnect_events = None
        self.started = False

    def start(self) -> None:
        if self.started:
            return
        self.window.add_event_listener(self._on_message)
        self._disconnect_events = self.channel.connect_events(self.sender, self._on_service_event)
        self.started = True

    async def teardown(self) -> None:
        """Stop relaying and tell the service the tab is going away (best effort)."""
        if not self.started:
            return
        self.started = False
        self.window.remove_event_listener(self._on_message)
        if self._disconnect_events is not None:
            self._disconnect_events()
            self._disconnect_events = None

        try:
            await self.channel.send_message({"operation": Operation.TAB_CLOSING.value}, self.sender)
        except Exception as e:
            logger.warning(f"Tab closing notification failed for {self.sender.origin}: {e}")

    # ============================================
    # Page -> Service
    # ============================================

    def _on_message(self, event: MessageEvent) -> None:
        data = event.data
        if is_cancel(data):
            if event.source is self.window:
                self._cancel(data.get("correlationId"))
            return
        if not is_request(data):
            return
        task = asyncio.get_running_loop().create_task(self._handle_request(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        correlation_id = data.get("correlationId")
        if isinstance(correlation_id, str) and correlation_id not in self._inflight:
            self._inflight[correlation_id] = task
            task.add_done_callback(lambda _: self._inflight.pop(correlation_id, None))

    def _cancel(self, correlation_id) -> None:
        """Abandon the work for a request the page stopped waiting for."""
        task = self._inflight.pop(correlation_id, None)
        if task is not None and not task.done():
            task.cancel()
            logger.info(f"Cancelled {correlation_id} in tab {self.window.tab_id}")

    async def _handle_request(self, event: MessageEvent) -> None:
        data = event.data
        method = data.get("method")
        correlation_id = data.get("correlationId")

        try:
            result = await self._dispatch(event, method, correlation_id, data.get("payload"))
        except Exception as e:
            logger.exception(f"Relay failed handling {method}")
            result = {"success": False, "error": str(e)}

        self.window.post_message(response_envelope(method, correlation_id, result))

    async def _dispatch(self, event: MessageEvent, method: Optional[str], correlation_id,
                        payload) -> dict:
        if event.source is not self.window:
            logger.warning(f"Dropped {method} from a foreign window in tab {self.window.tab_id}")
            return error_result("Sender is not the same window", FOREIGN_SENDER)

        if not isinstance(payload, dict):
            payload = {}
        # The correlation id doubles as the approval id
        payload = {**payload, "requestId": correlation_id if isinstance(correlation_id, str) else None}

        if method == METHOD_SIGN_AND_SEND:
            return await self._sign_and_send(payload)

        operation = METHOD_OPERATIONS.get(method)
        if operation is None:
            return error_result("Unknown method", UNKNOWN_METHOD)
        return await self.channel.send_message({**payload, "operation": operation.value}, self.sender)

    async def _sign_and_send(self, payload: dict) -> dict:
        """Sign with a fresh blockhash, then submit. A failed submit never returns the signed bytes."""
        signed = await self.channel.send_message(
            {**payload, "operation": Operation.SIGN_TRANSACTION.value, "refreshBlockhash": True},
            self.sender,
        )
        if not signed.get("success"):
            return signed

        sent = await self.channel.send_message(
            {
                "operation": Operation.SEND_TRANSACTION.value,
                "signedTransaction": signed.get("signedTransaction"),
            },
            self.sender,
        )
        if not sent.get("success"):
            return {k: v for k, v in sent.items() if k != "signedTransaction"}
        return {"success": True, "signature": sent.get("signature")}

    # ============================================
    # Service -> Page
    # ============================================

    def _on_service_event(self, event: str, data: dict) -> None:
        if self.started:
            self.window.post_message(event_envelope(event, data))
