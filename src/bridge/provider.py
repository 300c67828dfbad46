"""
Page Provider - The wallet API visible to page scripts.

Every call is a correlated request/response through the relay; nothing here
holds or sees key material. Failures come back as the matching WalletError
subclass (UserRejectedError, NoWalletError, ...).

Usage:
    provider = inject_provider(window, channel)
    address = await provider.connect()
    signed = await provider.sign_transaction(tx)
"""

import logging
from typing import Callable, Optional

from errors import error_from_response
from services import decode_transaction, encode_transaction
from .channel import ServiceChannel
from .multiplexer import DEFAULT_REQUEST_TIMEOUT, CorrelationMultiplexer
from .protocol import (
    METHOD_CONNECT,
    METHOD_DISCONNECT,
    METHOD_SIGN_AND_SEND,
    METHOD_SIGN_TRANSACTION,
    is_event,
)
from .relay import Relay
from .window import MessageEvent, PageWindow

logger = logging.getLogger(__name__)


class PageProvider:
    """Wallet capability injected into a page."""

    def __init__(self, window: PageWindow, timeout: Optional[float] = DEFAULT_REQUEST_TIMEOUT):
        self._window = window
        self._mux = CorrelationMultiplexer(window, timeout)
        self._handlers: dict[str, list[Callable]] = {}
        self.is_connected = False
        self.public_key: Optional[str] = None
        window.add_event_listener(self._on_window_message)

    # ============================================
    # Events
    # ============================================

    def on(self, event: str, handler: Callable) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: str, *args) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(*args)
            except Exception:
                logger.exception(f"Handler for '{event}' failed")

    def _on_window_message(self, event: MessageEvent) -> None:
        data = event.data
        if not is_event(data) or event.source is not self._window:
            return
        name = data.get("event")
        payload = data.get("data") or {}

        if name == "disconnect":
            if self.is_connected:
                self._set_disconnected()
            return
        if name == "accountChanged" and self.is_connected:
            self.public_key = payload.get("publicKey")
        self._emit(name, payload)

    def _set_disconnected(self) -> None:
        self.is_connected = False
        self.public_key = None
        self._emit("disconnect")

    # ============================================
    # Wallet API
    # ============================================

    async def _call(self, method: str, payload: Optional[dict] = None) -> dict:
        response = await self._mux.request(method, payload)
        if not response.get("success"):
            raise error_from_response(response)
        return response

    async def connect(self) -> str:
        """Ask the wallet for access. Returns the connected address."""
        response = await self._call(METHOD_CONNECT)
        self.public_key = response["publicKey"]
        self.is_connected = True
        self._emit("connect", self.public_key)
        return self.public_key

    async def disconnect(self) -> None:
        await self._call(METHOD_DISCONNECT)
        if self.is_connected:
            self._set_disconnected()

    async def sign_transaction(self, transaction) -> bytes:
        """Sign one transaction (serialized bytes or a solders Transaction)."""
        response = await self._call(
            METHOD_SIGN_TRANSACTION, {"transaction": encode_transaction(bytes(transaction))}
        )
        raw, _ = decode_transaction(response.get("signedTransaction"))
        return raw

    async def sign_and_send_transaction(self, transaction) -> str:
        """Sign with a fresh blockhash and submit. Returns the signature."""
        response = await self._call(
            METHOD_SIGN_AND_SEND, {"transaction": encode_transaction(bytes(transaction))}
        )
        return response["signature"]

    async def sign_all_transactions(self, transactions: list) -> list[bytes]:
        """
        Sign transactions one at a time, in order.

        Stops at the first failure and raises it; no partial list is returned.
        """
        signed = []
        for transaction in transactions:
            signed.append(await self.sign_transaction(transaction))
        return signed

    def close(self) -> None:
        self._window.remove_event_listener(self._on_window_message)
        self._mux.close()


def inject_provider(window: PageWindow, channel: ServiceChannel,
                    timeout: Optional[float] = None) -> PageProvider:
    """
    Start a relay for `window` and expose a provider to it, once.

    Requests time out after `timeout` seconds, by default the service's
    configured request timeout.

    Raises RuntimeError if the window already has a provider.
    """
    if window.provider is not None:
        raise RuntimeError(f"Provider already injected into tab {window.tab_id}")

    relay = Relay(window, channel)
    relay.start()
    window.relay = relay
    window.provider = PageProvider(window, timeout if timeout is not None else channel.request_timeout)
    logger.debug(f"Provider injected into tab {window.tab_id} ({window.origin})")
    return window.provider
