"""
Bridge package - Page <-> relay <-> wallet service messaging.

Contains:
- PageWindow: In-process tab window with postMessage semantics
- ServiceChannel: Privileged channel to the WalletService
- CorrelationMultiplexer: Correlation-id request/response with timeouts
- Relay: Page-to-service forwarding with sender checks
- PageProvider / inject_provider: Page-facing wallet API
"""

from .protocol import (
    REQUEST_KIND,
    RESPONSE_KIND,
    EVENT_KIND,
    CANCEL_KIND,
    UNKNOWN_METHOD,
    FOREIGN_SENDER,
)
from .window import PageWindow, MessageEvent
from .channel import ServiceChannel
from .multiplexer import CorrelationMultiplexer
from .relay import Relay
from .provider import PageProvider, inject_provider

__all__ = [
    "REQUEST_KIND",
    "RESPONSE_KIND",
    "EVENT_KIND",
    "CANCEL_KIND",
    "UNKNOWN_METHOD",
    "FOREIGN_SENDER",
    "PageWindow",
    "MessageEvent",
    "ServiceChannel",
    "CorrelationMultiplexer",
    "Relay",
    "PageProvider",
    "inject_provider",
]
