"""
Services package - Backend services for SolWallet.

Contains:
- WalletService: Privileged operation dispatch and per-origin authorization
- ApprovalCoordinator: Queue of requests awaiting user consent
"""

from .approval import ApprovalCoordinator, ApprovalRequest
from .wallet_service import (
    WalletService,
    Operation,
    Sender,
    INTERNAL_SENDER,
    EVENT_ACCOUNT_CHANGED,
    EVENT_NETWORK_CHANGED,
    EVENT_DISCONNECT,
    encode_transaction,
    decode_transaction,
)

__all__ = [
    "ApprovalCoordinator",
    "ApprovalRequest",
    "WalletService",
    "Operation",
    "Sender",
    "INTERNAL_SENDER",
    "EVENT_ACCOUNT_CHANGED",
    "EVENT_NETWORK_CHANGED",
    "EVENT_DISCONNECT",
    "encode_transaction",
    "decode_transaction",
]
