"""
Models package - Data models for SolWallet.

Contains:
- WalletRecord, EncryptedWallet, Account: the persisted wallet
- TransactionSummary: activity history entries
- WalletStore: JSON persistence
"""

from .record import (
    Account,
    EncryptedWallet,
    WalletRecord,
    IMPORT_PHRASE,
    IMPORT_PRIVATE_KEY,
    IMPORT_METHODS,
)
from .transaction import (
    TransactionSummary,
    TYPE_RECEIVED,
    TYPE_SENT,
)
from .store import WalletStore, set_secure_permissions

__all__ = [
    "Account",
    "EncryptedWallet",
    "WalletRecord",
    "IMPORT_PHRASE",
    "IMPORT_PRIVATE_KEY",
    "IMPORT_METHODS",
    "TransactionSummary",
    "TYPE_RECEIVED",
    "TYPE_SENT",
    "WalletStore",
    "set_secure_permissions",
]
