"""
Wallet package - Secure key management for SolWallet.

Contains:
- SeedWallet: HD wallet with BIP-39 / SLIP-0010 derivation
- PrivateKeyWallet: Single-key wallet
- KeyManager: Wallet lifecycle (create, import, lock/unlock, accounts)
"""

from .crypto import (
    KdfParams,
    SeedWallet,
    PrivateKeyWallet,
    build_transfer,
    derive_account,
    derivation_path,
    encrypt_secret,
    decrypt_secret,
    generate_mnemonic,
    parse_private_key,
    sign_transaction,
    validate_mnemonic,
)
from .manager import (
    KeyManager,
    Session,
    WalletState,
)

__all__ = [
    # Crypto
    "KdfParams",
    "SeedWallet",
    "PrivateKeyWallet",
    "build_transfer",
    "derive_account",
    "derivation_path",
    "encrypt_secret",
    "decrypt_secret",
    "generate_mnemonic",
    "parse_private_key",
    "sign_transaction",
    "validate_mnemonic",
    # Manager
    "KeyManager",
    "Session",
    "WalletState",
]
