"""
Wallet record model.

The persisted shape of a wallet:

    {
      "encryptedWallet": {"data": <blob>, "publicKey": "...", "importMethod": "phrase"},
      "network": "devnet",
      "hasWallet": true,
      "accounts": [0, 1],
      "currentAccountIndex": 0
    }

Only the encrypted blob ever contains secret material.
"""

from dataclasses import dataclass, field
from typing import Optional

IMPORT_PHRASE = "phrase"
IMPORT_PRIVATE_KEY = "privateKey"
IMPORT_METHODS = (IMPORT_PHRASE, IMPORT_PRIVATE_KEY)


@dataclass
class Account:
    """A wallet account: derivation index and public address."""
    index: int
    address: str

    def to_dict(self) -> dict:
        return {"index": self.index, "address": self.address}


@dataclass
class EncryptedWallet:
    """Encrypted secret plus the public metadata stored next to it."""
    data: dict            # Encrypted blob (kdf params, iv, ciphertext, tag)
    public_key: str       # Address of the current account
    import_method: str    # phrase | privateKey

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "publicKey": self.public_key,
            "importMethod": self.import_method,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedWallet":
        return cls(
            data=data["data"],
            public_key=data["publicKey"],
            import_method=data.get("importMethod", IMPORT_PHRASE),
        )


@dataclass
class WalletRecord:
    """Everything persisted about the wallet."""
    encrypted_wallet: Optional[EncryptedWallet] = None
    network: str = "devnet"
    has_wallet: bool = False
    accounts: list[int] = field(default_factory=lambda: [0])
    current_account_index: int = 0
    # False when a file was present but could not be parsed
    readable: bool = field(default=True, compare=False)

    @property
    def exists(self) -> bool:
        return self.has_wallet and self.encrypted_wallet is not None

    def to_dict(self) -> dict:
        return {
            "encryptedWallet": self.encrypted_wallet.to_dict() if self.encrypted_wallet else None,
            "network": self.network,
            "hasWallet": self.has_wallet,
            "accounts": list(self.accounts),
            "currentAccountIndex": self.current_account_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WalletRecord":
        encrypted = data.get("encryptedWallet")
        return cls(
            encrypted_wallet=EncryptedWallet.from_dict(encrypted) if encrypted else None,
            network=data.get("network") or "devnet",
            has_wallet=bool(data.get("hasWallet")),
            accounts=list(data.get("accounts") or [0]),
            current_account_index=data.get("currentAccountIndex") or 0,
        )
