"""
Wallet Crypto - Secure key management.

Industry-standard security:
- BIP-39 seed phrases
- SLIP-0010 ed25519 derivation (m/44'/501'/{index}'/0', all hardened)
- Argon2id key derivation (memory-hard)
- AES-256-GCM authenticated encryption

Secrets never exist unencrypted on disk.
"""

import json
import secrets
from dataclasses import dataclass
from typing import Optional

# Cryptography
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from argon2.low_level import hash_secret_raw, Type

# Solana
from mnemonic import Mnemonic
from bip_utils import Bip32Slip10Ed25519
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from errors import (
    InvalidPasswordError,
    InvalidPrivateKeyError,
    InvalidSeedPhraseError,
    InvalidTransactionError,
    UnsupportedOperationError,
)
from models import IMPORT_PHRASE, IMPORT_PRIVATE_KEY


# ============================================
# Security Constants
# ============================================

# Argon2id parameters (OWASP recommendations for high-security)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32  # 256 bits for AES-256
ARGON2_SALT_SIZE = 16

# AES-GCM constants
AES_IV_SIZE = 12  # 96 bits (recommended for GCM)
AES_TAG_SIZE = 16

BLOB_VERSION = 1

# BIP-44 derivation path for Solana (coin type 501)
SOLANA_DERIVATION_PATH = "m/44'/501'/{}'/0'"


# ============================================
# Key Derivation
# ============================================

@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters."""
    time_cost: int = ARGON2_TIME_COST
    memory_cost: int = ARGON2_MEMORY_COST
    parallelism: int = ARGON2_PARALLELISM


def derive_key(password: str, salt: bytes, params: KdfParams = KdfParams()) -> bytes:
    """
    Derive an encryption key from password using Argon2id.

    Argon2id is memory-hard, making brute-force attacks expensive.
    With the default parameters, each password guess requires ~64MB RAM.
    """
    return hash_secret_raw(
        secret=password.encode('utf-8'),
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID
    )


# ============================================
# Encryption
# ============================================

def encrypt_secret(plaintext: str, password: str,
                   params: KdfParams = KdfParams(),
                   associated_data: Optional[bytes] = None) -> dict:
    """
    Encrypt a secret with a password.

    Every call uses a fresh salt and IV. `associated_data` is authenticated
    but not encrypted; decryption must present the same bytes.

    Returns: the blob dict stored under encryptedWallet.data
    """
    salt = secrets.token_bytes(ARGON2_SALT_SIZE)
    key = derive_key(password, salt, params)
    iv = secrets.token_bytes(AES_IV_SIZE)

    aesgcm = AESGCM(key)
    ciphertext_and_tag = aesgcm.encrypt(iv, plaintext.encode('utf-8'), associated_data)

    return {
        "version": BLOB_VERSION,
        "kdf": {
            "algorithm": "argon2id",
            "salt": salt.hex(),
            "time_cost": params.time_cost,
            "memory_cost": params.memory_cost,
            "parallelism": params.parallelism,
        },
        "iv": iv.hex(),
        "ciphertext": ciphertext_and_tag[:-AES_TAG_SIZE].hex(),
        "tag": ciphertext_and_tag[-AES_TAG_SIZE:].hex(),
    }


def decrypt_secret(blob: dict, password: str,
                   associated_data: Optional[bytes] = None) -> str:
    """
    Decrypt a blob produced by encrypt_secret.

    Raises: InvalidPasswordError if the password is wrong, the blob is
    malformed, or any byte (including the associated data) was tampered with.
    """
    try:
        if blob.get("version") != BLOB_VERSION:
            raise ValueError(f"Unsupported blob version: {blob.get('version')}")
        kdf = blob["kdf"]
        if kdf.get("algorithm") != "argon2id":
            raise ValueError(f"Unsupported KDF: {kdf.get('algorithm')}")
        params = KdfParams(
            time_cost=int(kdf["time_cost"]),
            memory_cost=int(kdf["memory_cost"]),
            parallelism=int(kdf["parallelism"]),
        )
        key = derive_key(password, bytes.fromhex(kdf["salt"]), params)
        iv = bytes.fromhex(blob["iv"])
        ciphertext_and_tag = bytes.fromhex(blob["ciphertext"]) + bytes.fromhex(blob["tag"])

        aesgcm = AESGCM(key)
        plaintext = aesgcm.decrypt(iv, ciphertext_and_tag, associated_data)
        return plaintext.decode('utf-8')
    except (InvalidTag, KeyError, TypeError, ValueError, AttributeError) as e:
        raise InvalidPasswordError() from e


# ============================================
# Seed Phrases & Derivation
# ============================================

def generate_mnemonic(word_count: int = 12) -> str:
    """Generate a fresh BIP-39 English mnemonic (12 or 24 words)."""
    if word_count == 12:
        strength = 128
    elif word_count == 24:
        strength = 256
    else:
        raise ValueError("word_count must be 12 or 24")
    return Mnemonic("english").generate(strength=strength)


def normalize_mnemonic(seed_phrase: str) -> str:
    """Lowercase and collapse whitespace."""
    return " ".join(seed_phrase.lower().split())


def validate_mnemonic(seed_phrase: str) -> bool:
    """Check word list membership and checksum."""
    return Mnemonic("english").check(normalize_mnemonic(seed_phrase))


def derivation_path(index: int) -> str:
    """Hardened derivation path for an account index."""
    if index < 0:
        raise ValueError("Account index must be non-negative")
    return SOLANA_DERIVATION_PATH.format(index)


def keypair_from_seed(seed: bytes, index: int) -> Keypair:
    """Derive the keypair at `index` from BIP-39 seed bytes."""
    node = Bip32Slip10Ed25519.FromSeedAndPath(seed, derivation_path(index))
    return Keypair.from_seed(node.PrivateKey().Raw().ToBytes())


def derive_account(seed_phrase: str, index: int) -> Keypair:
    """
    Derive the keypair for (seed phrase, index).

    Pure: the same inputs always yield the same keypair.
    """
    if not validate_mnemonic(seed_phrase):
        raise InvalidSeedPhraseError()
    seed = Mnemonic.to_seed(normalize_mnemonic(seed_phrase), passphrase="")
    return keypair_from_seed(seed, index)


def parse_private_key(private_key: str) -> Keypair:
    """
    Parse an exported private key.

    Accepts a base58 64-byte secret (wallet export format) or a JSON byte
    array (solana-keygen file format).
    """
    value = private_key.strip()
    try:
        if value.startswith("["):
            return Keypair.from_bytes(bytes(json.loads(value)))
        return Keypair.from_base58_string(value)
    except Exception as e:
        raise InvalidPrivateKeyError() from e


# ============================================
# Wallet Classes
# ============================================

class SeedWallet:
    """
    HD wallet backed by a BIP-39 seed phrase.

    Accounts are derived on demand and cached for the lifetime of the
    unlocked session; nothing derived is ever persisted.
    """

    import_method = IMPORT_PHRASE

    def __init__(self, seed_phrase: str):
        """Initialize wallet with seed phrase (decrypted in memory)."""
        phrase = normalize_mnemonic(seed_phrase)
        if not Mnemonic("english").check(phrase):
            raise InvalidSeedPhraseError()
        self._seed_phrase = phrase
        self._seed = Mnemonic.to_seed(phrase, passphrase="")
        self._keypairs: dict[int, Keypair] = {}

    @classmethod
    def create(cls, word_count: int = 12) -> "SeedWallet":
        """Create a new wallet with a fresh seed phrase."""
        return cls(generate_mnemonic(word_count))

    @property
    def seed_phrase(self) -> str:
        """The seed phrase (sensitive - only show during backup!)."""
        if self._seed_phrase is None:
            raise UnsupportedOperationError("Wallet is locked")
        return self._seed_phrase

    @property
    def can_derive(self) -> bool:
        return True

    def keypair(self, index: int) -> Keypair:
        """Get the keypair for an account index (derives if needed)."""
        if self._seed is None:
            raise UnsupportedOperationError("Wallet is locked")
        if index not in self._keypairs:
            self._keypairs[index] = keypair_from_seed(self._seed, index)
        return self._keypairs[index]

    def address(self, index: int) -> str:
        return str(self.keypair(index).pubkey())

    def secret_payload(self) -> dict:
        """Plaintext that gets encrypted at rest."""
        return {"seedPhrase": self.seed_phrase}

    def lock(self) -> None:
        """Drop every reference to secret material."""
        self._seed_phrase = None
        self._seed = None
        self._keypairs.clear()


class PrivateKeyWallet:
    """
    Simple wallet from a single private key.

    Unlike HD wallets, this can only have one account (index 0).
    """

    import_method = IMPORT_PRIVATE_KEY

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @classmethod
    def from_private_key(cls, private_key: str) -> "PrivateKeyWallet":
        return cls(parse_private_key(private_key))

    @property
    def can_derive(self) -> bool:
        return False

    def keypair(self, index: int = 0) -> Keypair:
        if index != 0:
            raise UnsupportedOperationError("Private key wallets only have one account")
        if self._keypair is None:
            raise UnsupportedOperationError("Wallet is locked")
        return self._keypair

    def address(self, index: int = 0) -> str:
        return str(self.keypair(index).pubkey())

    def secret_payload(self) -> dict:
        return {"privateKey": str(self.keypair(0))}

    def lock(self) -> None:
        self._keypair = None


def load_secret(payload: dict) -> SeedWallet | PrivateKeyWallet:
    """Rebuild a wallet from its decrypted payload, auto-detecting the type."""
    if "seedPhrase" in payload:
        return SeedWallet(payload["seedPhrase"])
    if "privateKey" in payload:
        return PrivateKeyWallet.from_private_key(payload["privateKey"])
    raise ValueError("Unrecognized wallet payload")


# ============================================
# Signing
# ============================================

def sign_transaction(raw: bytes, keypair: Keypair,
                     recent_blockhash: Optional[Hash] = None) -> bytes:
    """
    Add `keypair`'s signature to a serialized legacy transaction.

    A `recent_blockhash` different from the message's replaces it (and
    clears any existing signatures) before signing.
    """
    try:
        tx = Transaction.from_bytes(raw)
    except Exception as e:
        raise InvalidTransactionError("Could not decode transaction") from e

    blockhash = recent_blockhash or tx.message.recent_blockhash
    try:
        tx.partial_sign([keypair], blockhash)
    except Exception as e:
        raise InvalidTransactionError(f"Could not sign transaction: {e}") from e
    return bytes(tx)


def build_transfer(payer: Pubkey, recipient: Pubkey, lamports: int,
                   recent_blockhash: Hash) -> bytes:
    """Serialize an unsigned native SOL transfer from `payer` to `recipient`."""
    instruction = transfer(TransferParams(from_pubkey=payer, to_pubkey=recipient, lamports=lamports))
    message = Message.new_with_blockhash([instruction], payer, recent_blockhash)
    return bytes(Transaction.new_unsigned(message))
