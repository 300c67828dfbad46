"""
Key Manager - Wallet lifecycle and the unlocked session.

State machine:
    NO_WALLET --(create | import)--> UNLOCKED
    LOCKED    --(unlock ok)--------> UNLOCKED
    UNLOCKED  --(lock / restart)---> LOCKED
    any       --(forget)-----------> NO_WALLET

Secret material lives only in the Session, which is created on unlock and
cleared on lock. The persisted record holds nothing but the encrypted blob and
public metadata.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from solders.hash import Hash

from errors import (
    InvalidPasswordError,
    NoWalletError,
    UnsupportedOperationError,
    WalletExistsError,
    WalletLockedError,
)
from models import Account, EncryptedWallet, WalletRecord, WalletStore
from networks import DEFAULT_NETWORK, get_network
from .crypto import (
    KdfParams,
    PrivateKeyWallet,
    SeedWallet,
    decrypt_secret,
    encrypt_secret,
    load_secret,
    sign_transaction,
)

logger = logging.getLogger(__name__)


class WalletState(Enum):
    NO_WALLET = "no_wallet"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass
class Session:
    """The unlocked, in-memory view of the wallet."""
    wallet: SeedWallet | PrivateKeyWallet
    accounts: list[int] = field(default_factory=lambda: [0])
    current_account_index: int = 0
    network: str = DEFAULT_NETWORK

    @property
    def current_keypair(self):
        return self.wallet.keypair(self.current_account_index)

    @property
    def current_address(self) -> str:
        return self.wallet.address(self.current_account_index)

    def clear(self) -> None:
        self.wallet.lock()
        self.accounts = []


def _associated_data(import_method: str) -> bytes:
    """Bind the import method to the ciphertext so it cannot be swapped."""
    return f"solwallet:{import_method}".encode('utf-8')


class KeyManager:
    """
    Owns the persisted wallet record and the unlocked Session.

    Usage:
        km = KeyManager(WalletStore(path))
        phrase = km.create("password")   # show phrase for backup
        km.add_account()
        km.lock()
        km.unlock("password")
    """

    def __init__(self, store: WalletStore, kdf_params: KdfParams = KdfParams()):
        self.store = store
        self.kdf_params = kdf_params
        self._session: Optional[Session] = None

    # ============================================
    # State
    # ============================================

    @property
    def state(self) -> WalletState:
        if self.has_wallet():
            return WalletState.UNLOCKED if self._session is not None else WalletState.LOCKED
        return WalletState.NO_WALLET

    @property
    def is_unlocked(self) -> bool:
        return self._session is not None

    def has_wallet(self) -> bool:
        """True if a wallet exists, including one whose record cannot be read."""
        if self._session is not None:
            return True
        record = self.store.load()
        return record.exists or not record.readable

    def _load_record(self) -> WalletRecord:
        """Load the record for reading or updating; an unreadable file is never overwritten."""
        record = self.store.load()
        if not record.readable:
            raise InvalidPasswordError()
        return record

    def _require_record(self) -> WalletRecord:
        record = self._load_record()
        if not record.exists:
            raise NoWalletError()
        return record

    def _require_session(self) -> Session:
        if self._session is None:
            if not self.has_wallet():
                raise NoWalletError()
            raise WalletLockedError()
        return self._session

    # ============================================
    # Creation / Import
    # ============================================

    def create(self, password: str, word_count: int = 12) -> str:
        """
        Create a new seed wallet and unlock it.

        Returns the fresh seed phrase (display once for backup).
        """
        wallet = SeedWallet.create(word_count)
        self._initialize(wallet, password)
        logger.info(f"Wallet created: {self._session.current_address}")
        return wallet.seed_phrase

    def import_seed_phrase(self, seed_phrase: str, password: str) -> str:
        """Import an existing seed phrase. Returns the account 0 address."""
        wallet = SeedWallet(seed_phrase)
        self._initialize(wallet, password)
        logger.info(f"Seed phrase imported: {self._session.current_address}")
        return self._session.current_address

    def import_private_key(self, private_key: str, password: str) -> str:
        """Import a single raw private key. Returns its address."""
        wallet = PrivateKeyWallet.from_private_key(private_key)
        self._initialize(wallet, password)
        logger.info(f"Private key imported: {self._session.current_address}")
        return self._session.current_address

    def _initialize(self, wallet: SeedWallet | PrivateKeyWallet, password: str) -> None:
        if self.has_wallet():
            raise WalletExistsError()
        if not password:
            raise InvalidPasswordError("Password must not be empty")

        network = self._load_record().network or DEFAULT_NETWORK
        record = WalletRecord(
            encrypted_wallet=self._encrypt(wallet, password),
            network=network,
            has_wallet=True,
            accounts=[0],
            current_account_index=0,
        )
        self.store.save(record)
        self._session = Session(wallet=wallet, accounts=[0], current_account_index=0, network=network)

    def _encrypt(self, wallet: SeedWallet | PrivateKeyWallet, password: str) -> EncryptedWallet:
        blob = encrypt_secret(
            json.dumps(wallet.secret_payload()),
            password,
            self.kdf_params,
            associated_data=_associated_data(wallet.import_method),
        )
        return EncryptedWallet(
            data=blob,
            public_key=wallet.address(0),
            import_method=wallet.import_method,
        )

    # ============================================
    # Lock / Unlock
    # ============================================

    def _decrypt(self, record: WalletRecord, password: str) -> SeedWallet | PrivateKeyWallet:
        encrypted = record.encrypted_wallet
        plaintext = decrypt_secret(
            encrypted.data, password, associated_data=_associated_data(encrypted.import_method)
        )
        try:
            wallet = load_secret(json.loads(plaintext))
        except Exception as e:
            raise InvalidPasswordError() from e
        if wallet.import_method != encrypted.import_method:
            wallet.lock()
            raise InvalidPasswordError()
        return wallet

    def unlock(self, password: str) -> Account:
        """
        Decrypt the record and open a session.

        Fails closed: any failure leaves the manager locked and raises
        InvalidPasswordError.
        """
        record = self._require_record()
        wallet = self._decrypt(record, password)

        # Indices are contiguous from 0 by construction
        accounts = list(range(max(len(record.accounts), 1))) if wallet.can_derive else [0]
        current = record.current_account_index if record.current_account_index in accounts else 0
        try:
            # Derivation is re-run on every unlock; derived keys are never stored
            for index in accounts:
                wallet.keypair(index)
        except Exception as e:
            wallet.lock()
            raise InvalidPasswordError() from e

        if self._session is not None:
            self._session.clear()
        self._session = Session(
            wallet=wallet,
            accounts=list(accounts),
            current_account_index=current,
            network=record.network,
        )
        logger.info("Wallet unlocked")
        return self.current_account

    def lock(self) -> None:
        """Clear the session from memory."""
        if self._session is not None:
            self._session.clear()
            self._session = None
            logger.info("Wallet locked")

    def verify_password(self, password: str) -> None:
        """Raise InvalidPasswordError unless `password` opens the record."""
        self._decrypt(self._require_record(), password).lock()

    def change_password(self, old_password: str, new_password: str) -> None:
        """Re-encrypt the wallet under a new password (fresh salt and IV)."""
        if not new_password:
            raise InvalidPasswordError("Password must not be empty")
        record = self._require_record()
        wallet = self._decrypt(record, old_password)
        try:
            encrypted = self._encrypt(wallet, new_password)
            encrypted.public_key = record.encrypted_wallet.public_key
            record.encrypted_wallet = encrypted
            self.store.save(record)
        finally:
            wallet.lock()
        logger.info("Wallet password changed")

    def forget(self) -> None:
        """Remove all wallet data."""
        self.lock()
        self.store.delete()

    # ============================================
    # Accounts
    # ============================================

    @property
    def accounts(self) -> list[Account]:
        session = self._require_session()
        return [Account(index=i, address=session.wallet.address(i)) for i in session.accounts]

    @property
    def current_account(self) -> Account:
        session = self._require_session()
        return Account(index=session.current_account_index, address=session.current_address)

    @property
    def network(self) -> str:
        if self._session is not None:
            return self._session.network
        return self.store.load().network or DEFAULT_NETWORK

    def current_address(self) -> Optional[str]:
        """
        Address of the current account.

        Works while locked (from the record's public metadata); None if no
        wallet exists.
        """
        if self._session is not None:
            return self._session.current_address
        record = self.store.load()
        if not record.exists:
            return None
        return record.encrypted_wallet.public_key

    def add_account(self) -> Account:
        """Derive and select the next sequential account (seed wallets only)."""
        session = self._require_session()
        if not session.wallet.can_derive:
            raise UnsupportedOperationError("Private key wallets cannot derive additional accounts")

        new_index = len(session.accounts)
        session.wallet.keypair(new_index)
        session.accounts.append(new_index)
        session.current_account_index = new_index
        self._persist_session()
        logger.info(f"Account {new_index} added: {session.current_address}")
        return self.current_account

    def select_account(self, index: int) -> Account:
        """Switch the current account."""
        session = self._require_session()
        if index not in session.accounts:
            raise UnsupportedOperationError(f"Unknown account index: {index}")
        session.current_account_index = index
        self._persist_session()
        return self.current_account

    def set_network(self, name: str) -> str:
        """Select and persist the active network."""
        network = get_network(name)
        if network is None:
            raise ValueError(f"Unknown network: {name}")
        record = self._load_record()
        record.network = network.name
        self.store.save(record)
        if self._session is not None:
            self._session.network = network.name
        logger.info(f"Network set to {network.name}")
        return network.name

    def _persist_session(self) -> None:
        session = self._session
        record = self._require_record()
        record.accounts = list(session.accounts)
        record.current_account_index = session.current_account_index
        record.encrypted_wallet.public_key = session.current_address
        self.store.save(record)

    # ============================================
    # Disclosure (confirmed upstream by password re-entry)
    # ============================================

    def export_seed_phrase(self, password: str) -> str:
        session = self._require_session()
        if not isinstance(session.wallet, SeedWallet):
            raise UnsupportedOperationError("No seed phrase exists for an imported private key")
        self.verify_password(password)
        return session.wallet.seed_phrase

    def export_private_key(self, password: str) -> str:
        """Base58 64-byte secret of the current account."""
        session = self._require_session()
        self.verify_password(password)
        return str(session.current_keypair)

    # ============================================
    # Signing
    # ============================================

    def sign_transaction(self, raw: bytes, recent_blockhash: Optional[Hash] = None) -> bytes:
        """Sign a serialized transaction with the current account."""
        session = self._require_session()
        return sign_transaction(raw, session.current_keypair, recent_blockhash)

    def public_key(self):
        """Pubkey of the current account (for building transactions)."""
        return self._require_session().current_keypair.pubkey()
