import asyncio

import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from errors import NetworkError
from models import WalletStore
from networks import SignatureInfo, TransactionMeta
from services import ApprovalCoordinator, WalletService
from settings import Settings
from wallet import KdfParams, KeyManager, build_transfer

# Argon2id at its cheapest so tests stay fast
FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)

PASSWORD = "correct horse battery staple"
TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
ORIGIN = "https://dapp.example"


class FakeNetworkClient:
    """In-memory stand-in for SolanaNetworkClient."""

    def __init__(self):
        self.balances: dict[str, int] = {}
        self.signatures: list[SignatureInfo] = []
        self.metas: dict = {}  # signature -> TransactionMeta | Exception | None
        self.blockhash = Hash.new_unique()
        self.blockhash_requests = 0
        self.signature_limits: list[int] = []
        self.submitted: list[bytes] = []
        self.submit_error: Exception | None = None
        self.confirm_error: Exception | None = None

    async def get_balance(self, address: str, network: str) -> int:
        return self.balances.get(address, 0)

    async def get_signatures(self, address: str, network: str, limit: int = 10):
        self.signature_limits.append(limit)
        return self.signatures[:limit]

    async def get_parsed_transaction(self, signature: str, network: str):
        meta = self.metas.get(signature)
        if isinstance(meta, Exception):
            raise meta
        return meta

    async def get_latest_blockhash(self, network: str) -> Hash:
        self.blockhash_requests += 1
        return self.blockhash

    async def submit(self, raw: bytes, network: str) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(raw)
        return str(Transaction.from_bytes(raw).signatures[0])

    async def confirm(self, signature: str, network: str) -> None:
        if self.confirm_error is not None:
            raise self.confirm_error

    async def close(self) -> None:
        pass


def make_unsigned_transaction(payer: Pubkey, blockhash: Hash | None = None) -> bytes:
    """A 1000-lamport transfer from `payer` to a throwaway address."""
    return build_transfer(payer, Pubkey.new_unique(), 1000, blockhash or Hash.default())


def history_entry(signature: str, pre: int, post: int, fee: int = 5000,
                  block_time: int | None = 1_700_000_000) -> tuple[SignatureInfo, TransactionMeta]:
    info = SignatureInfo(signature=signature, block_time=block_time, confirmation_status="finalized")
    meta = TransactionMeta(pre_balances=[pre, 0], post_balances=[post, 0], fee=fee)
    return info, meta


async def settle(rounds: int = 20) -> None:
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def store(tmp_path):
    return WalletStore(tmp_path / "wallet.json")


@pytest.fixture
def key_manager(store):
    return KeyManager(store, FAST_KDF)


@pytest.fixture
def unlocked_manager(key_manager):
    key_manager.import_seed_phrase(TEST_MNEMONIC, PASSWORD)
    return key_manager


@pytest.fixture
def network_client():
    return FakeNetworkClient()


@pytest.fixture
def settings():
    return Settings(require_sign_approval=False)


@pytest.fixture
def approvals():
    return ApprovalCoordinator(max_pending=4, timeout=1.0)


@pytest.fixture
def service(key_manager, network_client, approvals, settings):
    return WalletService(key_manager, network_client, approvals, settings)


@pytest.fixture(autouse=True)
def app_home(tmp_path, monkeypatch):
    """Keep settings and logs out of the real home directory."""
    monkeypatch.setenv("SOLWALLET_HOME", str(tmp_path / "home"))
    return tmp_path / "home"
