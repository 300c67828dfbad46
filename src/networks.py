"""
SolWallet Networks - Cluster configurations and chain I/O.

Supports Solana mainnet-beta, devnet and testnet. The network client is the
only component that talks to an RPC endpoint; it knows nothing about keys.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from errors import InvalidAddressError, NetworkError, TransactionFailedError

logger = logging.getLogger(__name__)

# 1 SOL = 1e9 lamports
LAMPORTS_PER_SOL = 1_000_000_000

# Fixed fee for a single-signature transaction
DEFAULT_FEE_LAMPORTS = 5000

# ============================================
# Network Configurations
# ============================================

@dataclass
class NetworkConfig:
    """Configuration for a Solana cluster."""
    name: str
    display_name: str
    rpc_url: str
    explorer_cluster: Optional[str]  # Solscan ?cluster= value, None for mainnet
    is_testnet: bool
    native_symbol: str = "SOL"


NETWORKS = {
    "mainnet-beta": NetworkConfig(
        name="mainnet-beta",
        display_name="Mainnet",
        rpc_url="https://api.mainnet-beta.solana.com",
        explorer_cluster=None,
        is_testnet=False,
    ),
    "devnet": NetworkConfig(
        name="devnet",
        display_name="Devnet",
        rpc_url="https://api.devnet.solana.com",
        explorer_cluster="devnet",
        is_testnet=True,
    ),
    "testnet": NetworkConfig(
        name="testnet",
        display_name="Testnet",
        rpc_url="https://api.testnet.solana.com",
        explorer_cluster="testnet",
        is_testnet=True,
    ),
}

# Default network (safe for testing)
DEFAULT_NETWORK = "devnet"


# ============================================
# Chain Data
# ============================================

@dataclass
class SignatureInfo:
    """One entry of an address's signature history."""
    signature: str
    block_time: Optional[int]
    confirmation_status: Optional[str]


@dataclass
class TransactionMeta:
    """The parts of a parsed transaction the history view needs."""
    pre_balances: list[int]
    post_balances: list[int]
    fee: int
    err: Optional[str] = None


def _confirmation_status_name(status) -> Optional[str]:
    """Lowercase name of a TransactionConfirmationStatus (the enum is not hashable)."""
    if status is None:
        return None
    if status == TransactionConfirmationStatus.Finalized:
        return "finalized"
    if status == TransactionConfirmationStatus.Confirmed:
        return "confirmed"
    if status == TransactionConfirmationStatus.Processed:
        return "processed"
    return None


def parse_pubkey(address: str) -> Pubkey:
    """Parse a base58 address or raise InvalidAddressError."""
    try:
        return Pubkey.from_string(address.strip())
    except Exception as e:
        raise InvalidAddressError(f"Invalid address: {address}") from e


class SolanaNetworkClient:
    """
    Async JSON-RPC client across Solana clusters.

    One AsyncClient per cluster, created lazily and cached.
    """

    def __init__(self, custom_rpcs: Optional[dict[str, str]] = None):
        """
        Args:
            custom_rpcs: Dict of network name -> custom RPC URL (optional)
        """
        self.custom_rpcs = custom_rpcs or {}
        self._clients: dict[str, AsyncClient] = {}

    def rpc_url(self, network: str) -> str:
        config = get_network(network)
        if config is None:
            raise NetworkError(f"Unknown network: {network}")
        return self.custom_rpcs.get(network) or config.rpc_url

    def client(self, network: str) -> AsyncClient:
        """Return a (cached) client for the given network."""
        if network not in self._clients:
            self._clients[network] = AsyncClient(self.rpc_url(network), commitment=Confirmed)
            logger.info(f"Connected to {network}")
        return self._clients[network]

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    async def get_balance(self, address: str, network: str) -> int:
        """Balance in lamports."""
        pubkey = parse_pubkey(address)
        try:
            resp = await self.client(network).get_balance(pubkey, commitment=Confirmed)
        except Exception as e:
            raise NetworkError(f"Failed to fetch balance: {e}") from e
        return resp.value

    async def get_signatures(self, address: str, network: str, limit: int = 10) -> list[SignatureInfo]:
        """Most recent signatures for an address, newest first."""
        pubkey = parse_pubkey(address)
        try:
            resp = await self.client(network).get_signatures_for_address(pubkey, limit=limit)
        except Exception as e:
            raise NetworkError(f"Failed to fetch signatures: {e}") from e
        return [
            SignatureInfo(
                signature=str(item.signature),
                block_time=item.block_time,
                confirmation_status=_confirmation_status_name(item.confirmation_status),
            )
            for item in resp.value
        ]

    async def get_parsed_transaction(self, signature: str, network: str) -> Optional[TransactionMeta]:
        """Balance/fee metadata for a transaction, None if unknown."""
        try:
            resp = await self.client(network).get_transaction(
                Signature.from_string(signature),
                encoding="jsonParsed",
                max_supported_transaction_version=0,
            )
        except Exception as e:
            raise NetworkError(f"Failed to fetch transaction {signature}: {e}") from e

        if resp.value is None or resp.value.transaction.meta is None:
            return None
        meta = resp.value.transaction.meta
        return TransactionMeta(
            pre_balances=list(meta.pre_balances),
            post_balances=list(meta.post_balances),
            fee=meta.fee,
            err=str(meta.err) if meta.err is not None else None,
        )

    async def get_latest_blockhash(self, network: str) -> Hash:
        try:
            resp = await self.client(network).get_latest_blockhash(commitment=Confirmed)
        except Exception as e:
            raise NetworkError(f"Failed to fetch blockhash: {e}") from e
        return resp.value.blockhash

    async def submit(self, raw: bytes, network: str) -> str:
        """Send a signed transaction. Returns its signature."""
        try:
            resp = await self.client(network).send_raw_transaction(
                raw, opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed)
            )
        except Exception as e:
            raise NetworkError(f"Failed to submit transaction: {e}") from e
        return str(resp.value)

    async def confirm(self, signature: str, network: str) -> None:
        """Wait for confirmation; raise TransactionFailedError on a chain error."""
        try:
            resp = await self.client(network).confirm_transaction(
                Signature.from_string(signature), commitment=Confirmed
            )
        except Exception as e:
            raise NetworkError(f"Failed to confirm transaction: {e}") from e

        status = resp.value[0] if resp.value else None
        if status is not None and status.err is not None:
            raise TransactionFailedError(str(status.err))


# ============================================
# Utility Functions
# ============================================

def get_network(name: str) -> Optional[NetworkConfig]:
    """Get network config by name."""
    return NETWORKS.get(name)


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


def sol_to_lamports(amount: float) -> int:
    return int(round(amount * LAMPORTS_PER_SOL))


def explorer_tx_url(signature: str, network: str) -> str:
    """Solscan link for a transaction."""
    config = get_network(network)
    url = f"https://solscan.io/tx/{signature}"
    if config is not None and config.explorer_cluster:
        url += f"?cluster={config.explorer_cluster}"
    return url


def format_address(address: str, chars: int = 4) -> str:
    """Format address as AbCd...WxYz"""
    if len(address) <= chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"
