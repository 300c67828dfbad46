"""
Wallet Service - The privileged side of the bridge.

Owns per-origin authorization, dispatches operation messages to handlers, and
calls the Key Manager for signing and the network client for chain I/O.

Flow:
1. Relay forwards {"operation": ..., ...payload} with the page's Sender
2. Service looks up the handler for the operation
3. Handler checks authorization (and user approval where required)
4. Handler returns exactly one {"success": bool, ...} response

Secret key material is never logged and never part of a response.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from solders.hash import Hash
from solders.transaction import Transaction

from errors import (
    InsufficientBalanceError,
    InvalidTransactionError,
    NetworkError,
    NoWalletError,
    UnauthorizedOriginError,
    WalletError,
    WalletLockedError,
)
from models import Account, TransactionSummary
from networks import (
    DEFAULT_FEE_LAMPORTS,
    LAMPORTS_PER_SOL,
    SolanaNetworkClient,
    explorer_tx_url,
    format_address,
    get_network,
    parse_pubkey,
    sol_to_lamports,
)
from settings import Settings
from wallet import KeyManager, build_transfer
from .approval import ApprovalCoordinator

logger = logging.getLogger(__name__)


class Operation(Enum):
    """Every operation the service understands."""
    CONNECT_WALLET = "CONNECT_WALLET"
    DISCONNECT_WALLET = "DISCONNECT_WALLET"
    GET_WALLET_ADDRESS = "GET_WALLET_ADDRESS"
    GET_BALANCE = "GET_BALANCE"
    GET_TRANSACTIONS = "GET_TRANSACTIONS"
    SIGN_TRANSACTION = "SIGN_TRANSACTION"
    SEND_TRANSACTION = "SEND_TRANSACTION"
    TAB_CLOSING = "TAB_CLOSING"
    TRANSFER = "TRANSFER"


# Events pushed to connected origins
EVENT_ACCOUNT_CHANGED = "accountChanged"
EVENT_NETWORK_CHANGED = "networkChanged"
EVENT_DISCONNECT = "disconnect"

# Page-originated approvals expire before the page gives up on the request
APPROVAL_DEADLINE_RATIO = 0.9


@dataclass(frozen=True)
class Sender:
    """Who sent a message: a page origin (via a relay) or the wallet itself."""
    origin: str
    tab_id: Optional[int] = None
    internal: bool = False


INTERNAL_SENDER = Sender(origin="solwallet://internal", internal=True)

EventListener = Callable[[str, dict], None]
Handler = Callable[[dict, Sender], Awaitable[dict]]


def encode_transaction(raw: bytes) -> str:
    """Wire format for transactions: base64 of the serialized bytes."""
    return base64.b64encode(raw).decode('ascii')


def decode_transaction(value) -> tuple[bytes, Transaction]:
    """Decode a base64 wire transaction. Raises InvalidTransactionError."""
    if not isinstance(value, str) or not value:
        raise InvalidTransactionError("Missing transaction")
    try:
        raw = base64.b64decode(value, validate=True)
        return raw, Transaction.from_bytes(raw)
    except Exception as e:
        raise InvalidTransactionError("Could not decode transaction") from e


class WalletService:
    """
    Dispatches operation messages from relays and internal callers.

    Usage:
        service = WalletService(KeyManager(WalletStore(path)), SolanaNetworkClient())
        response = await service.handle({"operation": "CONNECT_WALLET"}, Sender("https://dapp.example"))
    """

    def __init__(
        self,
        key_manager: KeyManager,
        network_client: SolanaNetworkClient,
        approvals: Optional[ApprovalCoordinator] = None,
        settings: Optional[Settings] = None,
    ):
        self.key_manager = key_manager
        self.network_client = network_client
        self.settings = settings or Settings()
        self.approvals = approvals or ApprovalCoordinator(
            max_pending=self.settings.max_pending_approvals,
            timeout=self.settings.approval_timeout_seconds,
        )
        # origin -> grantedAt
        self._authorized: dict[str, datetime] = {}
        self._event_listeners: list[tuple[str, EventListener]] = []
        # Serializes Key Manager mutations
        self._lock = asyncio.Lock()

        self._handlers: dict[Operation, Handler] = {
            Operation.CONNECT_WALLET: self._handle_connect,
            Operation.DISCONNECT_WALLET: self._handle_disconnect,
            Operation.GET_WALLET_ADDRESS: self._handle_get_address,
            Operation.GET_BALANCE: self._handle_get_balance,
            Operation.GET_TRANSACTIONS: self._handle_get_transactions,
            Operation.SIGN_TRANSACTION: self._handle_sign_transaction,
            Operation.SEND_TRANSACTION: self._handle_send_transaction,
            Operation.TAB_CLOSING: self._handle_tab_closing,
            Operation.TRANSFER: self._handle_transfer,
        }
        missing = [op.value for op in Operation if op not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler for operations: {', '.join(missing)}")

    # ============================================
    # Dispatch
    # ============================================

    async def handle(self, message: dict, sender: Sender) -> dict:
        """Handle one operation message. Always returns a response dict."""
        try:
            operation = Operation(message.get("operation"))
        except ValueError:
            logger.warning(f"Unknown operation from {sender.origin}: {message.get('operation')!r}")
            return {"success": False, "error": "Unknown operation", "code": "UNKNOWN_OPERATION"}

        try:
            return await self._handlers[operation](message, sender)
        except WalletError as e:
            logger.info(f"{operation.value} from {sender.origin} failed: {e.code}")
            return e.to_response()
        except Exception as e:
            logger.exception(f"Unexpected error handling {operation.value}")
            return {"success": False, "error": str(e)}

    # ============================================
    # Authorization
    # ============================================

    def is_authorized(self, origin: str) -> bool:
        return origin in self._authorized

    def authorized_origins(self) -> dict[str, datetime]:
        """Snapshot of origin -> grantedAt."""
        return dict(self._authorized)

    def _require_authorized(self, sender: Sender) -> None:
        if not sender.internal and sender.origin not in self._authorized:
            raise UnauthorizedOriginError()

    def _require_unlocked(self) -> None:
        if not self.key_manager.is_unlocked:
            if not self.key_manager.has_wallet():
                raise NoWalletError()
            raise WalletLockedError()

    def approval_timeout(self) -> float:
        """Approval wait for page requests: always shorter than the page's own request timeout."""
        limit = self.settings.request_timeout_seconds * APPROVAL_DEADLINE_RATIO
        if self.approvals.timeout is None:
            return limit
        return min(self.approvals.timeout, limit)

    async def _request_approval(self, sender: Sender, method: str, summary: dict,
                                request_id: Optional[str] = None) -> None:
        await self.approvals.request(
            sender.origin, method, summary,
            request_id=request_id,
            timeout=self.approval_timeout(),
        )

    # ============================================
    # Events
    # ============================================

    def add_event_listener(self, origin: str, listener: EventListener) -> Callable[[], None]:
        """
        Receive wallet events for `origin`.

        Events are only delivered while the origin is authorized. Returns a
        function that removes the listener.
        """
        entry = (origin, listener)
        self._event_listeners.append(entry)

        def remove():
            if entry in self._event_listeners:
                self._event_listeners.remove(entry)

        return remove

    def _emit(self, event: str, data: dict) -> None:
        for origin, listener in list(self._event_listeners):
            if origin not in self._authorized:
                continue
            try:
                listener(event, dict(data))
            except Exception:
                logger.exception(f"Event listener for {origin} failed")

    # ============================================
    # Handlers
    # ============================================

    async def _handle_connect(self, message: dict, sender: Sender) -> dict:
        address = self.key_manager.current_address()
        if address is None:
            raise NoWalletError()

        if sender.origin in self._authorized:
            return {"success": True, "publicKey": address}

        if self.settings.require_connect_approval and not sender.internal:
            await self._request_approval(
                sender, "connect", {"origin": sender.origin}, message.get("requestId")
            )
            address = self.key_manager.current_address()
            if address is None:
                raise NoWalletError()

        self._authorized[sender.origin] = datetime.now(timezone.utc)
        logger.info(f"Origin connected: {sender.origin}")
        return {"success": True, "publicKey": address}

    async def _handle_disconnect(self, message: dict, sender: Sender) -> dict:
        if self._authorized.pop(sender.origin, None) is not None:
            logger.info(f"Origin disconnected: {sender.origin}")
        return {"success": True}

    async def _handle_get_address(self, message: dict, sender: Sender) -> dict:
        self._require_authorized(sender)
        address = self.key_manager.current_address()
        if address is None:
            raise NoWalletError()
        return {"success": True, "publicKey": address, "network": self.key_manager.network}

    def _resolve_target(self, message: dict) -> tuple[str, str]:
        """(address, network) for a read, defaulting to the active account and network."""
        address = message.get("publicKey") or self.key_manager.current_address()
        if address is None:
            raise NoWalletError()
        network = message.get("network") or self.key_manager.network
        if get_network(network) is None:
            raise NetworkError(f"Unknown network: {network}")
        return address, network

    async def _handle_get_balance(self, message: dict, sender: Sender) -> dict:
        self._require_authorized(sender)
        address, network = self._resolve_target(message)
        lamports = await self.network_client.get_balance(address, network)
        return {
            "success": True,
            "balance": lamports / LAMPORTS_PER_SOL,
            "lamports": lamports,
            "network": network,
        }

    async def _handle_get_transactions(self, message: dict, sender: Sender) -> dict:
        self._require_authorized(sender)
        address, network = self._resolve_target(message)
        limit = self.settings.history_limit
        if message.get("limit"):
            limit = max(1, min(int(message["limit"]), limit))

        signatures = await self.network_client.get_signatures(address, network, limit=limit)
        transactions = []
        for info in signatures[:limit]:
            # One bad entry never fails the batch
            try:
                meta = await self.network_client.get_parsed_transaction(info.signature, network)
                if meta is None:
                    raise ValueError("transaction not found")
                summary = TransactionSummary.from_balances(
                    signature=info.signature,
                    timestamp=info.block_time,
                    pre_balance=meta.pre_balances[0],
                    post_balance=meta.post_balances[0],
                    fee=meta.fee,
                    status="failed" if meta.err else info.confirmation_status,
                    lamports_per_unit=LAMPORTS_PER_SOL,
                )
            except Exception as e:
                logger.warning(f"Skipping transaction {format_address(info.signature, 8)}: {e}")
                continue
            transactions.append(summary.to_dict())

        return {"success": True, "transactions": transactions, "network": network}

    async def _handle_sign_transaction(self, message: dict, sender: Sender) -> dict:
        self._require_authorized(sender)
        raw, tx = decode_transaction(message.get("transaction"))
        self._require_unlocked()

        network = self.key_manager.network
        if self.settings.require_sign_approval and not sender.internal:
            await self._request_approval(sender, "signTransaction", {
                "origin": sender.origin,
                "network": network,
                "feePayer": str(tx.message.account_keys[0]) if tx.message.account_keys else None,
                "instructions": len(tx.message.instructions),
                "send": bool(message.get("refreshBlockhash")),
            }, message.get("requestId"))

        recent_blockhash = None
        if message.get("refreshBlockhash") or tx.message.recent_blockhash == Hash.default():
            recent_blockhash = await self.network_client.get_latest_blockhash(network)

        signed = self.key_manager.sign_transaction(raw, recent_blockhash)
        logger.info(f"Signed transaction for {sender.origin}")
        return {"success": True, "signedTransaction": encode_transaction(signed)}

    async def _handle_send_transaction(self, message: dict, sender: Sender) -> dict:
        self._require_authorized(sender)
        raw, _ = decode_transaction(message.get("signedTransaction") or message.get("transaction"))
        network = self.key_manager.network

        signature = await self.network_client.submit(raw, network)
        logger.info(f"Submitted {format_address(signature, 8)} on {network}")
        await self.network_client.confirm(signature, network)
        return {"success": True, "signature": signature}

    async def _handle_tab_closing(self, message: dict, sender: Sender) -> dict:
        rejected = self.approvals.reject_origin(sender.origin, "Tab closed")
        if rejected:
            logger.info(f"Tab closed for {sender.origin}, rejected {rejected} pending approval(s)")
        return {"success": True}

    async def _handle_transfer(self, message: dict, sender: Sender) -> dict:
        if not sender.internal:
            raise UnauthorizedOriginError("Transfers can only be started from the wallet")
        self._require_unlocked()

        recipient = parse_pubkey(message.get("recipient") or "")
        try:
            lamports = sol_to_lamports(float(message.get("amount")))
        except (TypeError, ValueError) as e:
            raise InvalidTransactionError("Invalid amount") from e
        if lamports <= 0:
            raise InvalidTransactionError("Amount must be positive")

        network = self.key_manager.network
        payer = self.key_manager.public_key()
        balance = await self.network_client.get_balance(str(payer), network)
        if balance < lamports + DEFAULT_FEE_LAMPORTS:
            raise InsufficientBalanceError(
                f"Insufficient balance: have {balance / LAMPORTS_PER_SOL} SOL, "
                f"need {(lamports + DEFAULT_FEE_LAMPORTS) / LAMPORTS_PER_SOL} SOL"
            )

        blockhash = await self.network_client.get_latest_blockhash(network)
        signed = self.key_manager.sign_transaction(build_transfer(payer, recipient, lamports, blockhash))
        signature = await self.network_client.submit(signed, network)
        logger.info(f"Transfer of {lamports} lamports to {format_address(str(recipient))} submitted")
        await self.network_client.confirm(signature, network)
        return {
            "success": True,
            "signature": signature,
            "explorerUrl": explorer_tx_url(signature, network),
        }

    # ============================================
    # Wallet Actions (internal callers)
    # ============================================

    async def create_wallet(self, password: str, word_count: int = 12) -> str:
        """Create a new wallet; returns the seed phrase for backup."""
        async with self._lock:
            return await asyncio.to_thread(self.key_manager.create, password, word_count)

    async def import_seed_phrase(self, seed_phrase: str, password: str) -> str:
        async with self._lock:
            return await asyncio.to_thread(self.key_manager.import_seed_phrase, seed_phrase, password)

    async def import_private_key(self, private_key: str, password: str) -> str:
        async with self._lock:
            return await asyncio.to_thread(self.key_manager.import_private_key, private_key, password)

    async def unlock(self, password: str) -> Account:
        async with self._lock:
            return await asyncio.to_thread(self.key_manager.unlock, password)

    async def change_password(self, old_password: str, new_password: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self.key_manager.change_password, old_password, new_password)

    async def export_seed_phrase(self, password: str) -> str:
        async with self._lock:
            return await asyncio.to_thread(self.key_manager.export_seed_phrase, password)

    async def export_private_key(self, password: str) -> str:
        async with self._lock:
            return await asyncio.to_thread(self.key_manager.export_private_key, password)

    async def lock(self) -> None:
        """Lock the wallet, reject pending approvals and tell connected origins."""
        async with self._lock:
            self.key_manager.lock()
        self.approvals.reject_all("Wallet locked")
        self._emit(EVENT_DISCONNECT, {})

    async def forget(self) -> None:
        """Remove all wallet data and every authorization."""
        async with self._lock:
            self.key_manager.forget()
        self.approvals.reject_all("Wallet removed")
        self._emit(EVENT_DISCONNECT, {})
        self._authorized.clear()

    async def add_account(self) -> Account:
        async with self._lock:
            account = self.key_manager.add_account()
        self._emit(EVENT_ACCOUNT_CHANGED, {"publicKey": account.address})
        return account

    async def select_account(self, index: int) -> Account:
        async with self._lock:
            account = self.key_manager.select_account(index)
        self._emit(EVENT_ACCOUNT_CHANGED, {"publicKey": account.address})
        return account

    async def set_network(self, name: str) -> str:
        async with self._lock:
            network = self.key_manager.set_network(name)
        self._emit(EVENT_NETWORK_CHANGED, {"network": network})
        return network
