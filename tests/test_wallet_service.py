import asyncio

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from errors import NetworkError, TransactionFailedError
from services import (
    INTERNAL_SENDER,
    Operation,
    Sender,
    WalletService,
    decode_transaction,
    encode_transaction,
)
from settings import Settings

from conftest import (
    ORIGIN,
    PASSWORD,
    TEST_MNEMONIC,
    history_entry,
    make_unsigned_transaction,
    settle,
)

PAGE = Sender(origin=ORIGIN, tab_id=1)
OTHER_PAGE = Sender(origin="https://other.example", tab_id=2)


def op(operation: Operation, **payload) -> dict:
    return {"operation": operation.value, **payload}


async def connect(service, sender=PAGE) -> dict:
    return await service.handle(op(Operation.CONNECT_WALLET), sender)


# ============================================
# Dispatch
# ============================================

@pytest.mark.asyncio
async def test_every_operation_returns_a_response(service):
    for operation in Operation:
        response = await service.handle(op(operation), PAGE)
        assert isinstance(response["success"], bool)


@pytest.mark.asyncio
async def test_unknown_operation(service):
    response = await service.handle({"operation": "EXPLODE"}, PAGE)

    assert response["success"] is False
    assert response["error"] == "Unknown operation"


@pytest.mark.asyncio
async def test_unexpected_errors_become_failure_responses(service, network_client, unlocked_manager):
    async def boom(*args, **kwargs):
        raise RuntimeError("rpc exploded")

    network_client.get_balance = boom
    response = await service.handle(op(Operation.GET_BALANCE), INTERNAL_SENDER)

    assert response == {"success": False, "error": "rpc exploded"}


# ============================================
# Connect / Disconnect
# ============================================

@pytest.mark.asyncio
async def test_connect_scenario(service, key_manager):
    response = await connect(service)
    assert response["success"] is False
    assert response["error"] == "No wallet found"
    assert service.authorized_origins() == {}

    key_manager.create(PASSWORD)
    address = key_manager.current_account.address

    first = await connect(service)
    second = await connect(service)

    assert first == {"success": True, "publicKey": address}
    assert second == first
    assert list(service.authorized_origins()) == [ORIGIN]


@pytest.mark.asyncio
async def test_connect_while_locked_returns_current_address(service, unlocked_manager):
    unlocked_manager.add_account()
    address = unlocked_manager.current_account.address
    unlocked_manager.lock()

    response = await connect(service)

    assert response == {"success": True, "publicKey": address}


@pytest.mark.asyncio
async def test_connect_can_require_approval(key_manager, network_client, approvals, unlocked_manager):
    service = WalletService(
        key_manager, network_client, approvals, Settings(require_connect_approval=True)
    )
    task = asyncio.create_task(connect(service))
    await settle()

    [request] = approvals.pending()
    assert request.method == "connect"
    assert not service.is_authorized(ORIGIN)

    approvals.reject(request.id)
    response = await task
    assert response["code"] == "USER_REJECTED"
    assert not service.is_authorized(ORIGIN)


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(service, unlocked_manager):
    await connect(service)

    assert await service.handle(op(Operation.DISCONNECT_WALLET), PAGE) == {"success": True}
    assert await service.handle(op(Operation.DISCONNECT_WALLET), PAGE) == {"success": True}
    assert not service.is_authorized(ORIGIN)


# ============================================
# Reads
# ============================================

@pytest.mark.asyncio
async def test_reads_require_connected_origin(service, unlocked_manager):
    for operation in (Operation.GET_WALLET_ADDRESS, Operation.GET_BALANCE, Operation.GET_TRANSACTIONS):
        response = await service.handle(op(operation), PAGE)
        assert response["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_get_wallet_address(service, unlocked_manager):
    response = await service.handle(op(Operation.GET_WALLET_ADDRESS), INTERNAL_SENDER)

    assert response["publicKey"] == unlocked_manager.current_account.address
    assert response["network"] == "devnet"


@pytest.mark.asyncio
async def test_get_balance_converts_lamports(service, network_client, unlocked_manager):
    network_client.balances[unlocked_manager.current_account.address] = 2_500_000_000
    await connect(service)

    response = await service.handle(op(Operation.GET_BALANCE), PAGE)

    assert response == {"success": True, "balance": 2.5, "lamports": 2_500_000_000, "network": "devnet"}


@pytest.mark.asyncio
async def test_get_balance_rejects_unknown_network(service, unlocked_manager):
    response = await service.handle(op(Operation.GET_BALANCE, network="moonnet"), INTERNAL_SENDER)

    assert response["code"] == "NETWORK_ERROR"


@pytest.mark.asyncio
async def test_history_skips_bad_entries(service, network_client, unlocked_manager):
    received, received_meta = history_entry("sig-received", pre=1_000_000_000, post=3_000_000_000)
    sent, sent_meta = history_entry("sig-sent", pre=3_000_000_000, post=1_999_995_000, block_time=None)
    broken, _ = history_entry("sig-broken", pre=0, post=0)
    missing, _ = history_entry("sig-missing", pre=0, post=0)
    network_client.signatures = [received, broken, sent, missing]
    network_client.metas = {
        "sig-received": received_meta,
        "sig-sent": sent_meta,
        "sig-broken": NetworkError("boom"),
    }

    response = await service.handle(op(Operation.GET_TRANSACTIONS), INTERNAL_SENDER)

    assert response["success"] is True
    transactions = response["transactions"]
    assert [t["signature"] for t in transactions] == ["sig-received", "sig-sent"]
    assert transactions[0]["type"] == "received"
    assert transactions[0]["amount"] == pytest.approx(2.0)
    assert transactions[1]["type"] == "sent"
    assert transactions[1]["amount"] == pytest.approx(1.000005)
    assert transactions[1]["fee"] == pytest.approx(0.000005)
    assert transactions[1]["timestamp"] is None


@pytest.mark.asyncio
async def test_history_is_bounded(service, network_client, unlocked_manager):
    for i in range(15):
        info, meta = history_entry(f"sig-{i}", pre=10, post=20)
        network_client.signatures.append(info)
        network_client.metas[info.signature] = meta

    response = await service.handle(op(Operation.GET_TRANSACTIONS, limit=50), INTERNAL_SENDER)

    assert len(response["transactions"]) == 10
    assert network_client.signature_limits == [10]


# ============================================
# Sign / Send
# ============================================

@pytest.mark.asyncio
async def test_sign_requires_connected_origin(service, unlocked_manager):
    raw = make_unsigned_transaction(unlocked_manager.public_key())

    response = await service.handle(op(Operation.SIGN_TRANSACTION, transaction=encode_transaction(raw)), PAGE)

    assert response["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_sign_refreshes_default_blockhash(service, network_client, unlocked_manager):
    await connect(service)
    raw = make_unsigned_transaction(unlocked_manager.public_key())

    response = await service.handle(op(Operation.SIGN_TRANSACTION, transaction=encode_transaction(raw)), PAGE)

    assert set(response) == {"success", "signedTransaction"}
    _, tx = decode_transaction(response["signedTransaction"])
    assert tx.message.recent_blockhash == network_client.blockhash
    assert network_client.blockhash_requests == 1


@pytest.mark.asyncio
async def test_sign_keeps_caller_blockhash_unless_asked(service, network_client, unlocked_manager):
    await connect(service)
    blockhash = Hash.new_unique()
    raw = encode_transaction(make_unsigned_transaction(unlocked_manager.public_key(), blockhash))

    kept = await service.handle(op(Operation.SIGN_TRANSACTION, transaction=raw), PAGE)
    refreshed = await service.handle(op(Operation.SIGN_TRANSACTION, transaction=raw, refreshBlockhash=True), PAGE)

    assert decode_transaction(kept["signedTransaction"])[1].message.recent_blockhash == blockhash
    assert decode_transaction(refreshed["signedTransaction"])[1].message.recent_blockhash == network_client.blockhash


@pytest.mark.asyncio
async def test_sign_when_locked(service, unlocked_manager):
    await connect(service)
    raw = make_unsigned_transaction(unlocked_manager.public_key())
    unlocked_manager.lock()

    response = await service.handle(op(Operation.SIGN_TRANSACTION, transaction=encode_transaction(raw)), PAGE)

    assert response["code"] == "WALLET_LOCKED"


@pytest.mark.asyncio
async def test_sign_rejects_garbage(service, unlocked_manager):
    await connect(service)

    response = await service.handle(op(Operation.SIGN_TRANSACTION, transaction="!!notbase64!!"), PAGE)

    assert response["code"] == "INVALID_TRANSACTION"


@pytest.mark.asyncio
async def test_sign_waits_for_user_approval(key_manager, network_client, approvals, unlocked_manager):
    service = WalletService(key_manager, network_client, approvals, Settings(require_sign_approval=True))
    await connect(service)
    raw = encode_transaction(make_unsigned_transaction(unlocked_manager.public_key()))

    approvals.subscribe(lambda request: asyncio.get_running_loop().call_soon(approvals.reject, request.id))
    rejected = await service.handle(op(Operation.SIGN_TRANSACTION, transaction=raw), PAGE)
    assert rejected == {"success": False, "error": "User rejected the request", "code": "USER_REJECTED"}

    internal = await service.handle(op(Operation.SIGN_TRANSACTION, transaction=raw), INTERNAL_SENDER)
    assert internal["success"] is True


@pytest.mark.asyncio
async def test_send_submits_and_confirms(service, network_client, unlocked_manager):
    await connect(service)
    signed = unlocked_manager.sign_transaction(
        make_unsigned_transaction(unlocked_manager.public_key()), Hash.new_unique()
    )

    response = await service.handle(op(Operation.SEND_TRANSACTION, signedTransaction=encode_transaction(signed)), PAGE)

    assert response == {"success": True, "signature": str(Transaction.from_bytes(signed).signatures[0])}
    assert network_client.submitted == [signed]


@pytest.mark.asyncio
async def test_send_reports_chain_failure(service, network_client, unlocked_manager):
    await connect(service)
    network_client.confirm_error = TransactionFailedError("InstructionError")
    signed = unlocked_manager.sign_transaction(
        make_unsigned_transaction(unlocked_manager.public_key()), Hash.new_unique()
    )

    response = await service.handle(op(Operation.SEND_TRANSACTION, signedTransaction=encode_transaction(signed)), PAGE)

    assert response["code"] == "TRANSACTION_FAILED"
    assert response["reason"] == "InstructionError"


# ============================================
# Transfer
# ============================================

@pytest.mark.asyncio
async def test_transfer(service, network_client, unlocked_manager):
    network_client.balances[unlocked_manager.current_account.address] = 1_000_000_000
    recipient = str(Pubkey.new_unique())

    response = await service.handle(op(Operation.TRANSFER, recipient=recipient, amount=0.5), INTERNAL_SENDER)

    assert response["success"] is True
    assert "cluster=devnet" in response["explorerUrl"]
    [raw] = network_client.submitted
    tx = Transaction.from_bytes(raw)
    assert tx.message.recent_blockhash == network_client.blockhash
    assert str(tx.message.account_keys[1]) == recipient


@pytest.mark.asyncio
async def test_transfer_checks_balance_plus_fee(service, network_client, unlocked_manager):
    network_client.balances[unlocked_manager.current_account.address] = 500_000_000

    response = await service.handle(
        op(Operation.TRANSFER, recipient=str(Pubkey.new_unique()), amount=0.5), INTERNAL_SENDER
    )

    assert response["code"] == "INSUFFICIENT_BALANCE"
    assert network_client.submitted == []


@pytest.mark.asyncio
async def test_transfer_validates_input(service, unlocked_manager):
    bad_address = await service.handle(op(Operation.TRANSFER, recipient="nope", amount=1), INTERNAL_SENDER)
    bad_amount = await service.handle(
        op(Operation.TRANSFER, recipient=str(Pubkey.new_unique()), amount="lots"), INTERNAL_SENDER
    )

    assert bad_address["code"] == "INVALID_ADDRESS"
    assert bad_amount["code"] == "INVALID_TRANSACTION"


@pytest.mark.asyncio
async def test_transfer_is_internal_only(service, unlocked_manager):
    await connect(service)

    response = await service.handle(op(Operation.TRANSFER, recipient=str(Pubkey.new_unique()), amount=1), PAGE)

    assert response["code"] == "UNAUTHORIZED"


# ============================================
# Events / Tabs
# ============================================

@pytest.mark.asyncio
async def test_events_only_reach_connected_origins(service, unlocked_manager):
    connected, stranger = [], []
    service.add_event_listener(ORIGIN, lambda event, data: connected.append((event, data)))
    service.add_event_listener(OTHER_PAGE.origin, lambda event, data: stranger.append((event, data)))
    await connect(service)

    account = await service.add_account()
    await service.set_network("testnet")
    await service.lock()

    assert connected == [
        ("accountChanged", {"publicKey": account.address}),
        ("networkChanged", {"network": "testnet"}),
        ("disconnect", {}),
    ]
    assert stranger == []


@pytest.mark.asyncio
async def test_tab_closing_rejects_that_origins_approvals(key_manager, network_client, approvals, unlocked_manager):
    service = WalletService(key_manager, network_client, approvals, Settings(require_sign_approval=True))
    await connect(service)
    await connect(service, OTHER_PAGE)
    raw = encode_transaction(make_unsigned_transaction(unlocked_manager.public_key()))

    mine = asyncio.create_task(service.handle(op(Operation.SIGN_TRANSACTION, transaction=raw), PAGE))
    theirs = asyncio.create_task(service.handle(op(Operation.SIGN_TRANSACTION, transaction=raw), OTHER_PAGE))
    await settle()
    assert len(approvals.pending()) == 2

    assert await service.handle(op(Operation.TAB_CLOSING), PAGE) == {"success": True}

    assert (await mine)["code"] == "USER_REJECTED"
    [remaining] = approvals.pending()
    assert remaining.origin == OTHER_PAGE.origin
    approvals.approve(remaining.id)
    assert (await theirs)["success"] is True


@pytest.mark.asyncio
async def test_forget_clears_authorizations(service, unlocked_manager):
    await connect(service)

    await service.forget()

    assert service.authorized_origins() == {}
    assert (await connect(service))["error"] == "No wallet found"


@pytest.mark.asyncio
async def test_wallet_actions_run_off_loop(service, key_manager):
    phrase = await service.create_wallet(PASSWORD)
    await service.lock()
    account = await service.unlock(PASSWORD)

    assert len(phrase.split()) == 12
    assert account.index == 0
    assert await service.export_seed_phrase(PASSWORD) == phrase


@pytest.mark.asyncio
async def test_import_private_key_via_service(service):
    keypair = Keypair()

    address = await service.import_private_key(str(keypair), PASSWORD)

    assert address == str(keypair.pubkey())
    assert await service.export_private_key(PASSWORD) == str(keypair)


@pytest.mark.asyncio
async def test_import_seed_phrase_via_service(service):
    address = await service.import_seed_phrase(TEST_MNEMONIC, PASSWORD)

    assert address == service.key_manager.current_account.address
