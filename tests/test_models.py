import json
import os
from pathlib import Path

import pytest

from errors import (
    NoWalletError,
    TransactionFailedError,
    UserRejectedError,
    WalletError,
    error_from_response,
)
from models import EncryptedWallet, TransactionSummary, WalletRecord, WalletStore
from settings import Settings, load_settings, save_settings


# ============================================
# Wallet record / store
# ============================================

def make_record() -> WalletRecord:
    return WalletRecord(
        encrypted_wallet=EncryptedWallet(data={"version": 1}, public_key="Addr1", import_method="phrase"),
        network="testnet",
        has_wallet=True,
        accounts=[0, 1],
        current_account_index=1,
    )


def test_record_uses_camel_case_keys():
    data = make_record().to_dict()

    assert data == {
        "encryptedWallet": {"data": {"version": 1}, "publicKey": "Addr1", "importMethod": "phrase"},
        "network": "testnet",
        "hasWallet": True,
        "accounts": [0, 1],
        "currentAccountIndex": 1,
    }
    assert WalletRecord.from_dict(data) == make_record()


def test_store_missing_file_is_empty_record(tmp_path):
    record = WalletStore(tmp_path / "wallet.json").load()

    assert not record.exists
    assert record.accounts == [0]


def test_store_save_and_load(tmp_path):
    store = WalletStore(tmp_path / "nested" / "wallet.json")

    store.save(make_record())

    assert store.load() == make_record()
    assert not store.path.with_suffix(".tmp").exists()


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_store_file_is_owner_only(tmp_path):
    store = WalletStore(tmp_path / "wallet.json")
    store.save(make_record())

    assert (store.path.stat().st_mode & 0o777) == 0o600


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_store_temp_file_is_owner_only_while_written(tmp_path, monkeypatch):
    store = WalletStore(tmp_path / "wallet.json")
    modes = []
    replace = Path.replace

    def checking_replace(self, target):
        modes.append(self.stat().st_mode & 0o777)
        return replace(self, target)

    monkeypatch.setattr(Path, "replace", checking_replace)
    old_umask = os.umask(0)
    try:
        store.save(make_record())
    finally:
        os.umask(old_umask)

    assert modes == [0o600]


def test_store_corrupt_file_loads_empty(tmp_path):
    store = WalletStore(tmp_path / "wallet.json")
    store.path.write_text("{not json")

    record = store.load()
    assert not record.exists
    assert not record.readable
    assert store.exists()


def test_store_delete(tmp_path):
    store = WalletStore(tmp_path / "wallet.json")
    store.save(make_record())

    store.delete()
    store.delete()

    assert not store.exists()


# ============================================
# Transaction summary
# ============================================

def test_summary_direction_from_balance_delta():
    received = TransactionSummary.from_balances("a", 1, 100, 350, 5, "finalized", 100)
    sent = TransactionSummary.from_balances("b", None, 350, 100, 5, "confirmed", 100)

    assert received.type == "received"
    assert received.amount == pytest.approx(2.5)
    assert sent.type == "sent"
    assert sent.amount == pytest.approx(2.5)
    assert sent.fee == pytest.approx(0.05)
    assert sent.is_pending
    assert not received.is_pending


# ============================================
# Settings
# ============================================

def test_settings_defaults(tmp_path):
    settings = load_settings(tmp_path / "settings.json")

    assert settings.require_connect_approval is False
    assert settings.require_sign_approval is True
    assert settings.request_timeout_seconds == 120.0
    assert settings.approval_timeout_seconds < settings.request_timeout_seconds
    assert settings.history_limit == 10


def test_settings_round_trip_ignores_unknown_keys(tmp_path):
    path = tmp_path / "settings.json"
    save_settings(Settings(custom_rpcs={"devnet": "http://localhost:8899"}, history_limit=5), path)
    data = json.loads(path.read_text())
    data["from_the_future"] = True
    path.write_text(json.dumps(data))

    settings = load_settings(path)

    assert settings.custom_rpcs == {"devnet": "http://localhost:8899"}
    assert settings.history_limit == 5


def test_corrupt_settings_fall_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("[[[")

    assert load_settings(path) == Settings()


# ============================================
# Errors
# ============================================

def test_error_responses_are_uniform():
    assert NoWalletError().to_response() == {"success": False, "error": "No wallet found", "code": "NO_WALLET"}
    assert UserRejectedError().retryable is False


def test_error_from_response_restores_class():
    error = error_from_response(TransactionFailedError("custom program error: 0x1").to_response())

    assert isinstance(error, TransactionFailedError)
    assert error.reason == "custom program error: 0x1"
    assert isinstance(error_from_response({"error": "No wallet found", "code": "NO_WALLET"}), NoWalletError)


def test_error_from_response_keeps_unknown_codes():
    error = error_from_response({"success": False, "error": "Unknown method", "code": "UNKNOWN_METHOD"})

    assert type(error) is WalletError
    assert error.code == "UNKNOWN_METHOD"
    assert str(error) == "Unknown method"
