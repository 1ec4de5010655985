"""Tests for the error hierarchy."""

from webwallet_core.errors import (
    CouldNotKillWallet,
    CouldNotSaveWallet,
    RPCConnectionTimeout,
    RPCError,
    WalletError,
    WalletNotFound,
)


def test_wallet_error_carries_context():
    error = CouldNotSaveWallet("w1", "save")

    assert isinstance(error, WalletError)
    assert error.wallet_id == "w1"
    assert error.step == "save"
    assert str(error) == "[WALLET_SAVE_FAILED] wallet could not be saved (wallet_id=w1, step=save)"
    assert error.to_dict()["context"] == {"wallet_id": "w1", "step": "save"}


def test_kill_error_keeps_original():
    original = WalletNotFound("w1", "find_wallet")
    error = CouldNotKillWallet("w1", "remove_container", original_error=original)

    assert error.original_error is original
    assert error.to_dict()["context"]["original_error"].startswith("WalletNotFound(")


def test_connection_timeout():
    error = RPCConnectionTimeout("w1:14007", 5.0)

    assert isinstance(error, RPCError)
    assert error.message == "rpc connection timeout"
    assert error.address == "w1:14007"
    assert error.timeout == 5.0
