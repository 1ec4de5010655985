"""Wallet records, runtime views and RPC/event schemas."""

from .schemas import (
    WalletStatus,
    WalletStateMachine,
    Wallet,
    BlockHeight,
    Balance,
    LoadedWallet,
    DetailedWallet,
    GetAddressesResponse,
    CreateAddressResponse,
    GetStatusResponse,
    GetBalanceResponse,
    WalletEventType,
    WalletEvent,
)

__all__ = [
    "WalletStatus",
    "WalletStateMachine",
    "Wallet",
    "BlockHeight",
    "Balance",
    "LoadedWallet",
    "DetailedWallet",
    "GetAddressesResponse",
    "CreateAddressResponse",
    "GetStatusResponse",
    "GetBalanceResponse",
    "WalletEventType",
    "WalletEvent",
]
