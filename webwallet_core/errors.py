"""
Webwallet Error Hierarchy

Every failure the orchestration engine surfaces is a ``WalletError`` (wallet
lifecycle) or an ``RPCError`` (walletd JSON-RPC). Each carries the wallet id
and the saga step that failed in ``context`` so callers can branch on the
exception type instead of on message text.

Usage:
    from webwallet_core.errors import WalletNotFound, WalletAlreadyRunning

    try:
        await orchestrator.start_wallet(wallet_id, password, owner_id)
    except WalletAlreadyRunning:
        ...
"""

from typing import Any, Dict, Optional

__all__ = [
    # Base
    "WebwalletError",
    # Wallet lifecycle
    "WalletError",
    "WalletNotFound",
    "WalletAlreadyRunning",
    "WalletNotRunning",
    "CouldNotCreateWallet",
    "CouldNotStartWallet",
    "CouldNotStopWallet",
    "CouldNotSaveWallet",
    "CouldNotKillWallet",
    "NoAddressProduced",
    "WalletDetailsUnavailable",
    "InvalidStatusTransition",
    "ContainerRuntimeError",
    # RPC
    "RPCError",
    "RPCTransportError",
    "RPCApplicationError",
    "RPCConnectionTimeout",
]


class WebwalletError(Exception):
    """Base exception for all webwallet errors.

    Attributes:
        code: Machine-readable error code for categorization
        message: Human-readable error description
        context: Additional context for debugging
    """
    code: str = "WEBWALLET_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"[{self.code}] {self.message} ({ctx})"
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


# =============================================================================
# Wallet lifecycle errors
# =============================================================================


class WalletError(WebwalletError):
    """Base class for wallet lifecycle failures.

    Attributes:
        wallet_id: Wallet the failure belongs to
        step: Saga step that failed (e.g. "create_volume", "save")
    """
    code: str = "WALLET_ERROR"
    default_message: str = "wallet operation failed"

    def __init__(
        self,
        wallet_id: Optional[str] = None,
        step: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message or self.default_message, context=context)
        self.wallet_id = wallet_id
        self.step = step
        if wallet_id:
            self.context["wallet_id"] = wallet_id
        if step:
            self.context["step"] = step


class WalletNotFound(WalletError):
    """No persisted wallet matches the id for the given owner."""
    code = "WALLET_NOT_FOUND"
    default_message = "wallet not found"


class WalletAlreadyRunning(WalletError):
    code = "WALLET_ALREADY_RUNNING"
    default_message = "wallet already running"


class WalletNotRunning(WalletError):
    code = "WALLET_NOT_RUNNING"
    default_message = "wallet not running"


class CouldNotCreateWallet(WalletError):
    code = "WALLET_CREATE_FAILED"
    default_message = "wallet could not be created"


class CouldNotStartWallet(WalletError):
    code = "WALLET_START_FAILED"
    default_message = "wallet could not be started"


class CouldNotStopWallet(WalletError):
    code = "WALLET_STOP_FAILED"
    default_message = "wallet could not be stopped"


class CouldNotSaveWallet(WalletError):
    code = "WALLET_SAVE_FAILED"
    default_message = "wallet could not be saved"


class CouldNotKillWallet(WalletError):
    """Compensating teardown failed.

    Attributes:
        original_error: The failure that triggered the teardown, if any
    """
    code = "WALLET_KILL_FAILED"
    default_message = "wallet could not be killed"

    def __init__(
        self,
        wallet_id: Optional[str] = None,
        step: Optional[str] = None,
        message: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(wallet_id, step, message, context)
        self.original_error = original_error
        if original_error is not None:
            self.context["original_error"] = repr(original_error)


class NoAddressProduced(WalletError):
    code = "WALLET_NO_ADDRESS"
    default_message = "no address produced"


class WalletDetailsUnavailable(WalletError):
    """FetchDetails failed part-way.

    Attributes:
        partial: The DetailedWallet with whatever was retrieved before the
            failure; its status is ERROR.
    """
    code = "WALLET_DETAILS_UNAVAILABLE"
    default_message = "wallet details could not be fetched"

    def __init__(
        self,
        wallet_id: Optional[str] = None,
        step: Optional[str] = None,
        partial: Any = None,
        message: Optional[str] = None,
    ):
        super().__init__(wallet_id, step, message)
        self.partial = partial


class InvalidStatusTransition(WalletError):
    code = "INVALID_STATUS_TRANSITION"
    default_message = "invalid wallet status transition"


class ContainerRuntimeError(WalletError):
    """A Docker API call failed (conflict, missing object, daemon error)."""
    code = "CONTAINER_RUNTIME_ERROR"
    default_message = "container runtime call failed"


# =============================================================================
# walletd RPC errors
# =============================================================================


class RPCError(WebwalletError):
    """Base class for walletd RPC failures.

    Transport and application failures share this base; neither is retried.
    """
    code: str = "RPC_ERROR"

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context=context)
        self.method = method
        if method:
            self.context["method"] = method


class RPCTransportError(RPCError):
    """Network, HTTP or decoding failure; the original exception is the __cause__."""
    code = "RPC_TRANSPORT_ERROR"


class RPCApplicationError(RPCError):
    """walletd answered with an error object in the JSON-RPC envelope.

    Attributes:
        rpc_code: JSON-RPC error code
        data: Optional error data
    """
    code = "RPC_APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        rpc_code: Optional[int] = None,
        data: Any = None,
    ):
        super().__init__(message, method=method)
        self.rpc_code = rpc_code
        self.data = data
        if rpc_code is not None:
            self.context["rpc_code"] = rpc_code


class RPCConnectionTimeout(RPCError):
    """walletd did not accept a connection before the readiness deadline."""
    code = "RPC_CONNECTION_TIMEOUT"

    def __init__(self, address: str, timeout: float):
        super().__init__(
            "rpc connection timeout",
            context={"address": address, "timeout_s": timeout},
        )
        self.address = address
        self.timeout = timeout
