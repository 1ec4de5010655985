"""
Models for the wallet orchestration engine.

Defines the persisted Wallet record and its status state machine, the
runtime views (LoadedWallet, DetailedWallet), walletd RPC result schemas,
and the change events emitted by the status watcher.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
from pydantic import BaseModel, ConfigDict, Field
import uuid

from ..errors import InvalidStatusTransition


# =============================================================================
# Wallet Status
# =============================================================================

class WalletStatus(str, Enum):
    """Wallet status. CREATING only exists while a create/import saga runs."""
    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class WalletStateMachine:
    """
    Valid wallet status transitions.

        CREATING -> RUNNING
        RUNNING  -> STOPPED | ERROR
        STOPPED  -> RUNNING
        ERROR    -> RUNNING   (successful detail refresh)
                 -> STOPPED   (explicit stop)

    A transition to the current status is a no-op and always allowed.
    """

    _TRANSITIONS: Dict[WalletStatus, FrozenSet[WalletStatus]] = {
        WalletStatus.CREATING: frozenset({WalletStatus.RUNNING}),
        WalletStatus.RUNNING: frozenset({WalletStatus.STOPPED, WalletStatus.ERROR}),
        WalletStatus.STOPPED: frozenset({WalletStatus.RUNNING}),
        WalletStatus.ERROR: frozenset({WalletStatus.RUNNING, WalletStatus.STOPPED}),
    }

    @classmethod
    def can_transition(cls, from_status: WalletStatus, to_status: WalletStatus) -> bool:
        """Check if transition is valid."""
        if from_status == to_status:
            return True
        return to_status in cls._TRANSITIONS.get(from_status, frozenset())

    @classmethod
    def validate_transition(
        cls,
        from_status: WalletStatus,
        to_status: WalletStatus,
        wallet_id: Optional[str] = None,
    ) -> None:
        """Validate transition, raise if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStatusTransition(
                wallet_id,
                message=f"invalid status transition: {from_status.value} -> {to_status.value}",
            )


# =============================================================================
# Persisted Wallet
# =============================================================================

class Wallet(BaseModel):
    """A wallet record as persisted in the wallet store."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    owner: str
    address: str = ""
    status: WalletStatus = WalletStatus.CREATING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def assign_address(self, address: str) -> None:
        """Set the blockchain address. Allowed exactly once, never empty."""
        if not address:
            raise ValueError(f"wallet {self.id}: address must not be empty")
        if self.address:
            raise ValueError(f"wallet {self.id}: address already assigned")
        self.address = address

    def transition_to(self, new_status: WalletStatus) -> None:
        """
        Transition to a new status with validation.

        Raises:
            InvalidStatusTransition: If the transition is not allowed, or the
                wallet would become RUNNING without an address.
        """
        WalletStateMachine.validate_transition(self.status, new_status, self.id)
        if new_status == WalletStatus.RUNNING and not self.address:
            raise InvalidStatusTransition(
                self.id, message="wallet cannot be running without an address"
            )
        self.status = new_status

    def with_status(self, status: WalletStatus) -> "Wallet":
        """Copy carrying a derived (observed, not persisted) status."""
        return self.model_copy(update={"status": status})


class BlockHeight(BaseModel):
    current: int = 0
    top: int = 0


class Balance(BaseModel):
    total: int = 0
    locked: int = 0


# =============================================================================
# Runtime views
# =============================================================================

@dataclass
class LoadedWallet:
    """
    A wallet with a live container behind it.

    Exists only while the wallet's container is instantiated. ``container``
    is the Docker SDK container object, ``rpc`` the walletd client bound to
    it once the readiness probe succeeded.
    """
    wallet: Wallet
    container: Optional[Any] = field(default=None, repr=False)
    rpc: Optional[Any] = field(default=None, repr=False)

    @property
    def id(self) -> str:
        return self.wallet.id

    @property
    def status(self) -> WalletStatus:
        return self.wallet.status


@dataclass
class DetailedWallet(LoadedWallet):
    """LoadedWallet plus metrics pulled from walletd. Never persisted."""
    block_height: BlockHeight = field(default_factory=BlockHeight)
    peer_count: int = 0
    balance: Balance = field(default_factory=Balance)

    @classmethod
    def from_loaded(cls, loaded: LoadedWallet) -> "DetailedWallet":
        return cls(wallet=loaded.wallet, container=loaded.container, rpc=loaded.rpc)

    def metrics(self) -> Dict[str, Any]:
        """Comparable snapshot of the observed state."""
        return {
            "status": self.wallet.status.value,
            "block_height": self.block_height.model_dump(),
            "peer_count": self.peer_count,
            "balance": self.balance.model_dump(),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {**self.wallet.model_dump(mode="json"), **self.metrics()}


# =============================================================================
# walletd RPC results
# =============================================================================

class GetAddressesResponse(BaseModel):
    addresses: List[str] = Field(default_factory=list)


class CreateAddressResponse(BaseModel):
    address: str


class GetStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    block_count: int = Field(alias="blockCount")
    known_block_count: int = Field(alias="knownBlockCount")
    peer_count: int = Field(alias="peerCount")


class GetBalanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    available_balance: int = Field(alias="availableBalance")
    locked_amount: int = Field(alias="lockedAmount")


# =============================================================================
# Watcher events
# =============================================================================

class WalletEventType(str, Enum):
    """Types of wallet change events."""
    WALLET_DETAILS_CHANGED = "wallet_details_changed"
    WALLET_STATUS_CHANGED = "wallet_status_changed"


class WalletEvent(BaseModel):
    """Change notification emitted by the status watcher."""
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: WalletEventType
    wallet_id: str
    owner: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = Field(default_factory=dict)
