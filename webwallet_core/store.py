"""
Wallet persistence.

``WalletStore`` is the contract the orchestrator persists through. Two
implementations ship here: an in-memory store and a JSON file store that
writes atomically (temp file + rename) after every mutation. Records handed
out are copies; mutating them does not touch stored state.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol
import asyncio

from pydantic import BaseModel, Field

from .config import WebwalletConfig, get_config
from .models.schemas import Wallet, WalletStatus

logger = logging.getLogger("Webwallet.Store")


class WalletStore(Protocol):
    """Persistence collaborator used by the orchestrator."""

    async def insert_wallet(self, wallet: Wallet) -> None: ...

    async def find_wallets_by_owner(self, owner_id: str) -> List[Wallet]: ...

    async def find_wallet_by_owner(self, wallet_id: str, owner_id: str) -> Optional[Wallet]: ...

    async def update_wallet_status(self, wallet_id: str, status: WalletStatus) -> None: ...


class WalletStoreState(BaseModel):
    """On-disk layout of the JSON store."""
    wallets: Dict[str, Wallet] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryWalletStore:
    """Wallet store kept in process memory."""

    def __init__(self):
        self._state = WalletStoreState()
        self._lock = asyncio.Lock()

    async def _persist(self, state: WalletStoreState) -> None:
        """Hook run after each mutation, under the lock."""

    @asynccontextmanager
    async def modify(self):
        """
        Context manager for modifying state with automatic persist.

        Changes are made to a copy that replaces the current state only once
        it has been persisted; a failed persist leaves the store unchanged.
        """
        async with self._lock:
            draft = self._state.model_copy(deep=True)
            yield draft
            draft.last_updated = datetime.now(timezone.utc)
            await self._persist(draft)
            self._state = draft

    async def insert_wallet(self, wallet: Wallet) -> None:
        """
        Persist a new wallet.

        Raises:
            ValueError: The wallet is still CREATING, or the id is taken.
            OSError: The store could not be written; nothing was inserted.
        """
        if wallet.status == WalletStatus.CREATING:
            raise ValueError(f"wallet {wallet.id} is still being created")
        async with self.modify() as state:
            if wallet.id in state.wallets:
                raise ValueError(f"wallet {wallet.id} already exists")
            state.wallets[wallet.id] = wallet.model_copy(deep=True)
        logger.debug(f"Inserted wallet {wallet.id} for owner {wallet.owner}")

    async def find_wallets_by_owner(self, owner_id: str) -> List[Wallet]:
        async with self._lock:
            return [
                w.model_copy(deep=True)
                for w in self._state.wallets.values()
                if w.owner == owner_id
            ]

    async def find_wallet_by_owner(self, wallet_id: str, owner_id: str) -> Optional[Wallet]:
        async with self._lock:
            wallet = self._state.wallets.get(wallet_id)
            if wallet is None or wallet.owner != owner_id:
                return None
            return wallet.model_copy(deep=True)

    async def update_wallet_status(self, wallet_id: str, status: WalletStatus) -> None:
        """
        Record the last known status of a wallet.

        Raises:
            KeyError: No wallet with that id.
            ValueError: status is CREATING.
            OSError: The store could not be written; the status is unchanged.
        """
        if status == WalletStatus.CREATING:
            raise ValueError("CREATING is never persisted")
        async with self.modify() as state:
            if wallet_id not in state.wallets:
                raise KeyError(wallet_id)
            state.wallets[wallet_id].status = status


class JsonFileWalletStore(InMemoryWalletStore):
    """Wallet store persisted to a JSON file."""

    def __init__(self, path: Optional[Path] = None, config: Optional[WebwalletConfig] = None):
        super().__init__()
        self.path = Path(path or (config or get_config()).store_path)

    async def initialize(self) -> None:
        """Load existing wallets if the file exists."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if not self.path.exists():
            logger.info(f"No wallet store at {self.path}, starting empty")
            return

        async with self._lock:
            content = self.path.read_text()
            self._state = WalletStoreState.model_validate(json.loads(content))
        logger.info(f"Loaded {len(self._state.wallets)} wallets from {self.path}")

    async def _persist(self, state: WalletStoreState) -> None:
        content = state.model_dump_json(indent=2)

        # Write atomically via temp file
        temp_file = self.path.with_suffix(".tmp")
        temp_file.write_text(content)
        temp_file.replace(self.path)
        logger.debug(f"Wallet store saved to {self.path}")
