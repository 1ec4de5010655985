"""
Status watcher for running wallets.

Background asyncio task that periodically refreshes every registered wallet
through its walletd client and broadcasts a WalletEvent whenever the
observed status or metrics differ from the previous observation.

The registry is guarded by one lock. A poll cycle snapshots the registered
ids, then takes each entry under the lock and re-checks it under the lock
before recording the result, so registration and polling interleave only
at whole-wallet granularity: a wallet evicted or replaced while its poll was
in flight produces no event.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .config import WebwalletConfig, get_config
from .details import fetch_details
from .errors import WalletDetailsUnavailable, WebwalletError
from .events import EventSink
from .models.schemas import DetailedWallet, LoadedWallet, Wallet, WalletEvent, WalletEventType

logger = logging.getLogger("Webwallet.Watcher")


class StatusWatcher:
    """Keeps the details of running wallets fresh and reports changes."""

    def __init__(
        self,
        event_sink: Optional[EventSink] = None,
        poll_interval: Optional[float] = None,
        config: Optional[WebwalletConfig] = None,
    ) -> None:
        config = config or get_config()
        self._event_sink = event_sink
        self.poll_interval = (
            poll_interval if poll_interval is not None else config.watcher_poll_interval_seconds
        )
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

        # wallet id -> loaded wallet / last observed metrics
        self._wallets: Dict[str, LoadedWallet] = {}
        self._last_seen: Dict[str, Dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    async def add_wallet(self, loaded: LoadedWallet) -> None:
        """Register (or replace) a running wallet."""
        async with self._lock:
            previous = self._wallets.get(loaded.id)
            self._wallets[loaded.id] = loaded
            if isinstance(loaded, DetailedWallet):
                self._last_seen[loaded.id] = loaded.metrics()
            else:
                self._last_seen.pop(loaded.id, None)

        logger.info("Watching wallet %s", loaded.id)
        if previous is not None and previous.rpc is not None and previous.rpc is not loaded.rpc:
            await previous.rpc.aclose()

    async def remove_wallet(self, wallet: Wallet) -> None:
        """Stop watching a wallet. Unknown wallets are ignored."""
        async with self._lock:
            evicted = self._wallets.pop(wallet.id, None)
            self._last_seen.pop(wallet.id, None)

        if evicted is None:
            return
        logger.info("Stopped watching wallet %s", wallet.id)
        if evicted.rpc is not None:
            await evicted.rpc.aclose()

    def is_watching(self, wallet_id: str) -> bool:
        return wallet_id in self._wallets

    def watched_ids(self) -> List[str]:
        return list(self._wallets)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start the reconciliation loop in the background."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._poll_loop(), name="status-watcher")
        logger.info("Status watcher started (interval=%ss)", self.poll_interval)

    async def close(self) -> None:
        """Stop the loop and close the walletd clients of all watched wallets."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Status watcher stopped")

        async with self._lock:
            wallets = list(self._wallets.values())
            self._wallets.clear()
            self._last_seen.clear()

        for loaded in wallets:
            if loaded.rpc is not None:
                await loaded.rpc.aclose()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        """Main polling loop - runs until cancelled."""
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Status poll cycle failed")
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> int:
        """Run one reconciliation cycle. Returns the number of events sent."""
        async with self._lock:
            wallet_ids = list(self._wallets)

        sent = 0
        for wallet_id in wallet_ids:
            async with self._lock:
                loaded = self._wallets.get(wallet_id)
            if loaded is None:
                continue
            try:
                if await self._poll_wallet(loaded):
                    sent += 1
            except WebwalletError:
                logger.exception("Polling wallet %s failed", wallet_id)
        return sent

    async def _poll_wallet(self, loaded: LoadedWallet) -> bool:
        """Refresh one wallet; broadcast if anything changed."""
        if loaded.rpc is None:
            logger.debug("Wallet %s has no walletd client, skipping", loaded.id)
            return False

        error: Optional[WalletDetailsUnavailable] = None
        try:
            detailed = await fetch_details(loaded, loaded.rpc)
        except WalletDetailsUnavailable as e:
            detailed = e.partial
            error = e

        observed = detailed.metrics()
        async with self._lock:
            if self._wallets.get(loaded.id) is not loaded:
                # Evicted or replaced while the poll was in flight
                return False
            previous = self._last_seen.get(loaded.id)
            self._last_seen[loaded.id] = observed

        if previous is None:
            logger.info("Initial status of wallet %s: %s", loaded.id, observed["status"])
            return False
        if previous == observed:
            return False

        if previous["status"] != observed["status"]:
            logger.warning(
                "Wallet %s changed: %s -> %s", loaded.id, previous["status"], observed["status"],
            )
            event_type = WalletEventType.WALLET_STATUS_CHANGED
        else:
            event_type = WalletEventType.WALLET_DETAILS_CHANGED

        data: Dict[str, Any] = {"previous": previous, "current": observed}
        if error is not None:
            data["error"] = str(error.__cause__ or error)

        return await self._broadcast(
            WalletEvent(
                event_type=event_type,
                wallet_id=loaded.id,
                owner=loaded.wallet.owner,
                data=data,
            )
        )

    async def _broadcast(self, event: WalletEvent) -> bool:
        if self._event_sink is None:
            return False
        try:
            await self._event_sink.broadcast(event)
        except Exception:
            logger.warning("Failed to broadcast wallet event", exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Return the last observation of every watched wallet."""
        return {
            "running": self.running,
            "poll_interval": self.poll_interval,
            "wallets": {
                wallet_id: self._last_seen.get(wallet_id)
                for wallet_id in self._wallets
            },
        }
