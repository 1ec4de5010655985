"""
Wallet orchestration.

Implements the wallet lifecycle operations as short sagas over the
container lifecycle manager, walletd RPC clients, the wallet store and the
status watcher. None of the steps is transactional: when a step after
container instantiation fails, the container is force-removed (the
compensating "kill") before the error is raised. Volumes are retained.

Errors raised are WalletError subclasses. When the kill itself fails,
CouldNotKillWallet is raised instead, with the original failure attached as
``original_error`` and chained as ``__cause__``.
"""

import asyncio
import logging
import weakref
from typing import Awaitable, Callable, List, NoReturn, Optional, Type

from .config import WebwalletConfig, get_config
from .details import fetch_details
from .errors import (
    ContainerRuntimeError,
    CouldNotCreateWallet,
    CouldNotSaveWallet,
    CouldNotStartWallet,
    CouldNotStopWallet,
    NoAddressProduced,
    RPCError,
    WalletAlreadyRunning,
    WalletDetailsUnavailable,
    WalletError,
    WalletNotFound,
    WalletNotRunning,
)
from .lifecycle import ContainerLifecycleManager
from .models.schemas import DetailedWallet, LoadedWallet, Wallet, WalletStatus
from .status_watcher import StatusWatcher
from .store import WalletStore
from .walletd_rpc import WalletdRPC, connect_walletd

logger = logging.getLogger("Webwallet.Orchestrator")

RPCFactory = Callable[[str], Awaitable[WalletdRPC]]


class WalletOrchestrator:
    """Create/Import/Start/Stop/Get/List for containerized wallets."""

    def __init__(
        self,
        lifecycle: ContainerLifecycleManager,
        store: WalletStore,
        watcher: StatusWatcher,
        rpc_factory: Optional[RPCFactory] = None,
        config: Optional[WebwalletConfig] = None,
    ):
        """
        Args:
            lifecycle: Provisions and queries wallet containers
            store: Wallet persistence
            watcher: Registry of running wallets
            rpc_factory: Builds a walletd client for an RPC URL, waiting for
                readiness. Defaults to ``connect_walletd`` with config timeouts.
            config: Engine configuration
        """
        self.config = config or get_config()
        self.lifecycle = lifecycle
        self.store = store
        self.watcher = watcher
        self._rpc_factory = rpc_factory or self._connect
        # Entries live only while a Start/Stop holds or awaits the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def _connect(self, address: str) -> WalletdRPC:
        return await connect_walletd(
            address,
            readiness_timeout=self.config.readiness_timeout_seconds,
            attempt_timeout=self.config.readiness_attempt_timeout_seconds,
            retry_delay=self.config.readiness_retry_delay_seconds,
            rpc_timeout=self.config.rpc_timeout_seconds,
        )

    def _wallet_lock(self, wallet_id: str) -> asyncio.Lock:
        lock = self._locks.get(wallet_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[wallet_id] = lock
        return lock

    # =========================================================================
    # Building blocks
    # =========================================================================

    async def new_walletd_client(self, wallet_id: str) -> WalletdRPC:
        """Resolve the wallet's RPC endpoint and connect once walletd is up."""
        address = await self.lifecycle.rpc_address(wallet_id)
        return await self._rpc_factory(address)

    async def fetch_details(self, wallet: LoadedWallet, rpc: WalletdRPC) -> DetailedWallet:
        """See :func:`webwallet_core.details.fetch_details`."""
        return await fetch_details(wallet, rpc)

    async def _find(self, wallet_id: str, owner_id: str) -> Wallet:
        wallet = await self.store.find_wallet_by_owner(wallet_id, owner_id)
        if wallet is None:
            logger.warning(f"Could not find wallet {wallet_id} for user {owner_id}")
            raise WalletNotFound(wallet_id, "find_wallet")
        return wallet

    async def _abort(
        self,
        wallet: Wallet,
        error: WalletError,
        cause: Optional[BaseException] = None,
        rpc: Optional[WalletdRPC] = None,
    ) -> NoReturn:
        """Kill the wallet's container, then raise ``error``.

        If the kill fails, CouldNotKillWallet propagates instead.
        """
        logger.error(f"Aborting wallet {wallet.id} at step '{error.step}': {cause or error}")
        if rpc is not None:
            await rpc.aclose()
        await self.watcher.remove_wallet(wallet)
        await self.lifecycle.kill(wallet.id, original_error=error)
        if cause is not None:
            raise error from cause
        raise error

    async def _record_status(self, wallet: Wallet) -> bool:
        """Persist the wallet's current status. Failures are logged, not raised."""
        try:
            await self.store.update_wallet_status(wallet.id, wallet.status)
        except (KeyError, ValueError, OSError):
            logger.exception(f"Could not persist status {wallet.status.value} of wallet {wallet.id}")
            return False
        return True

    async def _create_volume(self, wallet: Wallet) -> None:
        try:
            await self.lifecycle.create_volume(wallet.id)
        except ContainerRuntimeError as e:
            raise CouldNotCreateWallet(wallet.id, "create_volume") from e

    async def _launch(
        self,
        wallet: Wallet,
        password: str,
        error_cls: Type[WalletError],
    ) -> LoadedWallet:
        """Container -> walletd client. Failures are raised as ``error_cls``."""
        try:
            loaded = await self.lifecycle.instantiate_container(wallet, password)
        except ContainerRuntimeError as e:
            raise error_cls(wallet.id, e.step) from e

        try:
            loaded.rpc = await self.new_walletd_client(wallet.id)
        except (RPCError, ContainerRuntimeError) as e:
            await self._abort(wallet, error_cls(wallet.id, "connect_rpc"), e)
        return loaded

    async def _commit_new_wallet(self, loaded: LoadedWallet) -> DetailedWallet:
        """Persist a provisioned wallet, load its details and start watching it."""
        wallet = loaded.wallet
        rpc = loaded.rpc

        wallet.transition_to(WalletStatus.RUNNING)
        try:
            await self.store.insert_wallet(wallet)
        except Exception as e:
            await self._abort(wallet, CouldNotCreateWallet(wallet.id, "persist"), e, rpc)

        try:
            detailed = await fetch_details(loaded, rpc)
        except WalletDetailsUnavailable as e:
            await self._record_status(wallet)
            await self._abort(wallet, e, rpc=rpc)

        await self.watcher.add_wallet(detailed)
        logger.info(f"Wallet {wallet.id} is running with address {wallet.address}")
        return detailed

    def _warn_retained_volume(self, wallet: Wallet) -> None:
        logger.warning(
            f"Wallet {wallet.id} was not created; volume "
            f"'{self.lifecycle.volume_name(wallet.id)}' is retained"
        )

    # =========================================================================
    # Create / Import
    # =========================================================================

    async def create_wallet(self, name: str, password: str, owner_id: str) -> DetailedWallet:
        """Provision a new wallet whose walletd generates the keys."""
        wallet = Wallet(name=name, owner=owner_id)
        logger.info(f"Creating wallet {wallet.id} ('{name}') for user {owner_id}")

        await self._create_volume(wallet)
        try:
            loaded = await self._launch(wallet, password, CouldNotCreateWallet)
            rpc = loaded.rpc
            try:
                addresses = await rpc.get_addresses()
            except RPCError as e:
                await self._abort(wallet, CouldNotCreateWallet(wallet.id, "get_addresses"), e, rpc)

            if not addresses or not addresses[0]:
                await self._abort(wallet, NoAddressProduced(wallet.id, "get_addresses"), rpc=rpc)

            wallet.assign_address(addresses[0])
            return await self._commit_new_wallet(loaded)
        except WalletError:
            self._warn_retained_volume(wallet)
            raise

    async def import_wallet(
        self,
        name: str,
        view_secret_key: str,
        spend_secret_key: str,
        password: str,
        owner_id: str,
    ) -> DetailedWallet:
        """Provision a new wallet and restore it from existing secret keys."""
        wallet = Wallet(name=name, owner=owner_id)
        logger.info(f"Importing wallet {wallet.id} ('{name}') for user {owner_id}")

        await self._create_volume(wallet)
        try:
            loaded = await self._launch(wallet, password, CouldNotCreateWallet)
            rpc = loaded.rpc
            step = "reset"
            try:
                await rpc.reset(view_secret_key)
                step = "create_address"
                address = await rpc.create_address(spend_secret_key)
                step = "save"
                await rpc.save()
            except RPCError as e:
                await self._abort(wallet, CouldNotCreateWallet(wallet.id, step), e, rpc)

            if not address:
                await self._abort(wallet, NoAddressProduced(wallet.id, "create_address"), rpc=rpc)

            wallet.assign_address(address)
            return await self._commit_new_wallet(loaded)
        except WalletError:
            self._warn_retained_volume(wallet)
            raise

    # =========================================================================
    # Read
    # =========================================================================

    async def _derive_status(self, wallet: Wallet) -> Wallet:
        try:
            container = await self.lifecycle.check_running(wallet)
        except ContainerRuntimeError as e:
            logger.warning(f"Could not check status of wallet {wallet.id}: {e}")
            return wallet.with_status(WalletStatus.ERROR)
        return wallet.with_status(WalletStatus.RUNNING if container else WalletStatus.STOPPED)

    async def get_wallets(self, owner_id: str) -> List[Wallet]:
        """All wallets of an owner with status derived from the runtime."""
        wallets = await self.store.find_wallets_by_owner(owner_id)
        return list(await asyncio.gather(*(self._derive_status(w) for w in wallets)))

    async def get_wallet(self, wallet_id: str, owner_id: str) -> DetailedWallet:
        """
        Details of a running wallet.

        Raises WalletNotRunning when its container is not running. When the
        runtime or walletd cannot be reached the wallet is returned with
        status ERROR and whatever details could be fetched.
        """
        wallet = await self._find(wallet_id, owner_id)

        try:
            container = await self.lifecycle.check_running(wallet)
        except ContainerRuntimeError as e:
            logger.warning(f"Could not check status of wallet {wallet_id}: {e}")
            return DetailedWallet(wallet=wallet.with_status(WalletStatus.ERROR))

        if container is None:
            raise WalletNotRunning(wallet_id, "check_running")

        loaded = LoadedWallet(wallet=wallet.with_status(WalletStatus.RUNNING), container=container)

        try:
            rpc = await self.new_walletd_client(wallet_id)
        except (RPCError, ContainerRuntimeError) as e:
            logger.warning(f"Could not connect to walletd of wallet {wallet_id}: {e}")
            loaded.wallet.transition_to(WalletStatus.ERROR)
            return DetailedWallet.from_loaded(loaded)

        try:
            return await fetch_details(loaded, rpc)
        except WalletDetailsUnavailable as e:
            return e.partial
        finally:
            await rpc.aclose()

    # =========================================================================
    # Start / Stop
    # =========================================================================

    async def start_wallet(self, wallet_id: str, password: str, owner_id: str) -> DetailedWallet:
        """Bring a stopped wallet's container back up."""
        async with self._wallet_lock(wallet_id):
            wallet = await self._find(wallet_id, owner_id)

            try:
                running = await self.lifecycle.check_running(wallet)
            except ContainerRuntimeError as e:
                raise CouldNotStartWallet(wallet_id, "check_running") from e
            if running is not None:
                raise WalletAlreadyRunning(wallet_id, "check_running")

            loaded = await self._launch(wallet, password, CouldNotStartWallet)
            rpc = loaded.rpc

            # ERROR only clears through a successful detail refresh
            if wallet.status == WalletStatus.STOPPED:
                wallet.transition_to(WalletStatus.RUNNING)

            try:
                detailed = await fetch_details(loaded, rpc)
            except WalletDetailsUnavailable as e:
                await self._record_status(wallet)
                await self._abort(wallet, e, rpc=rpc)

            await self._record_status(wallet)
            await self.watcher.add_wallet(detailed)
            logger.info(f"Started wallet {wallet_id}")
            return detailed

    async def stop_wallet(self, wallet_id: str, owner_id: str) -> Wallet:
        """
        Save and stop a wallet.

        walletd must save successfully before its container is removed;
        otherwise CouldNotSaveWallet is raised and nothing is removed. A
        wallet whose container is already gone is reported STOPPED.
        """
        async with self._wallet_lock(wallet_id):
            wallet = await self._find(wallet_id, owner_id)

            try:
                container = await self.lifecycle.check_running(wallet)
            except ContainerRuntimeError as e:
                logger.error(f"Could not stop wallet {wallet_id} due to: {e}")
                raise CouldNotStopWallet(wallet_id, "check_running") from e

            if container is None:
                await self.watcher.remove_wallet(wallet)
                wallet.transition_to(WalletStatus.STOPPED)
                await self._record_status(wallet)
                return wallet

            try:
                rpc = await self.new_walletd_client(wallet_id)
            except (RPCError, ContainerRuntimeError) as e:
                logger.warning(f"Could not reach walletd of wallet {wallet_id} to save: {e}")
                raise CouldNotSaveWallet(wallet_id, "connect_rpc") from e

            try:
                await rpc.save()
            except RPCError as e:
                logger.warning(f"Could not save wallet file {wallet_id} for user {owner_id}: {e}")
                raise CouldNotSaveWallet(wallet_id, "save") from e
            finally:
                await rpc.aclose()

            try:
                await self.lifecycle.remove(container, force=True)
            except ContainerRuntimeError as e:
                logger.error(f"Could not stop wallet {wallet_id} due to: {e}")
                raise CouldNotStopWallet(wallet_id, "remove_container") from e

            await self.watcher.remove_wallet(wallet)
            wallet.transition_to(WalletStatus.STOPPED)
            await self._record_status(wallet)
            logger.info(f"Stopped wallet {wallet_id}")
            return wallet
