"""Wallet detail refresh shared by the orchestrator and the status watcher."""

import logging

from .errors import RPCError, WalletDetailsUnavailable
from .models.schemas import Balance, BlockHeight, DetailedWallet, LoadedWallet, WalletStatus
from .walletd_rpc import WalletdRPC

logger = logging.getLogger("Webwallet.Details")


async def fetch_details(wallet: LoadedWallet, rpc: WalletdRPC) -> DetailedWallet:
    """
    Pull block height, peer count and balance from walletd.

    On success the wallet is RUNNING. When an RPC call fails the wallet is
    marked ERROR and WalletDetailsUnavailable is raised carrying the partial
    DetailedWallet (whatever was retrieved before the failure).
    """
    detailed = DetailedWallet.from_loaded(wallet)

    try:
        status = await rpc.get_status()
    except RPCError as e:
        logger.warning(f"Could not fetch status of wallet {wallet.id}: {e}")
        wallet.wallet.transition_to(WalletStatus.ERROR)
        raise WalletDetailsUnavailable(wallet.id, "get_status", partial=detailed) from e

    detailed.block_height = BlockHeight(current=status.block_count, top=status.known_block_count)
    detailed.peer_count = status.peer_count

    try:
        balance = await rpc.get_balance()
    except RPCError as e:
        logger.warning(f"Could not fetch balance of wallet {wallet.id}: {e}")
        wallet.wallet.transition_to(WalletStatus.ERROR)
        raise WalletDetailsUnavailable(wallet.id, "get_balance", partial=detailed) from e

    detailed.balance = Balance(total=balance.available_balance, locked=balance.locked_amount)
    wallet.wallet.transition_to(WalletStatus.RUNNING)
    return detailed
