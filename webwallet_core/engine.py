"""
Engine assembly.

``wallet_engine`` wires the lifecycle manager, wallet store, event
broadcaster, status watcher and orchestrator together and owns their
startup and shutdown. An API layer enters it once for the lifetime of the
process:

    async with wallet_engine() as engine:
        wallet = await engine.orchestrator.create_wallet("main", password, user_id)
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import docker

from .config import WebwalletConfig, get_config
from .errors import ContainerRuntimeError
from .events import EventBroadcaster, EventSink
from .lifecycle import ContainerLifecycleManager
from .logging_setup import setup_logging
from .orchestrator import WalletOrchestrator
from .status_watcher import StatusWatcher
from .store import JsonFileWalletStore, WalletStore

logger = logging.getLogger("Webwallet.Engine")


@dataclass
class Engine:
    config: WebwalletConfig
    lifecycle: ContainerLifecycleManager
    store: WalletStore
    events: Optional[EventSink]
    watcher: StatusWatcher
    orchestrator: WalletOrchestrator


@asynccontextmanager
async def wallet_engine(
    config: Optional[WebwalletConfig] = None,
    docker_client: Optional[docker.DockerClient] = None,
    store: Optional[WalletStore] = None,
    event_sink: Optional[EventSink] = None,
    configure_logging: bool = False,
) -> AsyncIterator[Engine]:
    """Start the wallet engine and stop its watcher on exit."""
    config = config or get_config()
    if configure_logging:
        setup_logging(level=config.log_level, secret_flags=[config.password_flag])

    logger.info("Webwallet engine starting up...")

    lifecycle = ContainerLifecycleManager(docker_client, config=config)
    if config.pull_image_on_startup:
        try:
            await lifecycle.ensure_image()
        except ContainerRuntimeError:
            lifecycle.close()
            raise

    if store is None:
        json_store = JsonFileWalletStore(config=config)
        await json_store.initialize()
        store = json_store
        logger.info(f"Wallet store initialized at {json_store.path}")

    if event_sink is None:
        event_sink = EventBroadcaster()

    watcher = StatusWatcher(event_sink=event_sink, config=config)
    orchestrator = WalletOrchestrator(lifecycle, store, watcher, config=config)
    await watcher.run()

    logger.info("Webwallet engine ready")
    try:
        yield Engine(
            config=config,
            lifecycle=lifecycle,
            store=store,
            events=event_sink,
            watcher=watcher,
            orchestrator=orchestrator,
        )
    finally:
        logger.info("Webwallet engine shutting down...")
        await watcher.close()
        lifecycle.close()
