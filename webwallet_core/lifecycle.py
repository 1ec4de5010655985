"""
Container lifecycle management for walletd satellites.

Wraps the Docker SDK to provision, start, query and remove the one
container (plus volume and network attachment) that hosts a wallet's
walletd. The container name is the wallet id; the volume is named
``<wallet id><volume_suffix>``.

The Docker SDK is blocking, so every call is dispatched to the default
executor to keep the event loop free.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

import docker
from docker.errors import DockerException
from docker.models.containers import Container
from docker.types import Mount

from .config import WebwalletConfig, get_config
from .errors import ContainerRuntimeError, CouldNotKillWallet
from .models.schemas import LoadedWallet, Wallet

logger = logging.getLogger("Webwallet.Lifecycle")

T = TypeVar("T")

# Docker container states used for lookups
DOCKER_RUNNING = "running"
DOCKER_EXITED = "exited"
DOCKER_CREATED = "created"

# States a container can be left in by a failed or finished instantiation
KILLABLE_STATES = (DOCKER_RUNNING, DOCKER_EXITED, DOCKER_CREATED)


class ContainerLifecycleManager:
    """Manages Docker resources for walletd satellites."""

    def __init__(
        self,
        docker_client: Optional[docker.DockerClient] = None,
        config: Optional[WebwalletConfig] = None,
    ):
        self.config = config or get_config()
        self._client = docker_client
        self._owns_client = docker_client is None

    @property
    def client(self) -> docker.DockerClient:
        """Get or create Docker client."""
        if self._client is None:
            try:
                if self.config.docker_base_url:
                    self._client = docker.DockerClient(base_url=self.config.docker_base_url)
                else:
                    self._client = docker.from_env()
            except DockerException as e:
                logger.error(f"Failed to connect to Docker: {e}")
                raise
        return self._client

    def close(self) -> None:
        """Close the Docker client if this manager created it."""
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    async def _run(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Run a blocking Docker SDK call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    def volume_name(self, wallet_id: str) -> str:
        return f"{wallet_id}{self.config.volume_suffix}"

    def _command(self, password: str) -> List[str]:
        return [*self.config.satellite_command, f"{self.config.password_flag}={password}"]

    def _label_filters(self) -> List[str]:
        return [f"{k}={v}" for k, v in self.config.satellite_labels.items()]

    # ------------------------------------------------------------------
    # Image
    # ------------------------------------------------------------------

    async def ensure_image(self) -> None:
        """Pull the satellite image."""
        image = self.config.satellite_image
        logger.info(f"Pulling satellite docker image {image}")
        try:
            await self._run(self.client.images.pull, image)
        except DockerException as e:
            logger.error(f"Could not pull satellite image {image}: {e}")
            raise ContainerRuntimeError(step="pull_image", message=str(e)) from e

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def create_volume(self, wallet_id: str) -> str:
        """Create the persistent volume for a wallet and return its name."""
        name = self.volume_name(wallet_id)
        logger.info(f"Creating new volume for wallet with id '{wallet_id}'")
        try:
            await self._run(
                self.client.volumes.create,
                name=name,
                labels=dict(self.config.satellite_labels),
            )
        except DockerException as e:
            logger.error(f"Could not create volume {name}: {e}")
            raise ContainerRuntimeError(wallet_id, "create_volume", str(e)) from e
        logger.debug(f"Created new volume for wallet with id '{wallet_id}' successfully")
        return name

    async def instantiate_container(self, wallet: Wallet, password: str) -> LoadedWallet:
        """
        Create, attach and start the walletd container for a wallet.

        Not idempotent: the container is named after the wallet id, so a
        second call for the same wallet collides on the name. When a step
        after container creation fails, the container is force-removed
        before the error is raised; the volume is kept.

        Raises:
            ContainerRuntimeError: A Docker call failed (container removed).
            CouldNotKillWallet: A Docker call failed and so did the removal.
        """
        config = self.config
        container_name = wallet.id

        try:
            container = await self._run(
                self.client.containers.create,
                config.satellite_image,
                command=self._command(password),
                name=container_name,
                labels=dict(config.satellite_labels),
                mounts=[
                    Mount(
                        target=config.satellite_data_path,
                        source=self.volume_name(wallet.id),
                        type="volume",
                    )
                ],
            )
        except DockerException as e:
            logger.error(f"Could not create container for wallet {wallet.id}: {e}")
            raise ContainerRuntimeError(wallet.id, "create_container", str(e)) from e

        step = "connect_network"
        try:
            logger.info(
                f"Attaching network '{config.network}' to container for wallet with id '{wallet.id}'"
            )
            network = await self._run(self.client.networks.get, config.network)
            await self._run(network.connect, container)

            step = "start_container"
            logger.info(f"Starting container for wallet with id '{wallet.id}'")
            await self._run(container.start)
        except DockerException as e:
            logger.error(f"Could not {step.replace('_', ' ')} for wallet {wallet.id}: {e}")
            failure = ContainerRuntimeError(wallet.id, step, str(e))
            await self._discard(container, wallet.id, failure)
            raise failure from e

        logger.debug(f"Started container for wallet with id '{wallet.id}'")
        return LoadedWallet(wallet=wallet, container=container)

    async def _discard(self, container: Container, wallet_id: str, failure: Exception) -> None:
        try:
            await self._run(container.remove, force=True)
        except DockerException as e:
            logger.error(f"Could not remove half-provisioned container {wallet_id}: {e}")
            raise CouldNotKillWallet(
                wallet_id, "remove_container", str(e), original_error=failure
            ) from failure

    # ------------------------------------------------------------------
    # Runtime state
    # ------------------------------------------------------------------

    async def list_containers(
        self, wallet_id: str, states: Iterable[str]
    ) -> List[Container]:
        """List satellite containers named after ``wallet_id`` in ``states``."""
        filters: Dict[str, Any] = {
            "name": f"^/{wallet_id}$",
            "status": list(states),
            "label": self._label_filters(),
        }
        try:
            return await self._run(self.client.containers.list, all=True, filters=filters)
        except DockerException as e:
            raise ContainerRuntimeError(wallet_id, "list_containers", str(e)) from e

    async def check_running(self, wallet: Wallet) -> Optional[Container]:
        """
        Return the wallet's running container, or None when it is not running.

        Not running is a normal outcome. A failing Docker query raises
        ContainerRuntimeError so callers can tell "stopped" from "unknown".
        """
        containers = await self.list_containers(wallet.id, [DOCKER_RUNNING])
        if not containers:
            return None
        return containers[0]

    async def remove(self, container: Container, force: bool = True) -> None:
        """Remove a container (force also stops it)."""
        name = getattr(container, "name", None) or getattr(container, "id", "?")
        try:
            await self._run(container.remove, force=force)
        except DockerException as e:
            raise ContainerRuntimeError(name, "remove_container", str(e)) from e
        logger.info(f"Removed container {name}")

    async def kill(self, wallet_id: str, original_error: Optional[BaseException] = None) -> None:
        """
        Compensating teardown: force-remove the wallet's container.

        The volume is intentionally left in place.

        Raises:
            CouldNotKillWallet: No container was found or removal failed;
                ``original_error`` is attached for the caller.
        """
        try:
            containers = await self.list_containers(wallet_id, KILLABLE_STATES)
        except ContainerRuntimeError as e:
            logger.error(f"Could not look up container of wallet {wallet_id}: {e}")
            raise CouldNotKillWallet(
                wallet_id, "list_containers", str(e), original_error=original_error
            ) from (original_error or e)

        if not containers:
            logger.error(f"Could not find container for wallet {wallet_id}")
            raise CouldNotKillWallet(
                wallet_id, "find_container", "no container to remove",
                original_error=original_error,
            ) from original_error

        try:
            await self._run(containers[0].remove, force=True)
        except DockerException as e:
            logger.error(f"Could not kill wallet {wallet_id}: {e}")
            raise CouldNotKillWallet(
                wallet_id, "remove_container", str(e), original_error=original_error
            ) from (original_error or e)

        logger.info(f"Killed container of wallet {wallet_id}")

    # ------------------------------------------------------------------
    # Address resolution
    # ------------------------------------------------------------------

    async def resolve_endpoint(self, wallet_id: str) -> str:
        """Hostname or IP at which the wallet's walletd is reachable."""
        if self.config.internal_resolver:
            return wallet_id

        logger.debug("Using 'ip' resolver to get the satellite's endpoint address")
        try:
            container = await self._run(self.client.containers.get, wallet_id)
        except DockerException as e:
            raise ContainerRuntimeError(wallet_id, "inspect_container", str(e)) from e

        networks = container.attrs.get("NetworkSettings", {}).get("Networks", {})
        ip_address = (networks.get(self.config.network) or {}).get("IPAddress")
        if not ip_address:
            raise ContainerRuntimeError(
                wallet_id,
                "inspect_container",
                f"container has no address on network '{self.config.network}'",
            )
        return ip_address

    async def rpc_address(self, wallet_id: str) -> str:
        """Full walletd JSON-RPC URL for a wallet."""
        host = await self.resolve_endpoint(wallet_id)
        if ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{self.config.rpc_port}{self.config.rpc_path}"
