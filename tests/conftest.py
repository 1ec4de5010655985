"""Shared fixtures: an in-process Docker double and a scriptable walletd."""

import re
from typing import Dict, List, Optional

import pytest
from docker.errors import APIError, NotFound

from webwallet_core.config import WebwalletConfig, reset_config
from webwallet_core.errors import RPCTransportError
from webwallet_core.lifecycle import ContainerLifecycleManager
from webwallet_core.models.schemas import GetBalanceResponse, GetStatusResponse
from webwallet_core.orchestrator import WalletOrchestrator
from webwallet_core.status_watcher import StatusWatcher
from webwallet_core.store import InMemoryWalletStore


# =============================================================================
# Docker double
# =============================================================================

class FakeContainer:
    def __init__(self, docker, name, image, command, labels, mounts):
        self._docker = docker
        self.name = name
        self.id = f"c-{name}"
        self.image = image
        self.command = command
        self.labels = labels or {}
        self.mounts = mounts or []
        self.status = "created"
        self.attrs = {"NetworkSettings": {"Networks": {}}}

    def start(self):
        self._docker.maybe_fail("start_container")
        self.status = "running"

    def remove(self, force=False):
        self._docker.maybe_fail("remove_container")
        if self.status == "running" and not force:
            raise APIError("You cannot remove a running container")
        self._docker.removed.append(self.name)
        self._docker.container_map.pop(self.name, None)


class FakeNetwork:
    def __init__(self, docker, name):
        self._docker = docker
        self.name = name

    def connect(self, container):
        self._docker.maybe_fail("connect_network")
        self._docker.ip_counter += 1
        container.attrs["NetworkSettings"]["Networks"][self.name] = {
            "IPAddress": f"172.18.0.{self._docker.ip_counter}",
        }


class _Containers:
    def __init__(self, docker):
        self._docker = docker

    def create(self, image, command=None, name=None, labels=None, mounts=None, **kwargs):
        self._docker.maybe_fail("create_container")
        if name in self._docker.container_map:
            raise APIError(f"Conflict. The container name \"/{name}\" is already in use")
        container = FakeContainer(self._docker, name, image, command, labels, mounts)
        self._docker.container_map[name] = container
        self._docker.created.append(name)
        return container

    def list(self, all=False, filters=None):
        self._docker.maybe_fail("list_containers")
        filters = filters or {}
        result = []
        for container in self._docker.container_map.values():
            if not all and container.status != "running":
                continue
            if "name" in filters and not re.search(filters["name"], f"/{container.name}"):
                continue
            if "status" in filters and container.status not in filters["status"]:
                continue
            wanted = dict(label.split("=", 1) for label in filters.get("label", []))
            if any(container.labels.get(k) != v for k, v in wanted.items()):
                continue
            result.append(container)
        return result

    def get(self, name):
        self._docker.maybe_fail("get_container")
        if name not in self._docker.container_map:
            raise NotFound(f"No such container: {name}")
        return self._docker.container_map[name]


class _Volumes:
    def __init__(self, docker):
        self._docker = docker

    def create(self, name=None, labels=None, **kwargs):
        self._docker.maybe_fail("create_volume")
        self._docker.volume_map[name] = labels or {}
        return name


class _Networks:
    def __init__(self, docker):
        self._docker = docker

    def get(self, name):
        self._docker.maybe_fail("get_network")
        return FakeNetwork(self._docker, name)


class _Images:
    def __init__(self, docker):
        self._docker = docker

    def pull(self, image, **kwargs):
        self._docker.maybe_fail("pull_image")
        self._docker.pulled.append(image)


class FakeDocker:
    """Just enough of docker.DockerClient for the lifecycle manager."""

    def __init__(self):
        self.container_map: Dict[str, FakeContainer] = {}
        self.volume_map: Dict[str, dict] = {}
        self.failures: Dict[str, Exception] = {}
        self.created: List[str] = []
        self.removed: List[str] = []
        self.pulled: List[str] = []
        self.ip_counter = 1
        self.closed = False
        self.containers = _Containers(self)
        self.volumes = _Volumes(self)
        self.networks = _Networks(self)
        self.images = _Images(self)

    def fail(self, operation: str, exc: Optional[Exception] = None) -> None:
        self.failures[operation] = exc or APIError(f"{operation} failed")

    def heal(self, operation: str) -> None:
        self.failures.pop(operation, None)

    def maybe_fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    def running(self, name: str) -> bool:
        container = self.container_map.get(name)
        return container is not None and container.status == "running"

    def close(self):
        self.closed = True


# =============================================================================
# walletd double
# =============================================================================

class FakeWalletd:
    """State of one walletd daemon, shared by every client connected to it."""

    def __init__(self, addresses=None, import_address="Ir2imported"):
        self.addresses: List[str] = list(addresses if addresses is not None else ["addr1"])
        self.import_address = import_address
        self.status = GetStatusResponse(block_count=100, known_block_count=120, peer_count=8)
        self.balance = GetBalanceResponse(available_balance=5000, locked_amount=10)
        self.failures: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self.view_key: Optional[str] = None
        self.spend_key: Optional[str] = None

    def fail(self, method: str, exc: Optional[Exception] = None) -> None:
        self.failures[method] = exc or RPCTransportError(f"{method} failed", method=method)

    def heal(self, method: str) -> None:
        self.failures.pop(method, None)


class FakeWalletdClient:
    def __init__(self, daemon: FakeWalletd, address: str):
        self.daemon = daemon
        self.address = address
        self.closed = False

    async def _enter(self, method: str) -> None:
        if self.closed:
            raise RPCTransportError("client unusable: client has been closed", method=method)
        self.daemon.calls.append(method)
        if method in self.daemon.failures:
            raise self.daemon.failures[method]

    async def reset(self, view_secret_key: str = "") -> None:
        await self._enter("reset")
        self.daemon.view_key = view_secret_key
        self.daemon.addresses = []

    async def save(self) -> None:
        await self._enter("save")

    async def create_address(self, spend_secret_key: str) -> str:
        await self._enter("createAddress")
        self.daemon.spend_key = spend_secret_key
        self.daemon.addresses.append(self.daemon.import_address)
        return self.daemon.import_address

    async def get_addresses(self) -> List[str]:
        await self._enter("getAddresses")
        return list(self.daemon.addresses)

    async def get_status(self) -> GetStatusResponse:
        await self._enter("getStatus")
        return self.daemon.status.model_copy()

    async def get_balance(self) -> GetBalanceResponse:
        await self._enter("getBalance")
        return self.daemon.balance.model_copy()

    async def aclose(self) -> None:
        self.closed = True


class FakeRPCFactory:
    """Stands in for connect_walletd; every wallet talks to the same daemon."""

    def __init__(self, daemon: FakeWalletd):
        self.daemon = daemon
        self.addresses: List[str] = []
        self.clients: List[FakeWalletdClient] = []
        self.error: Optional[Exception] = None

    async def __call__(self, address: str) -> FakeWalletdClient:
        self.addresses.append(address)
        if self.error is not None:
            raise self.error
        client = FakeWalletdClient(self.daemon, address)
        self.clients.append(client)
        return client


class RecordingSink:
    def __init__(self):
        self.events = []

    async def broadcast(self, event) -> int:
        self.events.append(event)
        return 1


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    for name in ("WEBWALLET_CONFIG_FILE", "WEBWALLET_NETWORK", "WEBWALLET_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path):
    return WebwalletConfig(
        pull_image_on_startup=False,
        readiness_timeout_seconds=0.5,
        readiness_attempt_timeout_seconds=0.05,
        readiness_retry_delay_seconds=0.01,
        watcher_poll_interval_seconds=0.05,
        store_path=tmp_path / "wallets.json",
    )


@pytest.fixture
def fake_docker():
    return FakeDocker()


@pytest.fixture
def lifecycle(fake_docker, config):
    return ContainerLifecycleManager(docker_client=fake_docker, config=config)


@pytest.fixture
def walletd():
    return FakeWalletd()


@pytest.fixture
def rpc_factory(walletd):
    return FakeRPCFactory(walletd)


@pytest.fixture
def store():
    return InMemoryWalletStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def watcher(sink, config):
    return StatusWatcher(event_sink=sink, config=config)


@pytest.fixture
def orchestrator(lifecycle, store, watcher, rpc_factory, config):
    return WalletOrchestrator(
        lifecycle, store, watcher, rpc_factory=rpc_factory, config=config,
    )
