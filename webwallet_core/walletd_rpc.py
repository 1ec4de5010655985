"""
walletd JSON-RPC client.

Talks JSON-RPC 2.0 over HTTP to exactly one walletd satellite. A freshly
started container is "running" long before walletd accepts connections, so
``connect_walletd`` first probes the endpoint with short TCP dials until one
succeeds or the readiness deadline expires, and only then hands out a client.

Transport failures (network, HTTP status, undecodable body) raise
RPCTransportError; an error object inside the JSON-RPC envelope raises
RPCApplicationError. Both are RPCError and neither is retried here.

Usage:
    client = await connect_walletd("http://0f3c...:14007/json_rpc")
    async with client:
        addresses = await client.get_addresses()
"""

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .errors import RPCApplicationError, RPCConnectionTimeout, RPCTransportError
from .models.schemas import (
    CreateAddressResponse,
    GetAddressesResponse,
    GetBalanceResponse,
    GetStatusResponse,
)
from .polling import poll_until

logger = logging.getLogger("Webwallet.Walletd")

M = TypeVar("M", bound=BaseModel)

# Readiness probe defaults
READINESS_TIMEOUT = 5.0
READINESS_ATTEMPT_TIMEOUT = 0.1
READINESS_RETRY_DELAY = 0.05


class WalletdRPC(Protocol):
    """Operations the orchestrator needs from one walletd instance."""

    async def reset(self, view_secret_key: str = "") -> None: ...

    async def save(self) -> None: ...

    async def create_address(self, spend_secret_key: str) -> str: ...

    async def get_addresses(self) -> List[str]: ...

    async def get_status(self) -> GetStatusResponse: ...

    async def get_balance(self) -> GetBalanceResponse: ...

    async def aclose(self) -> None: ...


class WalletdClient:
    """JSON-RPC client bound to a single walletd endpoint."""

    def __init__(
        self,
        address: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            address: Full RPC URL, e.g. ``http://wallet-id:14007/json_rpc``
            timeout: Per-call timeout in seconds; None waits indefinitely
            transport: Optional httpx transport (tests, custom TLS)
        """
        self.address = address
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    def __repr__(self) -> str:
        return f"WalletdClient({self.address!r})"

    async def __aenter__(self) -> "WalletdClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Wire
    # ------------------------------------------------------------------

    async def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": next(self._ids)}
        if params is not None:
            payload["params"] = params

        try:
            response = await self._client.post(self.address, json=payload)
        except httpx.HTTPError as exc:
            raise RPCTransportError(f"request failed: {exc}", method=method) from exc
        except RuntimeError as exc:
            # httpx refuses requests on a closed client
            raise RPCTransportError(f"client unusable: {exc}", method=method) from exc

        try:
            envelope = response.json()
        except ValueError as exc:
            raise RPCTransportError(
                f"undecodable response (HTTP {response.status_code})", method=method
            ) from exc

        if not isinstance(envelope, dict):
            raise RPCTransportError("response is not a JSON-RPC envelope", method=method)

        error = envelope.get("error")
        if error:
            if isinstance(error, dict):
                raise RPCApplicationError(
                    str(error.get("message", "walletd error")),
                    method=method,
                    rpc_code=error.get("code"),
                    data=error.get("data"),
                )
            raise RPCApplicationError(str(error), method=method)

        if response.is_error:
            raise RPCTransportError(f"HTTP {response.status_code}", method=method)

        return envelope.get("result")

    async def _call_and_unwrap(
        self,
        method: str,
        model: Type[M],
        params: Optional[Dict[str, Any]] = None,
    ) -> M:
        result = await self._call(method, params)
        try:
            return model.model_validate(result if result is not None else {})
        except ValidationError as exc:
            raise RPCTransportError("malformed result", method=method) from exc

    # ------------------------------------------------------------------
    # walletd methods
    # ------------------------------------------------------------------

    async def reset(self, view_secret_key: str = "") -> None:
        """Reset the wallet; with a view key, re-initialize it from that key."""
        if view_secret_key:
            await self._call("reset", {"viewSecretKey": view_secret_key})
        else:
            await self._call("reset")

    async def save(self) -> None:
        await self._call("save")

    async def create_address(self, spend_secret_key: str) -> str:
        result = await self._call_and_unwrap(
            "createAddress", CreateAddressResponse, {"spendSecretKey": spend_secret_key}
        )
        return result.address

    async def get_addresses(self) -> List[str]:
        result = await self._call_and_unwrap("getAddresses", GetAddressesResponse)
        return result.addresses

    async def get_status(self) -> GetStatusResponse:
        return await self._call_and_unwrap("getStatus", GetStatusResponse)

    async def get_balance(self) -> GetBalanceResponse:
        return await self._call_and_unwrap("getBalance", GetBalanceResponse)


# =============================================================================
# Readiness probe
# =============================================================================

async def _dial(host: str, port: int) -> bool:
    """Open and immediately close a TCP connection."""
    _, writer = await asyncio.open_connection(host, port)
    writer.close()
    await writer.wait_closed()
    return True


async def wait_for_endpoint(
    host: str,
    port: int,
    timeout: float = READINESS_TIMEOUT,
    attempt_timeout: float = READINESS_ATTEMPT_TIMEOUT,
    retry_delay: float = READINESS_RETRY_DELAY,
) -> float:
    """
    Block until ``host:port`` accepts a TCP connection.

    Returns:
        Seconds it took for the endpoint to become ready.

    Raises:
        RPCConnectionTimeout: No connection succeeded within ``timeout``.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    endpoint = f"{host}:{port}"

    logger.debug("Waiting (timeout: %.1fs) for walletd RPC at %s", timeout, endpoint)
    try:
        await poll_until(
            lambda: _dial(host, port),
            deadline=timeout,
            attempt_timeout=attempt_timeout,
            retry_delay=retry_delay,
            label=f"walletd-readiness[{endpoint}]",
        )
    except asyncio.TimeoutError as exc:
        logger.error("RPC connection to walletd timed out after %.1fs at %s", timeout, endpoint)
        raise RPCConnectionTimeout(endpoint, timeout) from exc

    elapsed = loop.time() - started
    logger.debug("RPC connection to walletd succeeded after %.3fs at %s", elapsed, endpoint)
    return elapsed


async def connect_walletd(
    address: str,
    readiness_timeout: float = READINESS_TIMEOUT,
    attempt_timeout: float = READINESS_ATTEMPT_TIMEOUT,
    retry_delay: float = READINESS_RETRY_DELAY,
    rpc_timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> WalletdClient:
    """
    Wait for walletd at ``address`` to accept connections, then return a client.

    Raises:
        RPCTransportError: ``address`` is not a usable http URL.
        RPCConnectionTimeout: walletd did not come up in time.
    """
    try:
        url = httpx.URL(address)
    except httpx.InvalidURL as exc:
        raise RPCTransportError(f"invalid walletd address {address!r}") from exc
    if not url.host:
        raise RPCTransportError(f"walletd address {address!r} has no host")

    port = url.port or (443 if url.scheme == "https" else 80)

    logger.debug("Connecting to walletd RPC at %s", address)
    await wait_for_endpoint(url.host, port, readiness_timeout, attempt_timeout, retry_delay)

    return WalletdClient(address, timeout=rpc_timeout, transport=transport)
