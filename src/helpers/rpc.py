"""Ethereum JSON-RPC client utilities."""

from typing import Any

import httpx

from src.helpers.constants import DEFAULT_TIMEOUT
from src.helpers.parsers import parse_hex_int
from src.helpers.rpc_models import (
    EthBlockNumberRequest,
    EthGetBlockByNumberRequest,
    JsonRpcRequest,
    JsonRpcResponse,
)


class RPCError(ValueError):
    """JSON-RPC error object returned by the node."""


def create_http_client(
    timeout: float = DEFAULT_TIMEOUT, **kwargs: Any
) -> httpx.AsyncClient:
    """Create a configured httpx AsyncClient.

    Args:
        timeout: Default timeout in seconds (default: DEFAULT_TIMEOUT)
        **kwargs: Additional httpx.AsyncClient kwargs

    Returns:
        Configured AsyncClient instance
    """
    return httpx.AsyncClient(timeout=timeout, **kwargs)


class RPCClient:
    """Minimal Ethereum JSON-RPC client over a shared httpx client."""

    def __init__(self, rpc_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        """Initialize RPC client.

        Args:
            rpc_url: Ethereum JSON-RPC endpoint URL
            timeout: Default timeout for requests in seconds

        Raises:
            ValueError: If rpc_url is empty or None
        """
        if not rpc_url:
            msg = "RPC URL cannot be empty"
            raise ValueError(msg)

        self.rpc_url = rpc_url
        self.timeout = timeout

    async def send(
        self,
        client: httpx.AsyncClient,
        request: JsonRpcRequest,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a single JSON-RPC request model.

        Args:
            client: HTTP client instance
            request: Request model
            timeout: Optional timeout override

        Returns:
            RPC result value

        Raises:
            httpx.HTTPError: If the HTTP request fails
            RPCError: If the RPC response contains an error
        """
        response = await client.post(
            self.rpc_url,
            json=request.model_dump(),
            timeout=timeout or self.timeout,
        )
        response.raise_for_status()
        result = JsonRpcResponse.model_validate(response.json())

        if result.error is not None:
            msg = f"RPC error: {result.error}"
            raise RPCError(msg)

        return result.result

    async def get_block_number(self, client: httpx.AsyncClient) -> int:
        """Get the latest block number.

        Args:
            client: HTTP client instance

        Returns:
            Latest block number

        Raises:
            RPCError: If the node returns a null result
        """
        result = await self.send(client, EthBlockNumberRequest())
        if result is None:
            msg = "RPC error: eth_blockNumber returned null"
            raise RPCError(msg)
        return parse_hex_int(result)

    async def get_block(
        self, client: httpx.AsyncClient, block_number: int
    ) -> dict[str, Any] | None:
        """Fetch a block header (transaction hashes only) by number.

        Args:
            client: HTTP client instance
            block_number: Block number to fetch

        Returns:
            Raw block object, or None when the node does not have it yet
        """
        return await self.send(
            client, EthGetBlockByNumberRequest.for_block(block_number)
        )


__all__ = [
    "RPCClient",
    "RPCError",
    "create_http_client",
]
