"""Upstream Ethereum block source.

Request/response fetches go over HTTPS JSON-RPC; new block numbers arrive
through an ``eth_subscribe("newHeads")`` WebSocket subscription.
"""

import json

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from typing import Protocol

import httpx
from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect

from src.data.blocks.models import RawBlock
from src.helpers.constants import DEFAULT_TIMEOUT, WS_PING_INTERVAL, WS_PING_TIMEOUT
from src.helpers.logging import get_logger
from src.helpers.models import NewHeadsNotification
from src.helpers.rpc import RPCClient, create_http_client
from src.helpers.rpc_models import EthSubscribeRequest, JsonRpcResponse


logger = get_logger(__name__)


class SubscriptionError(ConnectionError):
    """The node did not confirm the newHeads subscription."""


class BlockSource(Protocol):
    """What the pipeline needs from an upstream node."""

    async def get_block_number(self) -> int: ...

    async def get_block(self, block_number: int) -> RawBlock | None: ...

    def subscribe(self) -> AbstractAsyncContextManager[AsyncIterator[int]]: ...

    async def close(self) -> None: ...


class EthereumBlockSource:
    """Block source backed by an Ethereum node's JSON-RPC and WebSocket APIs."""

    def __init__(
        self,
        rpc_url: str,
        ws_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the source.

        Args:
            rpc_url: HTTPS JSON-RPC endpoint
            ws_url: WebSocket endpoint for newHeads
            http_client: Shared client (one is created if omitted)
            timeout: Request timeout in seconds

        Raises:
            ValueError: If either URL is empty
        """
        if not ws_url:
            msg = "WebSocket URL cannot be empty"
            raise ValueError(msg)

        self.ws_url = ws_url
        self.rpc_client = RPCClient(rpc_url, timeout=timeout)
        self.http_client = http_client or create_http_client(timeout)

    async def get_block_number(self) -> int:
        """Current chain head."""
        return await self.rpc_client.get_block_number(self.http_client)

    async def get_block(self, block_number: int) -> RawBlock | None:
        """Fetch one block, or None when the node doesn't have it."""
        data = await self.rpc_client.get_block(self.http_client, block_number)
        if data is None:
            return None
        return RawBlock.model_validate(data)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[AsyncIterator[int]]:
        """Open a newHeads subscription.

        Yields:
            Async iterator of notified block numbers; it ends when the
            connection closes cleanly and raises on transport errors

        Raises:
            SubscriptionError: If the node rejects the subscription
        """
        logger.info("Connecting to %s", self.ws_url)
        async with connect(
            self.ws_url,
            ping_interval=WS_PING_INTERVAL,
            ping_timeout=WS_PING_TIMEOUT,
        ) as websocket:
            request = EthSubscribeRequest()
            await websocket.send(request.model_dump_json())

            response = JsonRpcResponse.model_validate_json(await websocket.recv())
            if response.error is not None or not isinstance(response.result, str):
                msg = f"Subscription failed: {response.model_dump()}"
                raise SubscriptionError(msg)

            logger.info("Subscribed to newHeads: %s", response.result)
            yield self._stream_block_numbers(websocket)

    async def _stream_block_numbers(
        self, websocket: ClientConnection
    ) -> AsyncIterator[int]:
        async for message in websocket:
            try:
                notification = NewHeadsNotification.from_message(json.loads(message))
                block_number = (
                    notification.result.block_number if notification else None
                )
            except (json.JSONDecodeError, ValidationError, ValueError):
                logger.warning("Skipping malformed WebSocket message: %.200s", message)
                continue

            if block_number is not None:
                yield block_number

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()


__all__ = [
    "BlockSource",
    "EthereumBlockSource",
    "SubscriptionError",
]
