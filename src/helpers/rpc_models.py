"""Pydantic models for JSON-RPC requests and responses."""

from typing import Any

from pydantic import BaseModel, Field


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request model."""

    jsonrpc: str = Field(default="2.0", description="JSON-RPC version")
    method: str = Field(..., description="Method name to call")
    params: list[Any] = Field(
        default_factory=list, description="Method parameters"
    )
    id: int | str = Field(default=1, description="Request ID")


class EthBlockNumberRequest(JsonRpcRequest):
    """JSON-RPC request for eth_blockNumber."""

    method: str = Field(default="eth_blockNumber", frozen=True)
    params: list[Any] = Field(default_factory=list, frozen=True)


class EthGetBlockByNumberRequest(JsonRpcRequest):
    """JSON-RPC request for eth_getBlockByNumber (transaction hashes only)."""

    method: str = Field(default="eth_getBlockByNumber", frozen=True)

    @classmethod
    def for_block(cls, block_number: int, request_id: int = 1) -> "EthGetBlockByNumberRequest":
        """Build the request for a single block number."""
        return cls(params=[hex(block_number), False], id=request_id)


class EthSubscribeRequest(JsonRpcRequest):
    """JSON-RPC request for eth_subscribe over WebSocket."""

    method: str = Field(default="eth_subscribe", frozen=True)
    params: list[Any] = Field(default_factory=lambda: ["newHeads"])


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response envelope."""

    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any = None
    error: dict[str, Any] | None = None


__all__ = [
    "EthBlockNumberRequest",
    "EthGetBlockByNumberRequest",
    "EthSubscribeRequest",
    "JsonRpcRequest",
    "JsonRpcResponse",
]
