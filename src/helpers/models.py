"""Common Pydantic models for data structures used across the application."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.helpers.parsers import parse_hex_int


class BlockHeader(BaseModel):
    """Block header received from newHeads WebSocket subscription."""

    number: str = Field(..., description="Block number as hex string")
    hash: str | None = Field(default=None, description="Block hash")
    parent_hash: str | None = Field(
        default=None, description="Parent block hash", alias="parentHash"
    )
    timestamp: str | None = Field(
        default=None, description="Block timestamp as hex string"
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @property
    def block_number(self) -> int:
        """Block number decoded from hex."""
        return parse_hex_int(self.number)


class NewHeadsNotification(BaseModel):
    """``eth_subscription`` notification envelope carrying a new head."""

    subscription: str = Field(..., description="Subscription ID")
    result: BlockHeader

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "NewHeadsNotification | None":
        """Extract a notification from a raw WebSocket message.

        Args:
            message: Decoded JSON message

        Returns:
            The notification, or None for messages that are not newHeads pushes
        """
        if message.get("method") != "eth_subscription":
            return None
        params = message.get("params")
        if not isinstance(params, dict) or "result" not in params:
            return None
        return cls.model_validate(params)


__all__ = [
    "BlockHeader",
    "NewHeadsNotification",
]
