"""Pydantic models for Ethereum blocks."""

from collections.abc import Sequence

# Pydantic needs this at runtime to validate the datetime field
from datetime import datetime

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.data.blocks.blob_fee import (
    BLOB_SCHEDULE,
    BlobFeeEpoch,
    calculate_blob_base_fee,
    calculate_blob_count,
)
from src.helpers.parsers import parse_hex_int, parse_unix_timestamp


class RawBlock(BaseModel):
    """Block as returned by ``eth_getBlockByNumber``.

    Quantities arrive hex-encoded and are decoded on validation. Blob fields
    are absent before Cancun.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    number: int
    gas_limit: int = Field(..., alias="gasLimit")
    gas_used: int = Field(..., alias="gasUsed")
    base_fee_per_gas: int | None = Field(default=None, alias="baseFeePerGas")
    blob_gas_used: int | None = Field(default=None, alias="blobGasUsed")
    excess_blob_gas: int | None = Field(default=None, alias="excessBlobGas")
    timestamp: int | None = None

    @field_validator(
        "number",
        "gas_limit",
        "gas_used",
        "base_fee_per_gas",
        "blob_gas_used",
        "excess_blob_gas",
        "timestamp",
        mode="before",
    )
    @classmethod
    def _decode_quantity(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_hex_int(value)
        return value


class Block(BaseModel):
    """Stored block record."""

    block_number: int = Field(..., ge=0)
    gas_limit: int = Field(..., ge=0)
    gas_used: int = Field(..., ge=0)
    base_fee: int = Field(..., ge=0)
    blob_count: int = Field(default=0, ge=0)
    blob_base_fee: int = Field(..., ge=0)
    excess_blob_gas: int = Field(default=0, ge=0)
    block_timestamp: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_raw(
        cls,
        raw: RawBlock,
        schedule: Sequence[BlobFeeEpoch] = BLOB_SCHEDULE,
    ) -> "Block":
        """Build a record from an upstream block, deriving blob fields.

        Args:
            raw: Upstream block
            schedule: Blob fee epoch schedule

        Returns:
            Block with ``blob_count`` and ``blob_base_fee`` computed locally
        """
        excess_blob_gas = raw.excess_blob_gas or 0
        return cls(
            block_number=raw.number,
            gas_limit=raw.gas_limit,
            gas_used=raw.gas_used,
            base_fee=raw.base_fee_per_gas or 0,
            blob_count=calculate_blob_count(raw.blob_gas_used),
            blob_base_fee=calculate_blob_base_fee(
                excess_blob_gas, raw.timestamp, schedule
            ),
            excess_blob_gas=excess_blob_gas,
            block_timestamp=parse_unix_timestamp(raw.timestamp),
        )

    def insert_values(self) -> dict[str, Any]:
        """Column values for an INSERT; ``created_at`` is left to the database."""
        return self.model_dump(exclude={"created_at"})


__all__ = [
    "Block",
    "RawBlock",
]
