"""Blob base fee model.

Implements the EIP-4844 ``fake_exponential`` integer approximation and the
per-epoch ``BLOB_BASE_FEE_UPDATE_FRACTION`` schedule (EIP-7691 Prague, then the
blob-parameter-only forks BPO1 and BPO2 from EIP-7892).

Each epoch keeps ``excess_blob_gas`` raw and only swaps the denominator. The
denominator grows with the blob target so that a full or empty block moves the
fee by the same proportion in every epoch.

All arithmetic is integer floor division on Python ints, so results match the
execution-layer reference bit for bit at any magnitude.
"""

import math

from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

MIN_BASE_FEE_PER_BLOB_GAS = 1
"""Floor of the blob base fee in wei"""

BLOB_GAS_PER_BLOB = 131_072
"""Blob gas consumed by one blob (2**17)"""


class BlobFeeEpoch(BaseModel):
    """One protocol epoch of the blob fee market."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Upgrade name")
    activation_timestamp: int = Field(
        ..., ge=0, description="Unix timestamp of the first block in the epoch"
    )
    update_fraction: int = Field(
        ..., gt=0, description="BLOB_BASE_FEE_UPDATE_FRACTION denominator"
    )
    target_blobs_per_block: int = Field(..., gt=0)
    max_blobs_per_block: int = Field(..., gt=0)


PRAGUE = BlobFeeEpoch(
    name="prague",
    activation_timestamp=1_746_612_311,
    update_fraction=5_007_716,
    target_blobs_per_block=6,
    max_blobs_per_block=9,
)

BPO1 = BlobFeeEpoch(
    name="bpo1",
    activation_timestamp=1_765_290_071,
    update_fraction=8_346_193,
    target_blobs_per_block=10,
    max_blobs_per_block=15,
)

BPO2 = BlobFeeEpoch(
    name="bpo2",
    activation_timestamp=1_767_747_671,
    update_fraction=11_684_671,
    target_blobs_per_block=14,
    max_blobs_per_block=21,
)

BLOB_SCHEDULE: tuple[BlobFeeEpoch, ...] = (PRAGUE, BPO1, BPO2)
"""Mainnet blob schedule, earliest epoch first"""


def fake_exponential(factor: int, numerator: int, denominator: int) -> int:
    """Approximate ``factor * e ** (numerator / denominator)`` with integers.

    Args:
        factor: Multiplier (MIN_BASE_FEE_PER_BLOB_GAS for fees)
        numerator: Exponent numerator (excess blob gas)
        denominator: Exponent denominator (update fraction)

    Returns:
        The truncated series sum divided by ``denominator``

    Raises:
        ValueError: If denominator is not positive

    Example:
        >>> fake_exponential(1, 0, 1)
        1
        >>> fake_exponential(1, 2, 1)  # e^2 ~ 7.389
        6
    """
    if denominator <= 0:
        msg = f"denominator must be positive, got {denominator}"
        raise ValueError(msg)

    i = 1
    output = 0
    numerator_accum = factor * denominator
    while numerator_accum > 0:
        output += numerator_accum
        numerator_accum = (numerator_accum * numerator) // (denominator * i)
        i += 1
    return output // denominator


def get_epoch(
    timestamp: int | None, schedule: Sequence[BlobFeeEpoch] = BLOB_SCHEDULE
) -> BlobFeeEpoch:
    """Select the epoch a block timestamp falls into.

    Epochs are checked latest-activation first. A missing timestamp, or one
    earlier than every activation, falls back to the earliest epoch.

    Args:
        timestamp: Unix timestamp of the block, or None
        schedule: Epochs in any order

    Returns:
        The active epoch

    Raises:
        ValueError: If the schedule is empty
    """
    if not schedule:
        msg = "blob fee schedule is empty"
        raise ValueError(msg)

    ordered = sorted(schedule, key=lambda epoch: epoch.activation_timestamp)
    if timestamp is None:
        return ordered[0]

    for epoch in reversed(ordered):
        if timestamp >= epoch.activation_timestamp:
            return epoch
    return ordered[0]


def get_update_fraction(
    timestamp: int | None, schedule: Sequence[BlobFeeEpoch] = BLOB_SCHEDULE
) -> int:
    """Blob base fee update fraction in force at ``timestamp``."""
    return get_epoch(timestamp, schedule).update_fraction


def calculate_blob_base_fee(
    excess_blob_gas: int,
    timestamp: int | None,
    schedule: Sequence[BlobFeeEpoch] = BLOB_SCHEDULE,
) -> int:
    """Blob base fee in wei for a block.

    Args:
        excess_blob_gas: Header ``excessBlobGas``
        timestamp: Block Unix timestamp, or None if unknown
        schedule: Epoch schedule

    Returns:
        Blob base fee in wei (1 when there is no excess)

    Example:
        >>> calculate_blob_base_fee(0, None)
        1
    """
    return fake_exponential(
        MIN_BASE_FEE_PER_BLOB_GAS,
        excess_blob_gas,
        get_update_fraction(timestamp, schedule),
    )


def calculate_blob_count(blob_gas_used: int | None) -> int:
    """Number of blobs in a block from its ``blobGasUsed``.

    Example:
        >>> calculate_blob_count(393_216)
        3
        >>> calculate_blob_count(None)
        0
    """
    if not blob_gas_used:
        return 0
    return math.ceil(blob_gas_used / BLOB_GAS_PER_BLOB)


__all__ = [
    "BLOB_GAS_PER_BLOB",
    "BLOB_SCHEDULE",
    "BPO1",
    "BPO2",
    "MIN_BASE_FEE_PER_BLOB_GAS",
    "PRAGUE",
    "BlobFeeEpoch",
    "calculate_blob_base_fee",
    "calculate_blob_count",
    "fake_exponential",
    "get_epoch",
    "get_update_fraction",
]
