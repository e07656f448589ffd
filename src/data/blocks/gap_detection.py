"""Detection and healing of gaps in the stored block sequence."""

import asyncio

from collections.abc import Awaitable, Callable, Iterable

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from src.helpers.constants import GAP_CHECK_INTERVAL
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from src.data.blocks.backfill import BackfillExecutor
    from src.data.blocks.store import BlockStore


logger = get_logger(__name__)


class Gap(BaseModel):
    """A run of missing block numbers between two stored blocks."""

    after_block: int = Field(..., description="Last stored block before the gap")
    before_block: int = Field(..., description="First stored block after the gap")
    missing_count: int = Field(..., gt=0, description="Numbers strictly between")

    @property
    def first_missing(self) -> int:
        return self.after_block + 1

    @property
    def last_missing(self) -> int:
        return self.before_block - 1


def detect_gaps(block_numbers: Iterable[int]) -> list[Gap]:
    """Find every missing-number run in a set of block numbers.

    Args:
        block_numbers: Stored block numbers, any order

    Returns:
        Gaps in ascending order; empty for zero or one block

    Example:
        >>> [(g.after_block, g.before_block, g.missing_count)
        ...  for g in detect_gaps([1, 2, 3, 7, 8, 10])]
        [(3, 7, 3), (8, 10, 1)]
    """
    ordered = sorted(set(block_numbers))
    return [
        Gap(after_block=lower, before_block=upper, missing_count=upper - lower - 1)
        for lower, upper in zip(ordered, ordered[1:])
        if upper - lower > 1
    ]


def format_gap_summary(gaps: list[Gap]) -> str:
    """Format a human-readable summary of gaps.

    Example:
        >>> print(format_gap_summary([Gap(after_block=3, before_block=7, missing_count=3)]))
        1 gap(s), 3 missing block(s)
          - 4-6 (3 blocks)
    """
    if not gaps:
        return "No gaps detected"

    total = sum(gap.missing_count for gap in gaps)
    lines = [f"{len(gaps)} gap(s), {total:,} missing block(s)"]
    lines.extend(
        f"  - {gap.first_missing}-{gap.last_missing} ({gap.missing_count:,} blocks)"
        for gap in gaps
    )
    return "\n".join(lines)


class GapDetector:
    """Sweeps the store for gaps and hands them to the backfill executor.

    Only one sweep runs at a time; a trigger that arrives while a sweep is in
    progress is skipped, not queued.
    """

    def __init__(
        self,
        store: "BlockStore",
        backfill: "BackfillExecutor",
        *,
        interval: float = GAP_CHECK_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.backfill = backfill
        self.interval = interval
        self.sleep = sleep
        self.in_progress = False
        self.should_shutdown = False
        self.sweeps_completed = 0

    async def sweep(self) -> list[Gap] | None:
        """Find gaps over the whole store and backfill each of them.

        Returns:
            The gaps found, or None if another sweep was already running
        """
        if self.in_progress:
            logger.debug("Gap check already in progress, skipping")
            return None

        self.in_progress = True
        try:
            gaps = await self.store.find_gaps()
            if not gaps:
                logger.debug("No gaps detected")
                return gaps

            logger.warning(
                "Gaps detected",
                extra={
                    "context": {
                        "gaps": len(gaps),
                        "missing_blocks": sum(g.missing_count for g in gaps),
                    }
                },
            )
            logger.info(format_gap_summary(gaps))

            for gap in gaps:
                await self.backfill.backfill_range(gap.first_missing, gap.last_missing)

            return gaps
        finally:
            self.in_progress = False
            self.sweeps_completed += 1

    async def run_periodic(self) -> None:
        """Sweep every ``interval`` seconds until shutdown."""
        while not self.should_shutdown:
            await self.sleep(self.interval)
            if self.should_shutdown:
                break
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Periodic gap check failed")

    def shutdown(self) -> None:
        self.should_shutdown = True


__all__ = [
    "Gap",
    "GapDetector",
    "detect_gaps",
    "format_gap_summary",
]
