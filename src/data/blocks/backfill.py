"""Backfill of block ranges from the upstream source.

Ranges are split into fixed-size chunks. Blocks within a chunk are fetched
concurrently; chunks run one after another with a short pause in between to
throttle the upstream. A block that fails to fetch or insert is logged and
skipped, and shows up again as a gap on the next sweep.
"""

import asyncio

from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from src.helpers.constants import BACKFILL_CHUNK_DELAY, BACKFILL_CHUNK_SIZE
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from src.data.blocks.models import RawBlock
    from src.data.blocks.source import BlockSource
    from src.data.blocks.store import BlockStore


logger = get_logger(__name__)


class BackfillResult(BaseModel):
    """Outcome of one backfill run."""

    requested: int = 0
    fetched: int = 0
    inserted: int = 0
    failed_blocks: list[int] = Field(default_factory=list)

    def merge(self, other: "BackfillResult") -> "BackfillResult":
        return BackfillResult(
            requested=self.requested + other.requested,
            fetched=self.fetched + other.fetched,
            inserted=self.inserted + other.inserted,
            failed_blocks=self.failed_blocks + other.failed_blocks,
        )


class BackfillExecutor:
    """Populates block numbers by fetching them upstream and inserting them."""

    def __init__(
        self,
        store: "BlockStore",
        source: "BlockSource",
        *,
        chunk_size: int = BACKFILL_CHUNK_SIZE,
        chunk_delay: float = BACKFILL_CHUNK_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the executor.

        Args:
            store: Block store
            source: Upstream block source
            chunk_size: Blocks fetched concurrently per chunk
            chunk_delay: Pause between chunks in seconds
            sleep: Awaitable used for the pause
        """
        if chunk_size <= 0:
            msg = f"chunk_size must be positive, got {chunk_size}"
            raise ValueError(msg)

        self.store = store
        self.source = source
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.sleep = sleep

    async def backfill_range(
        self,
        from_block: int,
        to_block: int,
        *,
        on_chunk: Callable[[int], None] | None = None,
    ) -> BackfillResult:
        """Backfill the inclusive range ``[from_block, to_block]``.

        An empty or inverted range returns an empty result.
        """
        if to_block < from_block:
            return BackfillResult()

        logger.info(
            "Backfilling blocks %s to %s",
            from_block,
            to_block,
            extra={"context": {"blocks": to_block - from_block + 1}},
        )
        result = await self.backfill_blocks(
            range(from_block, to_block + 1), on_chunk=on_chunk
        )
        logger.info(
            "Backfill of %s to %s done",
            from_block,
            to_block,
            extra={
                "context": {
                    "inserted": result.inserted,
                    "failed": len(result.failed_blocks),
                }
            },
        )
        return result

    async def backfill_blocks(
        self,
        block_numbers: Iterable[int],
        *,
        on_chunk: Callable[[int], None] | None = None,
    ) -> BackfillResult:
        """Backfill an explicit set of block numbers.

        Args:
            block_numbers: Numbers to fetch (deduplicated and sorted)
            on_chunk: Called with the chunk length after each chunk

        Returns:
            Aggregated result over all chunks
        """
        numbers = sorted(set(block_numbers))
        chunks = [
            numbers[i : i + self.chunk_size]
            for i in range(0, len(numbers), self.chunk_size)
        ]

        result = BackfillResult()
        for index, chunk in enumerate(chunks):
            if index > 0 and self.chunk_delay > 0:
                await self.sleep(self.chunk_delay)
            result = result.merge(await self._process_chunk(chunk))
            if on_chunk is not None:
                on_chunk(len(chunk))

        return result

    async def _process_chunk(self, chunk: list[int]) -> BackfillResult:
        result = BackfillResult(requested=len(chunk))

        fetched = await asyncio.gather(
            *(self.source.get_block(number) for number in chunk),
            return_exceptions=True,
        )

        blocks: list[RawBlock] = []
        for number, block in zip(chunk, fetched, strict=True):
            if isinstance(block, BaseException):
                logger.warning("Failed to fetch block #%s: %s", number, block)
                result.failed_blocks.append(number)
            elif block is None:
                logger.warning("Block #%s not available upstream", number)
                result.failed_blocks.append(number)
            else:
                blocks.append(block)
        result.fetched = len(blocks)

        for block in blocks:
            try:
                if await self.store.insert(block, silent=True):
                    result.inserted += 1
            except Exception:
                logger.exception("Failed to insert block #%s", block.number)
                result.failed_blocks.append(block.number)

        return result


__all__ = [
    "BackfillExecutor",
    "BackfillResult",
]
