"""Persistent block store.

Async access layer over the ``blocks`` table. Every write is idempotent on
``block_number`` and no operation spans rows in a transaction, so the live
handler, concurrent backfill tasks and the retention sweeper share one store
without locking. Each operation retries transient connectivity failures with
capped exponential backoff and lets every other error propagate.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta
from decimal import Decimal

from typing import Any

from pydantic import BaseModel
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.data.blocks.blob_fee import BLOB_SCHEDULE, BlobFeeEpoch
from src.data.blocks.db import BlockDB
from src.data.blocks.gap_detection import Gap
from src.data.blocks.models import Block, RawBlock
from src.helpers.db import (
    Base,
    create_engine,
    create_session_factory,
    is_transient_db_error,
)
from src.helpers.logging import get_logger
from src.helpers.retry import retry_with_backoff


logger = get_logger(__name__)

store_retry = retry_with_backoff(retry_on=is_transient_db_error)

FIND_GAPS_SQL = text(
    """
    WITH block_sequence AS (
        SELECT
            block_number,
            block_number - LAG(block_number) OVER (ORDER BY block_number) AS gap_size
        FROM blocks
    )
    SELECT
        block_number - gap_size AS after_block,
        block_number AS before_block,
        gap_size - 1 AS missing_count
    FROM block_sequence
    WHERE gap_size > 1
    ORDER BY block_number
    """
)


class BlobFeeInput(BaseModel):
    """Stored inputs of the blob fee model for one block."""

    block_number: int
    excess_blob_gas: int
    blob_base_fee: int
    timestamp: int | None


class StoreStats(BaseModel):
    """Snapshot of the store for health reporting."""

    total_blocks: int
    oldest_block: int | None
    latest_block: int | None
    last_insert_time: datetime | None
    seconds_since_last_insert: float | None


def row_to_block(row: BlockDB) -> Block:
    """Convert an ORM row to a Block model."""
    return Block(
        block_number=row.block_number,
        gas_limit=row.gas_limit,
        gas_used=row.gas_used,
        base_fee=int(row.base_fee),
        blob_count=row.blob_count,
        blob_base_fee=int(row.blob_base_fee),
        excess_blob_gas=row.excess_blob_gas,
        block_timestamp=row.block_timestamp,
        created_at=row.created_at,
    )


class BlockStore:
    """Durable, idempotent storage of block records."""

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        schedule: Sequence[BlobFeeEpoch] = BLOB_SCHEDULE,
    ) -> None:
        """Initialize the store.

        Args:
            engine: Async engine (psycopg 3 driver)
            schedule: Blob fee epoch schedule used on insert
        """
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = (
            create_session_factory(engine)
        )
        self.schedule = schedule

    @classmethod
    def from_url(cls, database_url: str, **kwargs: Any) -> "BlockStore":
        """Create a store with its own engine."""
        return cls(create_engine(database_url), **kwargs)

    async def close(self) -> None:
        """Dispose of the connection pool."""
        await self.engine.dispose()

    @store_retry
    async def check_connection(self) -> None:
        """Round-trip ``SELECT 1``; raises if the database is unreachable."""
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))

    @store_retry
    async def create_tables(self) -> None:
        """Create the blocks table and its indexes if they don't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @store_retry
    async def _insert_block(self, block: Block) -> bool:
        async with self.session_factory() as session:
            stmt = (
                pg_insert(BlockDB)
                .values(**block.insert_values())
                .on_conflict_do_nothing(index_elements=[BlockDB.block_number])
                .returning(BlockDB.block_number)
            )
            result = await session.execute(stmt)
            inserted = result.first() is not None
            await session.commit()
            return inserted

    async def insert(self, block: RawBlock, *, silent: bool = False) -> bool:
        """Insert a block unless its number is already stored.

        ``blob_count`` and ``blob_base_fee`` are derived here from the raw
        counters; the source never supplies them.

        Args:
            block: Upstream block
            silent: Don't log successful inserts

        Returns:
            True if a new row was written, False for a duplicate
        """
        record = Block.from_raw(block, self.schedule)
        inserted = await self._insert_block(record)
        if inserted and not silent:
            logger.info(
                "Block inserted",
                extra={
                    "context": {
                        "block_number": record.block_number,
                        "blob_count": record.blob_count,
                        "blob_base_fee": record.blob_base_fee,
                    }
                },
            )
        return inserted

    @store_retry
    async def get_latest_block_number(self) -> int | None:
        """Highest stored block number, or None for an empty store."""
        async with self.session_factory() as session:
            result = await session.execute(select(func.max(BlockDB.block_number)))
            return result.scalar()

    @store_retry
    async def find_gaps(self) -> list[Gap]:
        """Every missing-number run between stored blocks, ascending."""
        async with self.session_factory() as session:
            result = await session.execute(FIND_GAPS_SQL)
            return [
                Gap(
                    after_block=row.after_block,
                    before_block=row.before_block,
                    missing_count=row.missing_count,
                )
                for row in result
            ]

    @store_retry
    async def cleanup_old_blocks(self, retention: timedelta) -> int:
        """Delete rows written before ``now() - retention``.

        Args:
            retention: Retention window

        Returns:
            Number of deleted rows
        """
        async with self.session_factory() as session:
            stmt = delete(BlockDB).where(
                BlockDB.created_at < func.now() - retention
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    @store_retry
    async def update_block_timestamp(
        self, block_number: int, block_timestamp: datetime
    ) -> bool:
        """Patch a missing ``block_timestamp``; stored timestamps are kept.

        Returns:
            True if a row was updated
        """
        async with self.session_factory() as session:
            stmt = (
                update(BlockDB)
                .where(
                    BlockDB.block_number == block_number,
                    BlockDB.block_timestamp.is_(None),
                )
                .values(block_timestamp=block_timestamp)
            )
            result = await session.execute(stmt)
            await session.commit()
            return (result.rowcount or 0) > 0

    @store_retry
    async def get_blocks_missing_timestamp(self) -> list[int]:
        """Block numbers whose timestamp is still null, ascending."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(BlockDB.block_number)
                .where(BlockDB.block_timestamp.is_(None))
                .order_by(BlockDB.block_number)
            )
            return list(result.scalars())

    @store_retry
    async def get_blob_fee_inputs(self) -> list[BlobFeeInput]:
        """Excess blob gas, stored fee and timestamp of every block."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    BlockDB.block_number,
                    BlockDB.excess_blob_gas,
                    BlockDB.blob_base_fee,
                    func.extract("epoch", BlockDB.block_timestamp).label("timestamp"),
                ).order_by(BlockDB.block_number)
            )
            return [
                BlobFeeInput(
                    block_number=row.block_number,
                    excess_blob_gas=row.excess_blob_gas,
                    blob_base_fee=int(row.blob_base_fee),
                    timestamp=int(row.timestamp) if row.timestamp is not None else None,
                )
                for row in result
            ]

    @store_retry
    async def update_blob_base_fee(self, block_number: int, blob_base_fee: int) -> None:
        """Overwrite the stored blob base fee after a schedule correction."""
        async with self.session_factory() as session:
            await session.execute(
                update(BlockDB)
                .where(BlockDB.block_number == block_number)
                .values(blob_base_fee=Decimal(blob_base_fee))
            )
            await session.commit()

    @store_retry
    async def get_recent_blocks(self, limit: int = 110) -> list[Block]:
        """The ``limit`` most recent blocks in ascending order."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(BlockDB).order_by(BlockDB.block_number.desc()).limit(limit)
            )
            rows = list(result.scalars())
        rows.reverse()
        return [row_to_block(row) for row in rows]

    @store_retry
    async def get_blocks_after(self, block_number: int, limit: int = 110) -> list[Block]:
        """Blocks strictly newer than ``block_number`` in ascending order."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(BlockDB)
                .where(BlockDB.block_number > block_number)
                .order_by(BlockDB.block_number)
                .limit(limit)
            )
            return [row_to_block(row) for row in result.scalars()]

    @store_retry
    async def get_blocks_since(self, since: datetime) -> list[Block]:
        """Blocks written at or after ``since`` in ascending order."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(BlockDB)
                .where(BlockDB.created_at >= since)
                .order_by(BlockDB.block_number)
            )
            return [row_to_block(row) for row in result.scalars()]

    @store_retry
    async def get_stats(self) -> StoreStats:
        """Row count, block range and insert recency."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    func.count().label("total_blocks"),
                    func.min(BlockDB.block_number).label("oldest_block"),
                    func.max(BlockDB.block_number).label("latest_block"),
                    func.max(BlockDB.created_at).label("last_insert_time"),
                    func.extract(
                        "epoch", func.now() - func.max(BlockDB.created_at)
                    ).label("seconds_since_last_insert"),
                ).select_from(BlockDB)
            )
            row = result.one()
            seconds = row.seconds_since_last_insert
            return StoreStats(
                total_blocks=row.total_blocks,
                oldest_block=row.oldest_block,
                latest_block=row.latest_block,
                last_insert_time=row.last_insert_time,
                seconds_since_last_insert=float(seconds) if seconds is not None else None,
            )


__all__ = [
    "BlobFeeInput",
    "BlockStore",
    "StoreStats",
    "row_to_block",
]
