"""Maintenance commands for the blocks table.

Usage:
    python -m src.data.blocks.maintenance migrate
    python -m src.data.blocks.maintenance recompute-blob-fees
    python -m src.data.blocks.maintenance fix-timestamps
    python -m src.data.blocks.maintenance backfill-range 21000000 21000100
    python -m src.data.blocks.maintenance backfill-blocks 21000003 21000042
    python -m src.data.blocks.maintenance backfill-gaps [--dry-run]

Every command exits with code 1 when any block failed.
"""

import sys

from argparse import ArgumentParser, Namespace
from asyncio import run, sleep
from collections.abc import Awaitable, Callable, Sequence

from rich.console import Console

from src.data.blocks.backfill import BackfillExecutor, BackfillResult
from src.data.blocks.blob_fee import calculate_blob_base_fee
from src.data.blocks.gap_detection import format_gap_summary
from src.data.blocks.source import BlockSource, EthereumBlockSource
from src.data.blocks.store import BlockStore
from src.helpers.config import get_eth_rpc_url, get_eth_ws_url
from src.helpers.constants import BACKFILL_CHUNK_DELAY
from src.helpers.db import get_database_url
from src.helpers.logging import get_logger
from src.helpers.parsers import parse_unix_timestamp, wei_to_gwei
from src.helpers.progress import track_progress


logger = get_logger(__name__)


async def migrate(store: BlockStore) -> int:
    """Create the blocks table and its indexes."""
    logger.info("Running database migrations")
    await store.create_tables()
    logger.info("Migration complete")
    return 0


async def recompute_blob_fees(
    store: BlockStore, console: Console | None = None
) -> int:
    """Recompute every stored blob base fee with the current schedule.

    Only rows whose stored value differs are updated.
    """
    inputs = await store.get_blob_fee_inputs()
    logger.info("Recomputing blob base fees", extra={"context": {"total": len(inputs)}})

    updated = unchanged = errors = 0
    with track_progress("Recomputing blob fees", total=len(inputs), console=console) as (
        progress,
        task,
    ):
        for item in inputs:
            new_fee = calculate_blob_base_fee(
                item.excess_blob_gas, item.timestamp, store.schedule
            )
            if new_fee == item.blob_base_fee:
                unchanged += 1
            else:
                try:
                    await store.update_blob_base_fee(item.block_number, new_fee)
                    logger.info(
                        "Block #%s updated",
                        item.block_number,
                        extra={
                            "context": {
                                "old_gwei": wei_to_gwei(item.blob_base_fee),
                                "new_gwei": wei_to_gwei(new_fee),
                            }
                        },
                    )
                    updated += 1
                except Exception:
                    logger.exception("Error fixing block #%s", item.block_number)
                    errors += 1
            progress.update(task, advance=1)

    logger.info(
        "Blob fee recalculation complete",
        extra={"context": {"updated": updated, "unchanged": unchanged, "errors": errors}},
    )
    return 1 if errors else 0


async def fix_timestamps(
    store: BlockStore,
    source: BlockSource,
    console: Console | None = None,
    *,
    delay: float = BACKFILL_CHUNK_DELAY,
    sleep_func: Callable[[float], Awaitable[None]] = sleep,
) -> int:
    """Fill in ``block_timestamp`` for rows stored without one."""
    numbers = await store.get_blocks_missing_timestamp()
    logger.info("Found %s blocks with missing timestamps", len(numbers))
    if not numbers:
        return 0

    fixed = errors = 0
    with track_progress("Fixing timestamps", total=len(numbers), console=console) as (
        progress,
        task,
    ):
        for index, number in enumerate(numbers):
            if index > 0 and delay > 0:
                await sleep_func(delay)
            try:
                block = await source.get_block(number)
                if block is None or block.timestamp is None:
                    logger.warning("Block #%s not found on chain", number)
                    errors += 1
                elif await store.update_block_timestamp(
                    number, parse_unix_timestamp(block.timestamp)
                ):
                    fixed += 1
            except Exception:
                logger.exception("Error fixing block #%s", number)
                errors += 1
            progress.update(task, advance=1)

    logger.info("Timestamp fix complete", extra={"context": {"fixed": fixed, "errors": errors}})
    return 1 if errors else 0


async def backfill_range(
    store: BlockStore,
    source: BlockSource,
    from_block: int,
    to_block: int,
    console: Console | None = None,
) -> int:
    """Backfill an inclusive block range."""
    if to_block < from_block:
        logger.error("Invalid range: %s > %s", from_block, to_block)
        return 1

    executor = BackfillExecutor(store, source)
    with track_progress(
        "Backfilling blocks", total=to_block - from_block + 1, console=console
    ) as (progress, task):
        result = await executor.backfill_range(
            from_block,
            to_block,
            on_chunk=lambda n: progress.update(task, advance=n),
        )
    return report(result)


async def backfill_blocks(
    store: BlockStore,
    source: BlockSource,
    block_numbers: Sequence[int],
    console: Console | None = None,
) -> int:
    """Backfill an explicit list of block numbers."""
    executor = BackfillExecutor(store, source)
    with track_progress(
        "Backfilling blocks", total=len(set(block_numbers)), console=console
    ) as (progress, task):
        result = await executor.backfill_blocks(
            block_numbers,
            on_chunk=lambda n: progress.update(task, advance=n),
        )
    return report(result)


async def backfill_gaps(
    store: BlockStore,
    source: BlockSource,
    console: Console | None = None,
    *,
    dry_run: bool = False,
) -> int:
    """Find every gap in the store and backfill it."""
    gaps = await store.find_gaps()
    logger.info(format_gap_summary(gaps))
    if dry_run or not gaps:
        return 0

    numbers = [
        number
        for gap in gaps
        for number in range(gap.first_missing, gap.last_missing + 1)
    ]
    return await backfill_blocks(store, source, numbers, console)


def report(result: BackfillResult) -> int:
    logger.info(
        "Backfill complete",
        extra={
            "context": {
                "requested": result.requested,
                "fetched": result.fetched,
                "inserted": result.inserted,
                "failed": len(result.failed_blocks),
            }
        },
    )
    if result.failed_blocks:
        logger.warning("Failed blocks: %s", result.failed_blocks[:100])
        return 1
    return 0


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(description="Maintenance commands for the blocks table")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("migrate", help="Create the blocks table and indexes")
    commands.add_parser(
        "recompute-blob-fees", help="Recompute stored blob base fees"
    )
    commands.add_parser(
        "fix-timestamps", help="Fetch timestamps for rows stored without one"
    )

    range_parser = commands.add_parser(
        "backfill-range", help="Backfill an inclusive block range"
    )
    range_parser.add_argument("from_block", type=int)
    range_parser.add_argument("to_block", type=int)

    blocks_parser = commands.add_parser(
        "backfill-blocks", help="Backfill specific block numbers"
    )
    blocks_parser.add_argument("block_numbers", type=int, nargs="+")

    gaps_parser = commands.add_parser(
        "backfill-gaps", help="Backfill every gap in the stored sequence"
    )
    gaps_parser.add_argument(
        "--dry-run", action="store_true", help="Only report the gaps"
    )

    return parser


async def run_command(args: Namespace) -> int:
    """Run a parsed command against stores built from the environment."""
    store = BlockStore.from_url(get_database_url())
    source = EthereumBlockSource(get_eth_rpc_url(), get_eth_ws_url())
    console = Console()

    try:
        match args.command:
            case "migrate":
                return await migrate(store)
            case "recompute-blob-fees":
                return await recompute_blob_fees(store, console)
            case "fix-timestamps":
                return await fix_timestamps(store, source, console)
            case "backfill-range":
                return await backfill_range(
                    store, source, args.from_block, args.to_block, console
                )
            case "backfill-blocks":
                return await backfill_blocks(
                    store, source, args.block_numbers, console
                )
            case "backfill-gaps":
                return await backfill_gaps(
                    store, source, console, dry_run=args.dry_run
                )
            case _:
                msg = f"Unknown command: {args.command}"
                raise ValueError(msg)
    finally:
        await source.close()
        await store.close()


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    sys.exit(run(run_command(args)))


if __name__ == "__main__":
    main()
