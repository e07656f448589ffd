"""Live newHeads subscriber.

Keeps a standing subscription to the upstream new-block stream and inserts
each notified block as it arrives. Every (re)connect replays the startup
sequence: a background gap sweep, a backfill of the most recent blocks, and
a reset of ``last_processed_block_number`` to the chain head.

Connection states cycle ``CONNECTING -> STREAMING -> RECONNECTING`` with a
fixed delay between attempts and no limit on their number. ``STOPPED`` is
entered only on shutdown.
"""

import asyncio
import time

from collections.abc import Awaitable, Callable
from enum import StrEnum

from typing import TYPE_CHECKING

from websockets.exceptions import WebSocketException

from src.data.blocks.source import SubscriptionError
from src.helpers.constants import RECENT_BLOCKS_WINDOW, RECONNECT_DELAY
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from src.data.blocks.backfill import BackfillExecutor
    from src.data.blocks.gap_detection import GapDetector
    from src.data.blocks.source import BlockSource
    from src.data.blocks.store import BlockStore


logger = get_logger(__name__)

ReconnectPolicy = Callable[[int], float]
"""Maps the reconnect attempt number (1-based) to a delay in seconds"""


class ConnectionState(StrEnum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


def fixed_delay(seconds: float) -> ReconnectPolicy:
    """Reconnect policy that waits the same time before every attempt."""

    def policy(attempt: int) -> float:
        return seconds

    return policy


class LiveSubscriber:
    """Consumes the newHeads stream and keeps the store current."""

    def __init__(
        self,
        store: "BlockStore",
        source: "BlockSource",
        backfill: "BackfillExecutor",
        gap_detector: "GapDetector",
        *,
        reconnect_delay: ReconnectPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        recent_blocks: int = RECENT_BLOCKS_WINDOW,
    ) -> None:
        """Initialize the subscriber.

        Args:
            store: Block store
            source: Upstream block source
            backfill: Executor for startup and in-stream gaps
            gap_detector: Detector swept on every connect
            reconnect_delay: Reconnect policy (default: fixed 5 seconds)
            sleep: Awaitable used for reconnect delays
            clock: Monotonic clock for the heartbeat
            recent_blocks: Size of the startup backfill window
        """
        self.store = store
        self.source = source
        self.backfill = backfill
        self.gap_detector = gap_detector
        self.reconnect_delay = reconnect_delay or fixed_delay(RECONNECT_DELAY)
        self.sleep = sleep
        self.clock = clock
        self.recent_blocks = recent_blocks

        self.state = ConnectionState.CONNECTING
        self.last_processed_block_number: int | None = None
        self.last_block_time: float | None = None
        self.reconnecting = False
        self.reconnect_count = 0
        self.blocks_processed = 0
        self.should_shutdown = False
        self.background_tasks: set[asyncio.Task[object]] = set()

    async def run(self) -> None:
        """Stream, reconnecting after every disconnect, until shutdown."""
        self.last_block_time = self.clock()

        while not self.should_shutdown:
            await self.connect_and_stream()
            if self.should_shutdown:
                break
            await self.schedule_reconnect()

        self.state = ConnectionState.STOPPED
        logger.info("Live subscriber stopped")

    async def connect_and_stream(self) -> None:
        """Run one connection from handshake to close.

        Transport and subscription errors are logged; the caller decides
        whether to reconnect.
        """
        self.state = ConnectionState.CONNECTING
        try:
            async with self.source.subscribe() as block_numbers:
                self.state = ConnectionState.STREAMING
                await self.run_startup_sequence()

                async for block_number in block_numbers:
                    if self.should_shutdown:
                        break
                    await self.handle_block(block_number)

            if not self.should_shutdown:
                logger.warning("newHeads stream closed by upstream")
        except asyncio.CancelledError:
            raise
        except (WebSocketException, SubscriptionError, OSError) as e:
            logger.warning("WebSocket connection lost: %s", e)
        except Exception:
            logger.exception("Live stream error")

    async def run_startup_sequence(self) -> int:
        """Sweep gaps, backfill recent blocks and reset the processed marker.

        Returns:
            Chain head the marker was set to
        """
        self.spawn(self.gap_detector.sweep(), name="startup-gap-sweep")

        head = await self.backfill_recent_blocks()
        self.last_processed_block_number = head
        self.last_block_time = self.clock()
        logger.info("Live processing from block #%s", head)
        return head

    async def backfill_recent_blocks(self) -> int:
        """Backfill up to the last ``recent_blocks`` blocks below the head.

        Starts after the newest stored block, but never further back than the
        window. An empty store gets the whole window.

        Returns:
            Chain head at the time of the call
        """
        head = await self.source.get_block_number()
        latest = await self.store.get_latest_block_number()
        window_start = max(head - (self.recent_blocks - 1), 0)
        start = window_start if latest is None else max(latest + 1, window_start)

        logger.info(
            "Startup backfill",
            extra={
                "context": {
                    "chain_head": head,
                    "latest_stored": latest,
                    "from_block": start,
                }
            },
        )
        if start <= head:
            await self.backfill.backfill_range(start, head)
        return head

    async def handle_block(self, block_number: int) -> bool:
        """Process one notified block.

        A jump of more than one past the last processed block schedules a
        background backfill of the skipped range. Failures are logged and
        absorbed; the block will be healed by a later gap sweep.

        Returns:
            True if the block is now stored
        """
        last = self.last_processed_block_number
        if last is not None and block_number > last + 1:
            logger.warning(
                "In-stream gap detected, backfilling %s to %s",
                last + 1,
                block_number - 1,
            )
            self.spawn(
                self.backfill.backfill_range(last + 1, block_number - 1),
                name=f"backfill-{last + 1}-{block_number - 1}",
            )

        try:
            block = await self.source.get_block(block_number)
        except Exception as e:
            logger.warning("Failed to fetch block #%s: %s", block_number, e)
            return False

        if block is None:
            logger.warning("Block #%s not found in RPC response", block_number)
            return False

        try:
            await self.store.insert(block)
        except Exception:
            logger.exception("Failed to store block #%s", block_number)
            return False

        current = self.last_processed_block_number
        self.last_processed_block_number = (
            block_number if current is None else max(current, block_number)
        )
        self.last_block_time = self.clock()
        self.blocks_processed += 1
        return True

    async def schedule_reconnect(self) -> bool:
        """Wait out the reconnect delay.

        Returns:
            False if a reconnect was already pending
        """
        if self.reconnecting:
            logger.debug("Reconnect already scheduled, skipping")
            return False

        self.reconnecting = True
        self.state = ConnectionState.RECONNECTING
        self.reconnect_count += 1
        try:
            delay = self.reconnect_delay(self.reconnect_count)
            logger.info(
                "Reconnecting in %s s (attempt %s)", delay, self.reconnect_count
            )
            await self.sleep(delay)
        finally:
            self.reconnecting = False
        return True

    def spawn(self, coro: Awaitable[object], *, name: str) -> asyncio.Task[object]:
        """Start a tracked background task."""
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self.background_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[object]) -> None:
        self.background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc)

    async def wait_for_backfills(self) -> None:
        """Wait for every background task spawned so far."""
        while self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)

    async def cancel_backfills(self) -> None:
        for task in self.background_tasks:
            task.cancel()
        await asyncio.gather(*self.background_tasks, return_exceptions=True)

    def shutdown(self) -> None:
        self.should_shutdown = True


__all__ = [
    "ConnectionState",
    "LiveSubscriber",
    "ReconnectPolicy",
    "fixed_delay",
]
