"""Ethereum block ingestion service.

Keeps the ``blocks`` table current with the chain head and heals any gaps.

Components:
1. Live subscriber - newHeads stream, one insert per block, in-stream gaps
   backfilled in the background
2. Gap detector - full-table gap sweep every 5 minutes
3. Liveness monitor - exits with code 1 when no block arrived for 5 minutes
4. Retention sweeper - deletes rows past the retention window hourly

Configuration comes from the environment (see ``src/helpers/config.py``).

Usage:
    python -m src.live
"""

import asyncio
import signal
import sys
import time

from collections.abc import Awaitable, Callable
from datetime import timedelta

from src.data.blocks.backfill import BackfillExecutor
from src.data.blocks.gap_detection import GapDetector
from src.data.blocks.live import LiveSubscriber
from src.data.blocks.monitoring import LivenessMonitor, RetentionSweeper
from src.data.blocks.source import BlockSource, EthereumBlockSource
from src.data.blocks.store import BlockStore
from src.helpers.config import get_eth_rpc_url, get_eth_ws_url, get_retention_window
from src.helpers.constants import RETENTION_HOURS
from src.helpers.db import get_database_url
from src.helpers.logging import get_logger


logger = get_logger(__name__)


class StartupError(RuntimeError):
    """The service could not reach or prepare its store."""


class IngestionService:
    """Owns every pipeline component and their lifecycle."""

    def __init__(
        self,
        store: BlockStore,
        source: BlockSource,
        *,
        retention: timedelta = timedelta(hours=RETENTION_HOURS),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.source = source

        self.backfill = BackfillExecutor(store, source, sleep=sleep)
        self.gap_detector = GapDetector(store, self.backfill, sleep=sleep)
        self.subscriber = LiveSubscriber(
            store, source, self.backfill, self.gap_detector, sleep=sleep, clock=clock
        )
        self.liveness = LivenessMonitor(
            lambda: self.subscriber.last_block_time,
            self.on_stall,
            clock=clock,
            sleep=sleep,
        )
        self.retention = RetentionSweeper(store, retention, sleep=sleep)

        self.tasks: list[asyncio.Task[None]] = []
        self.exit_code = 0
        self.should_shutdown = False
        self.stopped = asyncio.Event()

    @classmethod
    def from_env(cls) -> "IngestionService":
        """Build the service from environment configuration.

        Raises:
            ValueError: If a required variable is missing or malformed
        """
        store = BlockStore.from_url(get_database_url())
        source = EthereumBlockSource(get_eth_rpc_url(), get_eth_ws_url())
        return cls(store, source, retention=get_retention_window())

    async def start(self) -> None:
        """Check the store, ensure the schema and start every loop.

        Raises:
            StartupError: If the store is unreachable
        """
        logger.info("Starting Ethereum block ingestion service")
        try:
            await self.store.check_connection()
            await self.store.create_tables()
        except Exception as e:
            msg = "Database connection failed"
            raise StartupError(msg) from e
        logger.info("Database connected")

        self.tasks = [
            self._create_task(self.subscriber.run(), "live-subscriber"),
            self._create_task(self.gap_detector.run_periodic(), "gap-detector"),
            self._create_task(self.liveness.run(), "liveness-monitor"),
            self._create_task(self.retention.run(), "retention-sweeper"),
        ]
        logger.info("Ingestion service running")

    def _create_task(self, coro: Awaitable[None], name: str) -> asyncio.Task[None]:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled() or self.should_shutdown:
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s crashed: %r", task.get_name(), exc)
            self.exit_code = 1
            self.shutdown()

    def on_stall(self) -> None:
        self.exit_code = 1
        self.shutdown()

    def shutdown(self) -> None:
        """Stop every loop; safe to call more than once."""
        if self.should_shutdown:
            return
        logger.info("Shutdown signal received, stopping...")
        self.should_shutdown = True
        self.subscriber.shutdown()
        self.gap_detector.shutdown()
        self.liveness.shutdown()
        self.retention.shutdown()
        self.stopped.set()

    async def cleanup(self) -> None:
        """Cancel outstanding tasks and release connections."""
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        await self.subscriber.cancel_backfills()
        await self.source.close()
        await self.store.close()

    async def run(self) -> int:
        """Run until a signal or a stall.

        Returns:
            Process exit code
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.shutdown)

        try:
            await self.start()
            await self.stopped.wait()
        except StartupError:
            logger.exception("Fatal startup error")
            self.exit_code = 1
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.cleanup()

        logger.info("Ingestion service stopped", extra={"context": {"exit_code": self.exit_code}})
        return self.exit_code


async def main() -> int:
    """Main entry point."""
    try:
        service = IngestionService.from_env()
    except ValueError:
        logger.exception("Invalid configuration")
        return 1
    return await service.run()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
