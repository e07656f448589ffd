"""Background monitors: liveness watchdog and retention sweeper."""

import asyncio
import time

from collections.abc import Awaitable, Callable
from datetime import timedelta

from typing import TYPE_CHECKING

from src.helpers.constants import (
    LIVENESS_CHECK_INTERVAL,
    LIVENESS_THRESHOLD,
    RETENTION_INTERVAL,
)
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from src.data.blocks.store import BlockStore


logger = get_logger(__name__)


class LivenessMonitor:
    """Detects a silent stall of the live stream.

    Compares the clock with the subscriber heartbeat every ``interval``
    seconds. Once the heartbeat is older than ``threshold`` it calls
    ``on_stall`` and stops; recovery is left to the process supervisor.
    """

    def __init__(
        self,
        heartbeat: Callable[[], float | None],
        on_stall: Callable[[], None],
        *,
        threshold: float = LIVENESS_THRESHOLD,
        interval: float = LIVENESS_CHECK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.heartbeat = heartbeat
        self.on_stall = on_stall
        self.threshold = threshold
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.stalled = False
        self.should_shutdown = False

    def seconds_since_heartbeat(self) -> float | None:
        last = self.heartbeat()
        if last is None:
            return None
        return self.clock() - last

    def check(self) -> bool:
        """Run one check.

        Returns:
            True if the stream is considered stalled
        """
        age = self.seconds_since_heartbeat()
        if age is None or age <= self.threshold:
            return False

        logger.critical(
            "No new blocks for %.0f s, exiting for restart",
            age,
            extra={"context": {"threshold_s": self.threshold}},
        )
        self.stalled = True
        self.on_stall()
        return True

    async def run(self) -> None:
        while not self.should_shutdown:
            await self.sleep(self.interval)
            if self.should_shutdown:
                break
            if self.check():
                break

    def shutdown(self) -> None:
        self.should_shutdown = True


class RetentionSweeper:
    """Deletes blocks older than the retention window, now and then hourly."""

    def __init__(
        self,
        store: "BlockStore",
        retention: timedelta,
        *,
        interval: float = RETENTION_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.retention = retention
        self.interval = interval
        self.sleep = sleep
        self.should_shutdown = False

    async def sweep_once(self) -> int | None:
        """Delete expired rows.

        Returns:
            Deleted row count, or None if the delete failed
        """
        try:
            deleted = await self.store.cleanup_old_blocks(self.retention)
        except Exception:
            logger.exception("Error cleaning up old blocks")
            return None

        if deleted > 0:
            logger.info(
                "Cleaned up %s old blocks",
                deleted,
                extra={"context": {"retention_hours": self.retention / timedelta(hours=1)}},
            )
        return deleted

    async def run(self) -> None:
        await self.sweep_once()
        while not self.should_shutdown:
            await self.sleep(self.interval)
            if self.should_shutdown:
                break
            await self.sweep_once()

    def shutdown(self) -> None:
        self.should_shutdown = True


__all__ = [
    "LivenessMonitor",
    "RetentionSweeper",
]
