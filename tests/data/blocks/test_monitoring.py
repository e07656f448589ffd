"""Tests for the liveness monitor and retention sweeper."""

from datetime import timedelta

import pytest

from src.data.blocks.monitoring import LivenessMonitor, RetentionSweeper
from tests.fakes import FakeClock, FakeStore, SleepRecorder


class TestLivenessMonitor:
    """Tests for LivenessMonitor."""

    def test_recent_heartbeat_is_healthy(self) -> None:
        """Test that a fresh heartbeat does not trigger a stall."""
        clock = FakeClock(start=1_000.0)
        stalls: list[bool] = []
        monitor = LivenessMonitor(lambda: 990.0, lambda: stalls.append(True), clock=clock)

        assert monitor.check() is False
        assert stalls == []

    def test_threshold_is_exclusive(self) -> None:
        """Test that exactly 300 seconds is still healthy."""
        clock = FakeClock(start=1_300.0)
        monitor = LivenessMonitor(lambda: 1_000.0, lambda: None, clock=clock)

        assert monitor.check() is False

    def test_stale_heartbeat_triggers_stall(self) -> None:
        """Test that more than 300 seconds without a block is a stall."""
        clock = FakeClock(start=1_301.0)
        stalls: list[bool] = []
        monitor = LivenessMonitor(lambda: 1_000.0, lambda: stalls.append(True), clock=clock)

        assert monitor.check() is True
        assert stalls == [True]
        assert monitor.stalled is True

    def test_missing_heartbeat_is_ignored(self) -> None:
        """Test that no heartbeat yet is not a stall."""
        monitor = LivenessMonitor(lambda: None, lambda: None, clock=FakeClock())

        assert monitor.check() is False
        assert monitor.seconds_since_heartbeat() is None

    @pytest.mark.asyncio
    async def test_run_stops_after_stall(self) -> None:
        """Test the check loop against an advancing clock."""
        clock = FakeClock(start=0.0)
        stalls: list[bool] = []

        async def sleep(delay: float) -> None:
            clock.advance(delay)

        monitor = LivenessMonitor(
            lambda: 0.0, lambda: stalls.append(True), clock=clock, sleep=sleep
        )

        await monitor.run()

        # 60, 120, ..., 300 are healthy; 360 is the first stale check
        assert clock.now == 360.0
        assert stalls == [True]

    @pytest.mark.asyncio
    async def test_run_stops_on_shutdown(self) -> None:
        """Test that shutdown ends the loop without a stall."""
        stalls: list[bool] = []
        monitor = LivenessMonitor(lambda: 0.0, lambda: stalls.append(True), clock=FakeClock(0.0))
        monitor.sleep = SleepRecorder(limit=2, stop=monitor.shutdown)

        await monitor.run()

        assert stalls == []


class TestRetentionSweeper:
    """Tests for RetentionSweeper."""

    @pytest.mark.asyncio
    async def test_sweep_once_returns_deleted_count(self) -> None:
        """Test that the store delete count is returned."""
        store = FakeStore()
        store.cleanup_results = [12]
        sweeper = RetentionSweeper(store, timedelta(hours=24))

        assert await sweeper.sweep_once() == 12
        assert store.cleanup_calls == [timedelta(hours=24)]

    @pytest.mark.asyncio
    async def test_sweep_failure_is_logged(self) -> None:
        """Test that a failed delete returns None instead of raising."""
        store = FakeStore()
        store.cleanup_results = [ConnectionResetError("gone")]
        sweeper = RetentionSweeper(store, timedelta(hours=1))

        assert await sweeper.sweep_once() is None

    @pytest.mark.asyncio
    async def test_run_sweeps_at_startup_and_each_interval(self) -> None:
        """Test the startup sweep plus hourly sweeps, surviving failures."""
        store = FakeStore()
        store.cleanup_results = [ConnectionResetError("gone"), 3, 0]
        sweeper = RetentionSweeper(store, timedelta(days=7))
        sleep = SleepRecorder(limit=3, stop=sweeper.shutdown)
        sweeper.sleep = sleep

        await sweeper.run()

        assert len(store.cleanup_calls) == 3
        assert sleep.delays == [3600.0, 3600.0, 3600.0]
