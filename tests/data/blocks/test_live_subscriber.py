"""Tests for the live newHeads subscriber."""

import pytest

from src.data.blocks.gap_detection import GapDetector
from src.data.blocks.live import ConnectionState, LiveSubscriber, fixed_delay
from src.data.blocks.source import SubscriptionError
from src.helpers.rpc import RPCError
from tests.fakes import (
    FakeBlockSource,
    FakeClock,
    FakeStore,
    RecordingBackfill,
    SleepRecorder,
)


def build_subscriber(
    store: FakeStore,
    source: FakeBlockSource,
    *,
    sleep: SleepRecorder | None = None,
    clock: FakeClock | None = None,
) -> tuple[LiveSubscriber, RecordingBackfill]:
    backfill = RecordingBackfill(store, source)
    subscriber = LiveSubscriber(
        store,
        source,
        backfill,
        GapDetector(store, backfill),
        sleep=sleep or SleepRecorder(),
        clock=clock or FakeClock(),
    )
    return subscriber, backfill


class TestFixedDelay:
    """Tests for the fixed reconnect policy."""

    def test_same_delay_for_every_attempt(self) -> None:
        """Test that the delay never grows."""
        policy = fixed_delay(5.0)
        assert [policy(attempt) for attempt in (1, 2, 10, 1000)] == [5.0] * 4


class TestHandleBlock:
    """Tests for LiveSubscriber.handle_block."""

    @pytest.mark.asyncio
    async def test_in_stream_gap_is_backfilled(self) -> None:
        """Test that 100 -> 105 inserts 105 and backfills 101..104."""
        store = FakeStore([100])
        subscriber, backfill = build_subscriber(store, FakeBlockSource(head=105))
        subscriber.last_processed_block_number = 100

        assert await subscriber.handle_block(105) is True
        assert 105 in store.blocks
        assert subscriber.last_processed_block_number == 105

        await subscriber.wait_for_backfills()

        assert backfill.ranges == [(101, 104)]
        assert sorted(store.blocks) == list(range(100, 106))
        assert subscriber.last_processed_block_number == 105

    @pytest.mark.asyncio
    async def test_current_block_not_blocked_by_backfill(self) -> None:
        """Test that the notified block is inserted before the gap is healed."""
        store = FakeStore([100])
        subscriber, _ = build_subscriber(store, FakeBlockSource(head=200))
        subscriber.last_processed_block_number = 100

        await subscriber.handle_block(200)

        assert 200 in store.blocks
        assert len(store.blocks) < 101
        await subscriber.wait_for_backfills()
        assert sorted(store.blocks) == list(range(100, 201))

    @pytest.mark.asyncio
    async def test_consecutive_block_has_no_backfill(self) -> None:
        """Test that the next block in sequence is simply inserted."""
        store = FakeStore([100])
        subscriber, backfill = build_subscriber(store, FakeBlockSource(head=101))
        subscriber.last_processed_block_number = 100

        await subscriber.handle_block(101)

        assert backfill.ranges == []
        assert subscriber.background_tasks == set()

    @pytest.mark.asyncio
    async def test_updates_heartbeat(self) -> None:
        """Test that a stored block refreshes the heartbeat."""
        clock = FakeClock(start=50.0)
        subscriber, _ = build_subscriber(FakeStore(), FakeBlockSource(), clock=clock)

        clock.advance(12.0)
        await subscriber.handle_block(1)

        assert subscriber.last_block_time == 62.0
        assert subscriber.blocks_processed == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_is_absorbed(self) -> None:
        """Test that a failing fetch leaves the state untouched."""
        subscriber, _ = build_subscriber(FakeStore(), FakeBlockSource(failing=[101]))
        subscriber.last_processed_block_number = 100

        assert await subscriber.handle_block(101) is False
        assert subscriber.last_processed_block_number == 100
        assert subscriber.last_block_time is None

    @pytest.mark.asyncio
    async def test_missing_block_is_absorbed(self) -> None:
        """Test that a null block from the node is skipped."""
        store = FakeStore()
        subscriber, _ = build_subscriber(store, FakeBlockSource(missing=[7]))

        assert await subscriber.handle_block(7) is False
        assert store.blocks == {}

    @pytest.mark.asyncio
    async def test_insert_failure_is_absorbed(self) -> None:
        """Test that a failing insert is logged and skipped."""
        store = FakeStore()
        store.fail_inserts = {9}
        subscriber, _ = build_subscriber(store, FakeBlockSource())

        assert await subscriber.handle_block(9) is False
        assert subscriber.last_processed_block_number is None

    @pytest.mark.asyncio
    async def test_failed_block_healed_by_next_gap(self) -> None:
        """Test that a skipped block is backfilled when the next one arrives."""
        store = FakeStore([100])
        source = FakeBlockSource(failing=[101])
        subscriber, backfill = build_subscriber(store, source)
        subscriber.last_processed_block_number = 100

        await subscriber.handle_block(101)
        source.failing.clear()
        await subscriber.handle_block(102)
        await subscriber.wait_for_backfills()

        assert backfill.ranges == [(101, 101)]
        assert sorted(store.blocks) == [100, 101, 102]

    @pytest.mark.asyncio
    async def test_older_block_does_not_move_marker_back(self) -> None:
        """Test that the processed marker never decreases."""
        store = FakeStore()
        subscriber, _ = build_subscriber(store, FakeBlockSource())
        subscriber.last_processed_block_number = 100

        await subscriber.handle_block(95)

        assert 95 in store.blocks
        assert subscriber.last_processed_block_number == 100


class TestStartupSequence:
    """Tests for the startup backfill."""

    @pytest.mark.asyncio
    async def test_empty_store_end_to_end(self) -> None:
        """Test empty store at head 1000, then a live block 1001."""
        store = FakeStore()
        source = FakeBlockSource(head=1000)
        subscriber, backfill = build_subscriber(store, source)

        head = await subscriber.run_startup_sequence()

        assert head == 1000
        assert subscriber.last_processed_block_number == 1000
        assert backfill.ranges == [(891, 1000)]
        assert sorted(store.blocks) == list(range(891, 1001))

        source.head = 1001
        assert await subscriber.handle_block(1001) is True
        await subscriber.wait_for_backfills()

        assert backfill.ranges == [(891, 1000)]
        assert subscriber.last_processed_block_number == 1001
        assert len(store.blocks) == 111

    @pytest.mark.asyncio
    async def test_resumes_after_latest_stored(self) -> None:
        """Test that a recent store only fetches what is missing."""
        store = FakeStore(range(980, 996))
        subscriber, backfill = build_subscriber(store, FakeBlockSource(head=1000))

        await subscriber.backfill_recent_blocks()

        assert backfill.ranges == [(996, 1000)]

    @pytest.mark.asyncio
    async def test_window_caps_old_store(self) -> None:
        """Test that a stale store is only backfilled over the recent window."""
        store = FakeStore([10])
        subscriber, backfill = build_subscriber(store, FakeBlockSource(head=1000))

        await subscriber.backfill_recent_blocks()

        assert backfill.ranges == [(891, 1000)]

    @pytest.mark.asyncio
    async def test_up_to_date_store_skips_backfill(self) -> None:
        """Test that no backfill runs when the store holds the head."""
        store = FakeStore([1000])
        subscriber, backfill = build_subscriber(store, FakeBlockSource(head=1000))

        await subscriber.backfill_recent_blocks()

        assert backfill.ranges == []

    @pytest.mark.asyncio
    async def test_startup_sweeps_gaps_in_background(self) -> None:
        """Test that the startup gap sweep heals older gaps."""
        store = FakeStore([500, 505, *range(891, 1001)])
        subscriber, backfill = build_subscriber(store, FakeBlockSource(head=1000))

        await subscriber.run_startup_sequence()
        await subscriber.wait_for_backfills()

        assert (501, 504) in backfill.ranges
        assert all(n in store.blocks for n in range(500, 506))

    @pytest.mark.asyncio
    async def test_unknown_head_keeps_marker_unset(self) -> None:
        """Test that a failed head lookup never sets the marker to block 0."""
        store = FakeStore(range(20_999_995, 21_000_001))
        source = FakeBlockSource(head=21_000_000)
        source.head_error = RPCError("RPC error: eth_blockNumber returned null")
        source.streams = [[21_000_001]]
        subscriber, backfill = build_subscriber(store, source)

        await subscriber.connect_and_stream()
        await subscriber.wait_for_backfills()

        assert subscriber.last_processed_block_number is None
        assert backfill.ranges == []
        assert 21_000_001 not in store.blocks


class TestReconnect:
    """Tests for reconnect handling."""

    @pytest.mark.asyncio
    async def test_reconnects_after_failure_without_waiting(self) -> None:
        """Test the fixed-delay reconnect loop with an injected sleep."""
        store = FakeStore()
        source = FakeBlockSource(head=10)
        source.streams = [SubscriptionError("rejected"), OSError("refused"), [11, 12]]
        subscriber, _ = build_subscriber(store, source)
        sleep = SleepRecorder(limit=3, stop=subscriber.shutdown)
        subscriber.sleep = sleep

        await subscriber.run()
        await subscriber.wait_for_backfills()

        assert source.subscribe_count == 3
        assert sleep.delays == [5.0, 5.0, 5.0]
        assert subscriber.reconnect_count == 3
        assert subscriber.state is ConnectionState.STOPPED
        assert sorted(store.blocks) == list(range(0, 13))
        assert subscriber.last_processed_block_number == 12

    @pytest.mark.asyncio
    async def test_custom_policy_receives_attempt_number(self) -> None:
        """Test that the policy sees increasing attempt numbers."""
        attempts: list[int] = []

        def policy(attempt: int) -> float:
            attempts.append(attempt)
            return 0.5

        source = FakeBlockSource()
        source.streams = [OSError("down"), OSError("down")]
        subscriber, _ = build_subscriber(FakeStore(), source)
        subscriber.reconnect_delay = policy
        subscriber.sleep = SleepRecorder(limit=2, stop=subscriber.shutdown)

        await subscriber.run()

        assert attempts == [1, 2]

    @pytest.mark.asyncio
    async def test_overlapping_reconnect_is_skipped(self) -> None:
        """Test the reconnecting guard."""
        sleep = SleepRecorder()
        subscriber, _ = build_subscriber(FakeStore(), FakeBlockSource(), sleep=sleep)
        subscriber.reconnecting = True

        assert await subscriber.schedule_reconnect() is False
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_reconnect_clears_flag(self) -> None:
        """Test that the guard is released after the delay."""
        subscriber, _ = build_subscriber(FakeStore(), FakeBlockSource())

        assert await subscriber.schedule_reconnect() is True
        assert subscriber.reconnecting is False
        assert subscriber.state is ConnectionState.RECONNECTING

    @pytest.mark.asyncio
    async def test_shutdown_stops_stream(self) -> None:
        """Test that no block is processed after shutdown."""
        store = FakeStore()
        source = FakeBlockSource(head=5)
        source.streams = [[6, 7]]
        subscriber, _ = build_subscriber(store, source)
        subscriber.shutdown()

        await subscriber.run()

        assert source.subscribe_count == 0
        assert subscriber.state is ConnectionState.STOPPED
