"""Tests for progress bar utilities."""

from io import StringIO

from rich.console import Console
from rich.progress import Progress

from src.helpers.progress import create_block_progress, track_progress


def column_names(progress: Progress) -> list[str]:
    return [type(col).__name__ for col in progress.columns]


class TestCreateBlockProgress:
    """Tests for create_block_progress."""

    def test_columns(self) -> None:
        """Test the counter and timing columns."""
        progress = create_block_progress()

        assert "MofNCompleteColumn" in column_names(progress)
        assert "TimeElapsedColumn" in column_names(progress)
        assert "TimeRemainingColumn" in column_names(progress)

    def test_uses_provided_console(self) -> None:
        """Test that the given console is used."""
        console = Console(file=StringIO())

        assert create_block_progress(console).console is console


class TestTrackProgress:
    """Tests for track_progress context manager."""

    def test_creates_task_with_description(self) -> None:
        """Test task is created with correct description and total."""
        console = Console(file=StringIO())
        with track_progress("Backfilling 1-50", total=50, console=console) as (
            progress,
            task_id,
        ):
            task = progress.tasks[task_id]
            assert task.description == "Backfilling 1-50"
            assert task.total == 50

    def test_chunked_updates(self) -> None:
        """Test advancing once per backfill chunk."""
        console = Console(file=StringIO())
        with track_progress("Backfilling", total=120, console=console) as (
            progress,
            task_id,
        ):
            for chunk in (50, 50, 20):
                progress.update(task_id, advance=chunk)

            assert progress.tasks[task_id].completed == 120
            assert progress.tasks[task_id].finished

    def test_stops_after_context(self) -> None:
        """Test that the live display is stopped on exit."""
        console = Console(file=StringIO())
        with track_progress("Fixing timestamps", total=3, console=console) as (
            progress,
            _,
        ):
            assert progress.live.is_started

        assert not progress.live.is_started
