"""Rich progress bars for the maintenance commands."""

from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)


def create_block_progress(console: Console | None = None) -> Progress:
    """Progress bar counting blocks, with elapsed and remaining time."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("blocks"),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
    )


@contextmanager
def track_progress(
    description: str,
    total: int,
    console: Console | None = None,
) -> Iterator[tuple[Progress, TaskID]]:
    """Show a block progress bar for the duration of the block.

    Args:
        description: Task description to display
        total: Number of blocks to process
        console: Rich console instance (optional)

    Yields:
        Tuple of (Progress instance, TaskID) for updating progress

    Example:
        ```python
        with track_progress("Backfilling 1000-1999", total=1000) as (progress, task):
            await executor.backfill_range(
                1000, 1999, on_chunk=lambda n: progress.update(task, advance=n)
            )
        ```
    """
    with create_block_progress(console) as progress:
        task_id = progress.add_task(description, total=total)
        yield progress, task_id


__all__ = [
    "TaskID",
    "create_block_progress",
    "track_progress",
]
